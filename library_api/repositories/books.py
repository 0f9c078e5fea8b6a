import sqlite3
from datetime import datetime
from typing import List, Optional

from . import translate_integrity_error
from ..errors import DuplicateKeyError
from ..models import Book, to_iso

# Availability is derived from the loan ledger on every read.
_SELECT = """
    SELECT b.*, c.name AS category_name,
           CASE WHEN b.is_active = 0 THEN 0
                ELSE MAX(0, b.total_copies - (
                    SELECT COUNT(*) FROM loans l
                    WHERE l.book_id = b.id AND l.status = 'Borrowed'))
           END AS available_copies
    FROM books b
    LEFT JOIN categories c ON c.id = b.category_id
"""


def _fetch_all(conn: sqlite3.Connection, where: str, params: tuple = ()) -> List[Book]:
    rows = conn.execute(f"{_SELECT} WHERE {where} ORDER BY b.title, b.id", params).fetchall()
    return [Book.from_row(row) for row in rows]


def get_by_id(conn: sqlite3.Connection, book_id: int) -> Optional[Book]:
    row = conn.execute(f"{_SELECT} WHERE b.id = ?", (book_id,)).fetchone()
    return Book.from_row(row) if row else None


def list_active(conn: sqlite3.Connection) -> List[Book]:
    return _fetch_all(conn, "b.is_active = 1")


def find_by_author(conn: sqlite3.Connection, author: str) -> List[Book]:
    return _fetch_all(conn, "b.is_active = 1 AND instr(casefold(b.author), casefold(?)) > 0", (author,))


def find_by_category(conn: sqlite3.Connection, category_id: int) -> List[Book]:
    return _fetch_all(conn, "b.is_active = 1 AND b.category_id = ?", (category_id,))


def list_available(conn: sqlite3.Connection) -> List[Book]:
    return [book for book in list_active(conn) if book.available_copies > 0]


def is_isbn_unique(conn: sqlite3.Connection, isbn: str, exclude_id: Optional[int] = None) -> bool:
    sql = "SELECT 1 FROM books WHERE isbn = ? AND is_active = 1"
    params: tuple = (isbn,)
    if exclude_id is not None:
        sql += " AND id != ?"
        params += (exclude_id,)
    return conn.execute(sql, params).fetchone() is None


def available_copies(conn: sqlite3.Connection, book_id: int) -> Optional[int]:
    """Return max(0, total - borrowed) for the book, 0 if inactive, None if absent."""
    row = conn.execute(
        "SELECT available_copies FROM (" + _SELECT + " WHERE b.id = ?)", (book_id,)
    ).fetchone()
    return row["available_copies"] if row else None


def insert(conn: sqlite3.Connection, book: Book) -> int:
    try:
        cursor = conn.execute(
            """
            INSERT INTO books (isbn, title, author, publisher, publication_year, genre,
                               description, total_copies, location, cover_image_url,
                               category_id, created_by, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (book.isbn, book.title, book.author, book.publisher, book.publication_year,
             book.genre, book.description, book.total_copies, book.location,
             book.cover_image_url, book.category_id, book.created_by, int(book.is_active),
             to_iso(book.created_at), to_iso(book.updated_at)),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(
            exc, [("isbn", DuplicateKeyError(f"Book with ISBN {book.isbn} already exists."))]
        ) from exc
    return cursor.lastrowid


def update(conn: sqlite3.Connection, book: Book) -> None:
    try:
        conn.execute(
            """
            UPDATE books
            SET isbn = ?, title = ?, author = ?, publisher = ?, publication_year = ?,
                genre = ?, description = ?, total_copies = ?, location = ?,
                cover_image_url = ?, category_id = ?, updated_at = ?
            WHERE id = ?
            """,
            (book.isbn, book.title, book.author, book.publisher, book.publication_year,
             book.genre, book.description, book.total_copies, book.location,
             book.cover_image_url, book.category_id, to_iso(book.updated_at), book.id),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(
            exc, [("isbn", DuplicateKeyError(f"Book with ISBN {book.isbn} already exists."))]
        ) from exc


def set_active(conn: sqlite3.Connection, book_id: int, is_active: bool, updated_at: datetime) -> None:
    conn.execute(
        "UPDATE books SET is_active = ?, updated_at = ? WHERE id = ?",
        (int(is_active), to_iso(updated_at), book_id),
    )
