import sqlite3
from typing import List, Optional

from . import translate_integrity_error
from ..errors import DuplicateKeyError
from ..models import Category, to_iso


def get_by_id(conn: sqlite3.Connection, category_id: int) -> Optional[Category]:
    row = conn.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
    return Category.from_row(row) if row else None


def list_active(conn: sqlite3.Connection) -> List[Category]:
    rows = conn.execute(
        "SELECT * FROM categories WHERE is_active = 1 ORDER BY name COLLATE NOCASE"
    ).fetchall()
    return [Category.from_row(row) for row in rows]


def list_with_book_count(conn: sqlite3.Connection) -> List[Category]:
    rows = conn.execute(
        """
        SELECT c.*,
               (SELECT COUNT(*) FROM books b
                WHERE b.category_id = c.id AND b.is_active = 1) AS book_count
        FROM categories c
        WHERE c.is_active = 1
        ORDER BY c.name COLLATE NOCASE
        """
    ).fetchall()
    return [Category.from_row(row) for row in rows]


def is_name_unique(conn: sqlite3.Connection, name: str, exclude_id: Optional[int] = None) -> bool:
    sql = "SELECT 1 FROM categories WHERE casefold(name) = casefold(?) AND is_active = 1"
    params: tuple = (name,)
    if exclude_id is not None:
        sql += " AND id != ?"
        params += (exclude_id,)
    return conn.execute(sql, params).fetchone() is None


def book_count(conn: sqlite3.Connection, category_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM books WHERE category_id = ? AND is_active = 1", (category_id,)
    ).fetchone()
    return row[0]


def _duplicate(name: str) -> DuplicateKeyError:
    return DuplicateKeyError(f"Category with name '{name}' already exists.")


def insert(conn: sqlite3.Connection, category: Category) -> int:
    try:
        cursor = conn.execute(
            "INSERT INTO categories (name, description, is_active, created_at) VALUES (?, ?, ?, ?)",
            (category.name, category.description, int(category.is_active), to_iso(category.created_at)),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(exc, [("name", _duplicate(category.name))]) from exc
    return cursor.lastrowid


def update(conn: sqlite3.Connection, category: Category) -> None:
    try:
        conn.execute(
            "UPDATE categories SET name = ?, description = ? WHERE id = ?",
            (category.name, category.description, category.id),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(exc, [("name", _duplicate(category.name))]) from exc


def set_active(conn: sqlite3.Connection, category_id: int, is_active: bool) -> None:
    conn.execute("UPDATE categories SET is_active = ? WHERE id = ?", (int(is_active), category_id))
