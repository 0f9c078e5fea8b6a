import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from .config import settings

logger = logging.getLogger(__name__)

# Default database file. Tests and the CLI pass an explicit path instead.
DATABASE_FILE = settings.database_file


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a new connection with foreign keys enforced.

    ``isolation_level=None`` leaves transaction control to :func:`transaction`,
    which issues ``BEGIN``/``COMMIT``/``ROLLBACK`` explicitly.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.database_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    # Unique indexes on names, usernames and emails are built on casefold()
    conn.create_function("casefold", 1, _casefold, deterministic=True)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None, *, readonly: bool = False) -> Iterator[sqlite3.Connection]:
    """Yield a connection holding an open transaction.

    Write transactions start with ``BEGIN IMMEDIATE`` so the database write lock
    is held from the first read; two concurrent check-then-act sequences (for
    example two borrows of the last copy of a book) therefore run one after the
    other. The transaction commits when the block exits normally, rolls back on
    any exception, and the connection is closed on every path.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN" if readonly else "BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


def create_tables(conn: sqlite3.Connection) -> None:
    """Create tables, indexes and triggers if they do not exist."""
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL,
            email TEXT NOT NULL,
            password_hash TEXT NOT NULL,
            role TEXT NOT NULL DEFAULT 'Member'
                CHECK (role IN ('Admin', 'Librarian', 'Member')),
            is_active INTEGER NOT NULL DEFAULT 1,
            last_login_date TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS books (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            isbn TEXT NOT NULL,
            title TEXT NOT NULL,
            author TEXT NOT NULL,
            publisher TEXT,
            publication_year INTEGER,
            genre TEXT,
            description TEXT,
            total_copies INTEGER NOT NULL DEFAULT 1 CHECK (total_copies >= 0),
            location TEXT,
            cover_image_url TEXT,
            category_id INTEGER REFERENCES categories(id) ON DELETE RESTRICT,
            created_by INTEGER REFERENCES users(id) ON DELETE SET NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
            member_number TEXT NOT NULL UNIQUE,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            phone TEXT,
            address TEXT,
            date_of_birth TEXT,
            membership_date TEXT NOT NULL,
            membership_expiry_date TEXT,
            membership_status TEXT NOT NULL DEFAULT 'Active'
                CHECK (membership_status IN ('Active', 'Suspended', 'Expired')),
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS loans (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE RESTRICT,
            member_id INTEGER NOT NULL REFERENCES members(id) ON DELETE RESTRICT,
            loan_date TEXT NOT NULL,
            due_date TEXT NOT NULL,
            return_date TEXT,
            status TEXT NOT NULL DEFAULT 'Borrowed'
                CHECK (status IN ('Borrowed', 'Returned')),
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK ((status = 'Borrowed' AND return_date IS NULL)
                OR (status = 'Returned' AND return_date IS NOT NULL))
        );

        -- Uniqueness only applies to active (not soft-deleted) rows
        CREATE UNIQUE INDEX IF NOT EXISTS ux_books_isbn_active
            ON books(isbn) WHERE is_active = 1;
        CREATE UNIQUE INDEX IF NOT EXISTS ux_categories_name_active
            ON categories(casefold(name)) WHERE is_active = 1;
        CREATE UNIQUE INDEX IF NOT EXISTS ux_users_username_active
            ON users(casefold(username)) WHERE is_active = 1;
        CREATE UNIQUE INDEX IF NOT EXISTS ux_users_email_active
            ON users(casefold(email)) WHERE is_active = 1;
        CREATE UNIQUE INDEX IF NOT EXISTS ux_members_phone_active
            ON members(phone) WHERE is_active = 1 AND phone IS NOT NULL;
        CREATE UNIQUE INDEX IF NOT EXISTS ux_members_user_active
            ON members(user_id) WHERE is_active = 1;

        -- One open loan per (member, book)
        CREATE UNIQUE INDEX IF NOT EXISTS ux_loans_member_book_borrowed
            ON loans(member_id, book_id) WHERE status = 'Borrowed';

        CREATE INDEX IF NOT EXISTS idx_books_author ON books(author);
        CREATE INDEX IF NOT EXISTS idx_books_category ON books(category_id);
        CREATE INDEX IF NOT EXISTS idx_loans_book_status ON loans(book_id, status);
        CREATE INDEX IF NOT EXISTS idx_loans_member_status ON loans(member_id, status);
        CREATE INDEX IF NOT EXISTS idx_loans_status_due ON loans(status, due_date);

        -- Never let Borrowed loans outnumber a book's copies
        CREATE TRIGGER IF NOT EXISTS trg_loans_no_overcommit
        BEFORE INSERT ON loans
        WHEN NEW.status = 'Borrowed'
            AND (SELECT COUNT(*) FROM loans
                 WHERE book_id = NEW.book_id AND status = 'Borrowed')
                >= (SELECT total_copies FROM books WHERE id = NEW.book_id)
        BEGIN
            SELECT RAISE(ABORT, 'no copies available');
        END;
    """)


def initialize_database(db_file: Optional[str] = None) -> None:
    """Create the schema and switch the database to WAL journaling."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        create_tables(conn)
    finally:
        conn.close()
    logger.info("Database ready at %s", db_file or DATABASE_FILE)


def is_database_reachable(db_file: Optional[str] = None) -> bool:
    try:
        conn = get_db_connection(db_file)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
        return True
    except sqlite3.Error:
        return False
