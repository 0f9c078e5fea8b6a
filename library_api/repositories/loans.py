"""The loan ledger.

Loans are the source of truth for availability: book copy counts and member
loan counts are always derived from rows here with ``status = 'Borrowed'``.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional

from . import translate_integrity_error
from ..errors import ConflictError, NoCopiesAvailableError
from ..models import Loan, LoanStatus, to_iso

_SELECT = """
    SELECT l.*,
           b.title AS book_title,
           b.isbn AS book_isbn,
           m.first_name || ' ' || m.last_name AS member_name,
           m.member_number AS member_number
    FROM loans l
    JOIN books b ON b.id = l.book_id
    JOIN members m ON m.id = l.member_id
"""
_NEWEST_FIRST = " ORDER BY l.loan_date DESC, l.id DESC"


def _fetch_all(conn: sqlite3.Connection, sql: str, params: tuple = ()) -> List[Loan]:
    return [Loan.from_row(row) for row in conn.execute(sql, params).fetchall()]


def get_by_id(conn: sqlite3.Connection, loan_id: int) -> Optional[Loan]:
    row = conn.execute(f"{_SELECT} WHERE l.id = ?", (loan_id,)).fetchone()
    return Loan.from_row(row) if row else None


def list_all(conn: sqlite3.Connection) -> List[Loan]:
    return _fetch_all(conn, _SELECT + _NEWEST_FIRST)


def list_by_status(conn: sqlite3.Connection, status: LoanStatus) -> List[Loan]:
    return _fetch_all(conn, f"{_SELECT} WHERE l.status = ?{_NEWEST_FIRST}", (status.value,))


def list_overdue(conn: sqlite3.Connection, cutoff: datetime) -> List[Loan]:
    """Borrowed loans due strictly before ``cutoff``, earliest due date first."""
    return _fetch_all(
        conn,
        f"{_SELECT} WHERE l.status = 'Borrowed' AND l.due_date < ? ORDER BY l.due_date ASC, l.id",
        (to_iso(cutoff),),
    )


def list_by_member(conn: sqlite3.Connection, member_id: int) -> List[Loan]:
    return _fetch_all(conn, f"{_SELECT} WHERE l.member_id = ?{_NEWEST_FIRST}", (member_id,))


def list_by_book(conn: sqlite3.Connection, book_id: int) -> List[Loan]:
    return _fetch_all(conn, f"{_SELECT} WHERE l.book_id = ?{_NEWEST_FIRST}", (book_id,))


def count_active_by_member(conn: sqlite3.Connection, member_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM loans WHERE member_id = ? AND status = 'Borrowed'", (member_id,)
    ).fetchone()
    return row[0]


def count_active_by_book(conn: sqlite3.Connection, book_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM loans WHERE book_id = ? AND status = 'Borrowed'", (book_id,)
    ).fetchone()
    return row[0]


def has_active_loan(conn: sqlite3.Connection, member_id: int, book_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM loans WHERE member_id = ? AND book_id = ? AND status = 'Borrowed'",
        (member_id, book_id),
    ).fetchone()
    return row is not None


def insert(conn: sqlite3.Connection, loan: Loan) -> int:
    try:
        cursor = conn.execute(
            """
            INSERT INTO loans (book_id, member_id, loan_date, due_date, return_date, status,
                               notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (loan.book_id, loan.member_id, to_iso(loan.loan_date), to_iso(loan.due_date),
             to_iso(loan.return_date), loan.status.value, loan.notes,
             to_iso(loan.created_at), to_iso(loan.updated_at)),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(exc, [
            ("no copies available",
             NoCopiesAvailableError(f"Book with ID {loan.book_id} has no available copies.")),
            ("loans.member_id",
             ConflictError(f"Member {loan.member_id} already has book {loan.book_id} borrowed.")),
        ]) from exc
    return cursor.lastrowid


def mark_returned(conn: sqlite3.Connection, loan_id: int, when: datetime) -> bool:
    """Move a Borrowed loan to Returned. Returns False if it was not Borrowed."""
    cursor = conn.execute(
        """
        UPDATE loans SET status = ?, return_date = ?, updated_at = ?
        WHERE id = ? AND status = 'Borrowed'
        """,
        (LoanStatus.RETURNED.value, to_iso(when), to_iso(when), loan_id),
    )
    return cursor.rowcount == 1


def update_details(conn: sqlite3.Connection, loan: Loan) -> None:
    conn.execute(
        "UPDATE loans SET due_date = ?, notes = ?, updated_at = ? WHERE id = ?",
        (to_iso(loan.due_date), loan.notes, to_iso(loan.updated_at), loan.id),
    )


def delete(conn: sqlite3.Connection, loan_id: int) -> None:
    conn.execute("DELETE FROM loans WHERE id = ? AND status != 'Borrowed'", (loan_id,))
