import sqlite3
from datetime import datetime
from typing import List, Optional

from . import translate_integrity_error
from ..errors import DuplicateKeyError
from ..models import Member, MembershipStatus, to_iso

_SELECT = """
    SELECT m.*,
           (SELECT COUNT(*) FROM loans l
            WHERE l.member_id = m.id AND l.status = 'Borrowed') AS active_loans_count
    FROM members m
"""
_ORDER = " ORDER BY m.last_name COLLATE NOCASE, m.first_name COLLATE NOCASE, m.id"


def get_by_id(conn: sqlite3.Connection, member_id: int) -> Optional[Member]:
    row = conn.execute(f"{_SELECT} WHERE m.id = ?", (member_id,)).fetchone()
    return Member.from_row(row) if row else None


def list_all(conn: sqlite3.Connection) -> List[Member]:
    return [Member.from_row(row) for row in conn.execute(_SELECT + _ORDER).fetchall()]


def list_active(conn: sqlite3.Connection) -> List[Member]:
    rows = conn.execute(f"{_SELECT} WHERE m.is_active = 1{_ORDER}").fetchall()
    return [Member.from_row(row) for row in rows]


def list_with_user_info(conn: sqlite3.Connection) -> List[Member]:
    rows = conn.execute(
        f"""
        SELECT m.*, u.username, u.email,
               (SELECT COUNT(*) FROM loans l
                WHERE l.member_id = m.id AND l.status = 'Borrowed') AS active_loans_count
        FROM members m
        JOIN users u ON u.id = m.user_id
        WHERE m.is_active = 1{_ORDER}"""
    ).fetchall()
    return [Member.from_row(row) for row in rows]


def list_with_active_loans(conn: sqlite3.Connection) -> List[Member]:
    rows = conn.execute(
        f"""{_SELECT}
        WHERE m.is_active = 1
          AND EXISTS (SELECT 1 FROM loans l WHERE l.member_id = m.id AND l.status = 'Borrowed')
        {_ORDER}"""
    ).fetchall()
    return [Member.from_row(row) for row in rows]


def find_by_user_id(conn: sqlite3.Connection, user_id: int) -> Optional[Member]:
    row = conn.execute(f"{_SELECT} WHERE m.user_id = ? AND m.is_active = 1", (user_id,)).fetchone()
    return Member.from_row(row) if row else None


def is_phone_unique(conn: sqlite3.Connection, phone: str, exclude_id: Optional[int] = None) -> bool:
    sql = "SELECT 1 FROM members WHERE phone = ? AND is_active = 1"
    params: tuple = (phone,)
    if exclude_id is not None:
        sql += " AND id != ?"
        params += (exclude_id,)
    return conn.execute(sql, params).fetchone() is None


def is_member_number_taken(conn: sqlite3.Connection, member_number: str) -> bool:
    row = conn.execute("SELECT 1 FROM members WHERE member_number = ?", (member_number,)).fetchone()
    return row is not None


def next_member_number(conn: sqlite3.Connection) -> str:
    # Callers hold the write lock, so the sequence cannot be read twice
    row = conn.execute("SELECT COALESCE(MAX(id), 0) + 1 FROM members").fetchone()
    candidate = row[0]
    while is_member_number_taken(conn, f"MBR{candidate:06d}"):
        candidate += 1
    return f"MBR{candidate:06d}"


def active_loan_count(conn: sqlite3.Connection, member_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM loans WHERE member_id = ? AND status = 'Borrowed'", (member_id,)
    ).fetchone()
    return row[0]


def _rules(member: Member):
    return [
        ("phone", DuplicateKeyError(f"Member with phone number '{member.phone}' already exists.")),
        ("member_number", DuplicateKeyError(f"Member number '{member.member_number}' already exists.")),
        ("user_id", DuplicateKeyError(f"User with ID {member.user_id} already has a member record.")),
    ]


def insert(conn: sqlite3.Connection, member: Member) -> int:
    try:
        cursor = conn.execute(
            """
            INSERT INTO members (user_id, member_number, first_name, last_name, phone, address,
                                 date_of_birth, membership_date, membership_expiry_date,
                                 membership_status, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (member.user_id, member.member_number, member.first_name, member.last_name,
             member.phone, member.address, to_iso(member.date_of_birth),
             to_iso(member.membership_date), to_iso(member.membership_expiry_date),
             member.membership_status.value, int(member.is_active),
             to_iso(member.created_at), to_iso(member.updated_at)),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(exc, _rules(member)) from exc
    return cursor.lastrowid


def update(conn: sqlite3.Connection, member: Member) -> None:
    try:
        conn.execute(
            """
            UPDATE members
            SET first_name = ?, last_name = ?, phone = ?, address = ?, date_of_birth = ?,
                membership_status = ?, membership_expiry_date = ?, updated_at = ?
            WHERE id = ?
            """,
            (member.first_name, member.last_name, member.phone, member.address,
             to_iso(member.date_of_birth), member.membership_status.value,
             to_iso(member.membership_expiry_date), to_iso(member.updated_at), member.id),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(exc, _rules(member)) from exc


def deactivate(conn: sqlite3.Connection, member_id: int, updated_at: datetime) -> None:
    conn.execute(
        "UPDATE members SET is_active = 0, membership_status = ?, updated_at = ? WHERE id = ?",
        (MembershipStatus.SUSPENDED.value, to_iso(updated_at), member_id),
    )
