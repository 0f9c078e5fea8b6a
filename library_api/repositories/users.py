import sqlite3
from datetime import datetime
from typing import List, Optional

from . import translate_integrity_error
from ..errors import DuplicateKeyError
from ..models import User, UserRole, to_iso

_SELECT = """
    SELECT u.*,
           (SELECT m.id FROM members m
            WHERE m.user_id = u.id AND m.is_active = 1) AS member_id
    FROM users u
"""


def get_by_id(conn: sqlite3.Connection, user_id: int) -> Optional[User]:
    row = conn.execute(f"{_SELECT} WHERE u.id = ?", (user_id,)).fetchone()
    return User.from_row(row) if row else None


def list_active(conn: sqlite3.Connection) -> List[User]:
    rows = conn.execute(f"{_SELECT} WHERE u.is_active = 1 ORDER BY u.username COLLATE NOCASE").fetchall()
    return [User.from_row(row) for row in rows]


def find_by_username(conn: sqlite3.Connection, username: str) -> Optional[User]:
    row = conn.execute(
        f"{_SELECT} WHERE casefold(u.username) = casefold(?) AND u.is_active = 1", (username,)
    ).fetchone()
    return User.from_row(row) if row else None


def find_by_email(conn: sqlite3.Connection, email: str) -> Optional[User]:
    row = conn.execute(
        f"{_SELECT} WHERE casefold(u.email) = casefold(?) AND u.is_active = 1", (email,)
    ).fetchone()
    return User.from_row(row) if row else None


def find_by_role(conn: sqlite3.Connection, role: UserRole) -> List[User]:
    rows = conn.execute(
        f"{_SELECT} WHERE u.role = ? AND u.is_active = 1 ORDER BY u.username COLLATE NOCASE",
        (role.value,),
    ).fetchall()
    return [User.from_row(row) for row in rows]


def _is_unique(conn: sqlite3.Connection, column: str, value: str, exclude_id: Optional[int]) -> bool:
    sql = f"SELECT 1 FROM users WHERE casefold({column}) = casefold(?) AND is_active = 1"
    params: tuple = (value,)
    if exclude_id is not None:
        sql += " AND id != ?"
        params += (exclude_id,)
    return conn.execute(sql, params).fetchone() is None


def is_username_unique(conn: sqlite3.Connection, username: str, exclude_id: Optional[int] = None) -> bool:
    return _is_unique(conn, "username", username, exclude_id)


def is_email_unique(conn: sqlite3.Connection, email: str, exclude_id: Optional[int] = None) -> bool:
    return _is_unique(conn, "email", email, exclude_id)


def _rules(user: User):
    return [
        ("username", DuplicateKeyError(f"User with username '{user.username}' already exists.")),
        ("email", DuplicateKeyError(f"User with email '{user.email}' already exists.")),
    ]


def insert(conn: sqlite3.Connection, user: User) -> int:
    try:
        cursor = conn.execute(
            """
            INSERT INTO users (username, email, password_hash, role, is_active,
                               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user.username, user.email, user.password_hash, user.role.value,
             int(user.is_active), to_iso(user.created_at), to_iso(user.updated_at)),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(exc, _rules(user)) from exc
    return cursor.lastrowid


def update(conn: sqlite3.Connection, user: User) -> None:
    try:
        conn.execute(
            """
            UPDATE users
            SET username = ?, email = ?, role = ?, password_hash = ?, updated_at = ?
            WHERE id = ?
            """,
            (user.username, user.email, user.role.value, user.password_hash,
             to_iso(user.updated_at), user.id),
        )
    except sqlite3.IntegrityError as exc:
        raise translate_integrity_error(exc, _rules(user)) from exc


def set_active(conn: sqlite3.Connection, user_id: int, is_active: bool, updated_at: datetime) -> None:
    conn.execute(
        "UPDATE users SET is_active = ?, updated_at = ? WHERE id = ?",
        (int(is_active), to_iso(updated_at), user_id),
    )


def set_last_login(conn: sqlite3.Connection, user_id: int, when: datetime) -> None:
    conn.execute("UPDATE users SET last_login_date = ? WHERE id = ?", (to_iso(when), user_id))
