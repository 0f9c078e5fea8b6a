from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime | date]) -> Optional[str]:
    """Serialize for storage; datetimes are normalized to UTC so text order is time order."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    return value.isoformat()


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp read from SQLite into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class _CaseInsensitiveEnum(str, Enum):
    @classmethod
    def parse(cls, raw: Optional[str]):
        """Return the member matching ``raw`` ignoring case, or None."""
        if raw is None:
            return None
        needle = raw.strip().lower()
        for member in cls:
            if member.value.lower() == needle:
                return member
        return None


class LoanStatus(_CaseInsensitiveEnum):
    BORROWED = "Borrowed"
    RETURNED = "Returned"


class MembershipStatus(_CaseInsensitiveEnum):
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    EXPIRED = "Expired"


class UserRole(_CaseInsensitiveEnum):
    ADMIN = "Admin"
    LIBRARIAN = "Librarian"
    MEMBER = "Member"


@dataclass
class Category:
    name: str
    description: Optional[str] = None
    id: Optional[int] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    # Count of active books, filled by the queries that join it in
    book_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
        }
        if self.book_count is not None:
            data["book_count"] = self.book_count
        return data

    @staticmethod
    def from_row(row) -> "Category":
        data = dict(row)
        return Category(
            id=data["id"],
            name=data["name"],
            description=data.get("description"),
            is_active=bool(data["is_active"]),
            created_at=parse_datetime(data.get("created_at")),
            book_count=data.get("book_count"),
        )


@dataclass
class Book:
    isbn: str
    title: str
    author: str
    publisher: Optional[str] = None
    publication_year: Optional[int] = None
    genre: Optional[str] = None
    description: Optional[str] = None
    total_copies: int = 1
    location: Optional[str] = None
    cover_image_url: Optional[str] = None
    category_id: Optional[int] = None
    created_by: Optional[int] = None
    id: Optional[int] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Derived from the loan ledger on read, never persisted
    available_copies: int = 0
    category_name: Optional[str] = None

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "isbn": self.isbn,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "publication_year": self.publication_year,
            "genre": self.genre,
            "description": self.description,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "location": self.location,
            "cover_image_url": self.cover_image_url,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "created_by": self.created_by,
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    @staticmethod
    def from_row(row) -> "Book":
        data = dict(row)
        return Book(
            id=data["id"],
            isbn=data["isbn"],
            title=data["title"],
            author=data["author"],
            publisher=data.get("publisher"),
            publication_year=data.get("publication_year"),
            genre=data.get("genre"),
            description=data.get("description"),
            total_copies=data["total_copies"],
            location=data.get("location"),
            cover_image_url=data.get("cover_image_url"),
            category_id=data.get("category_id"),
            created_by=data.get("created_by"),
            is_active=bool(data["is_active"]),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            available_copies=data.get("available_copies") or 0,
            category_name=data.get("category_name"),
        )


@dataclass
class User:
    username: str
    email: str
    password_hash: str = ""
    role: UserRole = UserRole.MEMBER
    id: Optional[int] = None
    is_active: bool = True
    last_login_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    member_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        # password_hash never leaves the service layer
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role.value,
            "is_active": self.is_active,
            "last_login_date": to_iso(self.last_login_date),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "member_id": self.member_id,
        }

    @staticmethod
    def from_row(row) -> "User":
        data = dict(row)
        return User(
            id=data["id"],
            username=data["username"],
            email=data["email"],
            password_hash=data["password_hash"],
            role=UserRole(data["role"]),
            is_active=bool(data["is_active"]),
            last_login_date=parse_datetime(data.get("last_login_date")),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            member_id=data.get("member_id"),
        )


@dataclass
class Member:
    user_id: int
    first_name: str
    last_name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    member_number: Optional[str] = None
    membership_date: Optional[datetime] = None
    membership_expiry_date: Optional[date] = None
    membership_status: MembershipStatus = MembershipStatus.ACTIVE
    id: Optional[int] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    active_loans_count: int = 0
    # Filled only by the listing that joins the owning user
    username: Optional[str] = None
    email: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "member_number": self.member_number,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "phone": self.phone,
            "address": self.address,
            "date_of_birth": to_iso(self.date_of_birth),
            "membership_date": to_iso(self.membership_date),
            "membership_expiry_date": to_iso(self.membership_expiry_date),
            "membership_status": self.membership_status.value,
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "active_loans_count": self.active_loans_count,
            "username": self.username,
            "email": self.email,
        }

    @staticmethod
    def from_row(row) -> "Member":
        data = dict(row)
        return Member(
            id=data["id"],
            user_id=data["user_id"],
            member_number=data["member_number"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            phone=data.get("phone"),
            address=data.get("address"),
            date_of_birth=parse_date(data.get("date_of_birth")),
            membership_date=parse_datetime(data.get("membership_date")),
            membership_expiry_date=parse_date(data.get("membership_expiry_date")),
            membership_status=MembershipStatus(data["membership_status"]),
            is_active=bool(data["is_active"]),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            active_loans_count=data.get("active_loans_count") or 0,
            username=data.get("username"),
            email=data.get("email"),
        )


@dataclass
class Loan:
    book_id: int
    member_id: int
    loan_date: datetime
    due_date: datetime
    status: LoanStatus = LoanStatus.BORROWED
    return_date: Optional[datetime] = None
    notes: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Details joined in by the ledger queries
    book_title: Optional[str] = None
    book_isbn: Optional[str] = None
    member_name: Optional[str] = None
    member_number: Optional[str] = None

    def is_overdue(self, today: Optional[date] = None) -> bool:
        today = today or utcnow().date()
        return self.status == LoanStatus.BORROWED and self.due_date < start_of_day(today)

    def days_overdue(self, today: Optional[date] = None) -> int:
        today = today or utcnow().date()
        if not self.is_overdue(today):
            return 0
        return (today - self.due_date.date()).days

    def to_dict(self, today: Optional[date] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "member_id": self.member_id,
            "loan_date": to_iso(self.loan_date),
            "due_date": to_iso(self.due_date),
            "return_date": to_iso(self.return_date),
            "status": self.status.value,
            "notes": self.notes,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "book_title": self.book_title,
            "book_isbn": self.book_isbn,
            "member_name": self.member_name,
            "member_number": self.member_number,
            "is_overdue": self.is_overdue(today),
            "days_overdue": self.days_overdue(today),
        }

    @staticmethod
    def from_row(row) -> "Loan":
        data = dict(row)
        return Loan(
            id=data["id"],
            book_id=data["book_id"],
            member_id=data["member_id"],
            loan_date=parse_datetime(data["loan_date"]),
            due_date=parse_datetime(data["due_date"]),
            return_date=parse_datetime(data.get("return_date")),
            status=LoanStatus(data["status"]),
            notes=data.get("notes"),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            book_title=data.get("book_title"),
            book_isbn=data.get("book_isbn"),
            member_name=data.get("member_name"),
            member_number=data.get("member_number"),
        )
