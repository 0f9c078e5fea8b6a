from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


# --- Books ---
class BookPayload(BaseModel):
    isbn: str = Field(..., description="ISBN-10 or ISBN-13; hyphens and spaces are ignored")
    title: str
    author: str
    publisher: str | None = None
    publication_year: int | None = None
    genre: str | None = None
    description: str | None = None
    total_copies: int = Field(1, ge=0)
    location: str | None = None
    cover_image_url: str | None = None
    category_id: int | None = None
    created_by: int | None = None


class BookModel(BaseModel):
    id: int
    isbn: str
    title: str
    author: str
    publisher: str | None = None
    publication_year: int | None = None
    genre: str | None = None
    description: str | None = None
    total_copies: int
    available_copies: int
    location: str | None = None
    cover_image_url: str | None = None
    category_id: int | None = None
    category_name: str | None = None
    created_by: int | None = None
    is_active: bool
    created_at: str | None = None
    updated_at: str | None = None


class AvailabilityModel(BaseModel):
    book_id: int
    available_copies: int
    is_available: bool


# --- Categories ---
class CategoryPayload(BaseModel):
    name: str
    description: str | None = None


class CategoryModel(BaseModel):
    id: int
    name: str
    description: str | None = None
    is_active: bool
    created_at: str | None = None
    book_count: int | None = None


# --- Members ---
class MemberCreatePayload(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None
    member_number: str | None = Field(None, description="Generated when omitted")
    membership_expiry_date: date | None = None


class MemberUpdatePayload(BaseModel):
    first_name: str
    last_name: str
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None
    membership_status: str | None = None
    membership_expiry_date: date | None = None


class MemberModel(BaseModel):
    id: int
    user_id: int
    member_number: str
    first_name: str
    last_name: str
    full_name: str
    phone: str | None = None
    address: str | None = None
    date_of_birth: str | None = None
    membership_date: str | None = None
    membership_expiry_date: str | None = None
    membership_status: str
    is_active: bool
    created_at: str | None = None
    updated_at: str | None = None
    active_loans_count: int = 0
    username: str | None = None
    email: str | None = None


# --- Users ---
class UserCreatePayload(BaseModel):
    username: str
    email: str
    password: str = Field(..., min_length=1)
    role: str = "Member"


class UserUpdatePayload(BaseModel):
    username: str
    email: str
    role: str = "Member"
    password: str | None = Field(None, description="Only replaced when provided")


class SignUpPayload(BaseModel):
    username: str
    email: str
    password: str = Field(..., min_length=1)
    confirm_password: str


class LoginPayload(BaseModel):
    username: str
    password: str


class UserModel(BaseModel):
    id: int
    username: str
    email: str
    role: str
    is_active: bool
    last_login_date: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    member_id: int | None = None


# --- Loans ---
class BorrowRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    member_id: int = Field(..., alias="memberId")
    book_id: int = Field(..., alias="bookId")
    notes: str | None = None


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    loan_id: int = Field(..., alias="loanId")


class LoanUpdatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    due_date: datetime | None = Field(None, alias="dueDate")
    notes: str | None = None


class LoanModel(BaseModel):
    id: int
    book_id: int
    member_id: int
    loan_date: str
    due_date: str
    return_date: str | None = None
    status: str
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    book_title: str | None = None
    book_isbn: str | None = None
    member_name: str | None = None
    member_number: str | None = None
    is_overdue: bool = False
    days_overdue: int = 0


# --- Misc ---
class CountModel(BaseModel):
    count: int


class UniqueModel(BaseModel):
    is_unique: bool


class ActiveLoanCheckModel(BaseModel):
    has_active_loan: bool


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    unique_authors: int
    total_categories: int
    active_members: int
    active_loans: int
    overdue_loans: int


class HealthModel(BaseModel):
    status: str
    timestamp: str
    db: bool
