import logging
from datetime import date
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, Security
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader

from . import database
from .config import settings
from .errors import BusinessRuleError, NotFoundError
from .library import Library
from .models import Book, Category, Member, MembershipStatus, User, UserRole, utcnow
from .schemas import (
    ActiveLoanCheckModel,
    AvailabilityModel,
    BookModel,
    BookPayload,
    BorrowRequest,
    CategoryModel,
    CategoryPayload,
    CountModel,
    HealthModel,
    LoanModel,
    LoanUpdatePayload,
    LoginPayload,
    MemberCreatePayload,
    MemberModel,
    MemberUpdatePayload,
    ReturnRequest,
    SignUpPayload,
    StatsModel,
    UniqueModel,
    UserCreatePayload,
    UserModel,
    UserUpdatePayload,
)

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_library() -> Library:
    """Shared Library instance; tests swap it out through ``app.dependency_overrides``."""
    return Library()


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)):
    """Dependency that validates the API key on mutating endpoints."""
    if api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Error handling ---
@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(BusinessRuleError)
async def business_rule_handler(request: Request, exc: BusinessRuleError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Request validation failed.", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "An error occurred while processing your request.", "details": str(exc)},
    )


def _created(response: Response, location: str, payload: dict) -> dict:
    response.headers["Location"] = location
    return payload


def _require(entity, label: str, entity_id: int):
    if entity is None:
        raise NotFoundError(f"{label} with ID {entity_id} not found.")
    return entity


def _parse_role(raw: str) -> UserRole:
    role = UserRole.parse(raw)
    if role is None:
        raise BusinessRuleError(f"Invalid role: {raw!r}.")
    return role


# --- Health ---
@app.get("/health", response_model=HealthModel)
def health(lib: Library = Depends(get_library)):
    """Lightweight health endpoint with a quick database round trip."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "db": database.is_database_reachable(lib.db_file),
    }


@app.get("/api/stats", response_model=StatsModel)
def get_stats(lib: Library = Depends(get_library)):
    return lib.get_statistics()


# --- Books ---
@app.get("/api/books", response_model=List[BookModel])
def list_books(lib: Library = Depends(get_library)):
    return [b.to_dict() for b in lib.books.list_books()]


@app.get("/api/books/available", response_model=List[BookModel])
def list_available_books(lib: Library = Depends(get_library)):
    return [b.to_dict() for b in lib.books.list_available()]


@app.get("/api/books/check-isbn-unique", response_model=UniqueModel)
def check_isbn_unique(isbn: str = Query(...), exclude_id: Optional[int] = Query(None),
                      lib: Library = Depends(get_library)):
    return {"is_unique": lib.books.is_isbn_unique(isbn, exclude_id)}


@app.get("/api/books/author/{author}", response_model=List[BookModel])
def books_by_author(author: str, lib: Library = Depends(get_library)):
    return [b.to_dict() for b in lib.books.find_by_author(author)]


@app.get("/api/books/category/{category_id}", response_model=List[BookModel])
def books_by_category(category_id: int, lib: Library = Depends(get_library)):
    return [b.to_dict() for b in lib.books.find_by_category(category_id)]


@app.get("/api/books/{book_id}", response_model=BookModel)
def get_book(book_id: int, lib: Library = Depends(get_library)):
    return _require(lib.books.get_book(book_id), "Book", book_id).to_dict()


@app.get("/api/books/{book_id}/availability", response_model=AvailabilityModel)
def book_availability(book_id: int, lib: Library = Depends(get_library)):
    available = lib.books.available_copies(book_id)
    return {"book_id": book_id, "available_copies": available, "is_available": available > 0}


@app.post("/api/books", response_model=BookModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_book(payload: BookPayload, response: Response, lib: Library = Depends(get_library)):
    book = lib.books.create_book(Book(**payload.model_dump()))
    return _created(response, f"/api/books/{book.id}", book.to_dict())


@app.put("/api/books/{book_id}", response_model=BookModel, dependencies=[Depends(get_api_key)])
def update_book(book_id: int, payload: BookPayload, lib: Library = Depends(get_library)):
    book = Book(**payload.model_dump())
    book.id = book_id
    return lib.books.update_book(book).to_dict()


@app.delete("/api/books/{book_id}", status_code=204, dependencies=[Depends(get_api_key)])
def delete_book(book_id: int, lib: Library = Depends(get_library)):
    lib.books.delete_book(book_id)
    return Response(status_code=204)


# --- Categories ---
@app.get("/api/categories", response_model=List[CategoryModel])
def list_categories(lib: Library = Depends(get_library)):
    return [c.to_dict() for c in lib.categories.list_categories()]


@app.get("/api/categories/with-book-count", response_model=List[CategoryModel])
def list_categories_with_book_count(lib: Library = Depends(get_library)):
    return [c.to_dict() for c in lib.categories.list_with_book_count()]


@app.get("/api/categories/check-name-unique", response_model=UniqueModel)
def check_category_name_unique(name: str = Query(...), exclude_id: Optional[int] = Query(None),
                               lib: Library = Depends(get_library)):
    return {"is_unique": lib.categories.is_name_unique(name, exclude_id)}


@app.get("/api/categories/{category_id}", response_model=CategoryModel)
def get_category(category_id: int, lib: Library = Depends(get_library)):
    return _require(lib.categories.get_category(category_id), "Category", category_id).to_dict()


@app.get("/api/categories/{category_id}/book-count", response_model=CountModel)
def category_book_count(category_id: int, lib: Library = Depends(get_library)):
    return {"count": lib.categories.book_count(category_id)}


@app.post("/api/categories", response_model=CategoryModel, status_code=201,
          dependencies=[Depends(get_api_key)])
def create_category(payload: CategoryPayload, response: Response, lib: Library = Depends(get_library)):
    category = lib.categories.create_category(Category(**payload.model_dump()))
    return _created(response, f"/api/categories/{category.id}", category.to_dict())


@app.put("/api/categories/{category_id}", response_model=CategoryModel, dependencies=[Depends(get_api_key)])
def update_category(category_id: int, payload: CategoryPayload, lib: Library = Depends(get_library)):
    category = Category(**payload.model_dump())
    category.id = category_id
    return lib.categories.update_category(category).to_dict()


@app.delete("/api/categories/{category_id}", status_code=204, dependencies=[Depends(get_api_key)])
def delete_category(category_id: int, lib: Library = Depends(get_library)):
    lib.categories.delete_category(category_id)
    return Response(status_code=204)


# --- Members ---
@app.get("/api/members", response_model=List[MemberModel])
def list_members(lib: Library = Depends(get_library)):
    return [m.to_dict() for m in lib.members.list_all()]


@app.get("/api/members/active", response_model=List[MemberModel])
def list_active_members(lib: Library = Depends(get_library)):
    return [m.to_dict() for m in lib.members.list_active()]


@app.get("/api/members/with-active-loans", response_model=List[MemberModel])
def list_members_with_active_loans(lib: Library = Depends(get_library)):
    return [m.to_dict() for m in lib.members.list_with_active_loans()]


@app.get("/api/members/with-user-info", response_model=List[MemberModel])
def list_members_with_user_info(lib: Library = Depends(get_library)):
    return [m.to_dict() for m in lib.members.list_with_user_info()]


@app.get("/api/members/check-phone-unique", response_model=UniqueModel)
def check_phone_unique(phone: str = Query(...), exclude_id: Optional[int] = Query(None),
                       lib: Library = Depends(get_library)):
    return {"is_unique": lib.members.is_phone_unique(phone, exclude_id)}


@app.get("/api/members/by-user/{user_id}", response_model=MemberModel)
def member_by_user(user_id: int, lib: Library = Depends(get_library)):
    member = lib.members.find_by_user_id(user_id)
    if member is None:
        raise NotFoundError(f"No active member for user with ID {user_id}.")
    return member.to_dict()


@app.get("/api/members/{member_id}", response_model=MemberModel)
def get_member(member_id: int, lib: Library = Depends(get_library)):
    return _require(lib.members.get_member(member_id), "Member", member_id).to_dict()


@app.get("/api/members/{member_id}/active-loans-count", response_model=CountModel)
def member_active_loans_count(member_id: int, lib: Library = Depends(get_library)):
    return {"count": lib.members.active_loan_count(member_id)}


@app.post("/api/members", response_model=MemberModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_member(payload: MemberCreatePayload, response: Response, lib: Library = Depends(get_library)):
    member = lib.members.create_member(Member(**payload.model_dump()))
    return _created(response, f"/api/members/{member.id}", member.to_dict())


@app.put("/api/members/{member_id}", response_model=MemberModel, dependencies=[Depends(get_api_key)])
def update_member(member_id: int, payload: MemberUpdatePayload, lib: Library = Depends(get_library)):
    data = payload.model_dump()
    raw_status = data.pop("membership_status")
    existing = _require(lib.members.get_member(member_id), "Member", member_id)
    # Omitted status keeps the current one
    status = existing.membership_status if raw_status is None else MembershipStatus.parse(raw_status)
    if status is None:
        raise BusinessRuleError(f"Invalid membership status: {raw_status!r}.")
    member = Member(user_id=existing.user_id, membership_status=status, **data)
    member.id = member_id
    return lib.members.update_member(member).to_dict()


@app.delete("/api/members/{member_id}", status_code=204, dependencies=[Depends(get_api_key)])
def delete_member(member_id: int, lib: Library = Depends(get_library)):
    lib.members.delete_member(member_id)
    return Response(status_code=204)


# --- Users ---
@app.get("/api/users", response_model=List[UserModel])
def list_users(lib: Library = Depends(get_library)):
    return [u.to_dict() for u in lib.users.list_users()]


@app.get("/api/users/by-role", response_model=List[UserModel])
def users_by_role(role: str = Query(...), lib: Library = Depends(get_library)):
    return [u.to_dict() for u in lib.users.find_by_role(role)]


@app.get("/api/users/by-username", response_model=UserModel)
def user_by_username(username: str = Query(...), lib: Library = Depends(get_library)):
    user = lib.users.find_by_username(username)
    if user is None:
        raise NotFoundError(f"User '{username}' not found.")
    return user.to_dict()


@app.get("/api/users/by-email", response_model=UserModel)
def user_by_email(email: str = Query(...), lib: Library = Depends(get_library)):
    user = lib.users.find_by_email(email)
    if user is None:
        raise NotFoundError(f"User with email '{email}' not found.")
    return user.to_dict()


@app.get("/api/users/check-username-unique", response_model=UniqueModel)
def check_username_unique(username: str = Query(...), exclude_id: Optional[int] = Query(None),
                          lib: Library = Depends(get_library)):
    return {"is_unique": lib.users.is_username_unique(username, exclude_id)}


@app.get("/api/users/check-email-unique", response_model=UniqueModel)
def check_email_unique(email: str = Query(...), exclude_id: Optional[int] = Query(None),
                       lib: Library = Depends(get_library)):
    return {"is_unique": lib.users.is_email_unique(email, exclude_id)}


@app.get("/api/users/{user_id}", response_model=UserModel)
def get_user(user_id: int, lib: Library = Depends(get_library)):
    return _require(lib.users.get_user(user_id), "User", user_id).to_dict()


@app.post("/api/users/login", response_model=UserModel)
def login(payload: LoginPayload, lib: Library = Depends(get_library)):
    user = lib.users.authenticate(payload.username, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password.")
    return user.to_dict()


@app.post("/api/users", response_model=UserModel, status_code=201, dependencies=[Depends(get_api_key)])
def create_user(payload: UserCreatePayload, response: Response, lib: Library = Depends(get_library)):
    user = User(username=payload.username, email=payload.email, role=_parse_role(payload.role))
    created = lib.users.create_user(user, payload.password)
    return _created(response, f"/api/users/{created.id}", created.to_dict())


def _sign_up(payload: SignUpPayload, role: UserRole, response: Response, lib: Library) -> dict:
    if payload.password != payload.confirm_password:
        raise BusinessRuleError("Password and confirmation password do not match.")
    user = lib.users.sign_up(payload.username, payload.email, payload.password, role)
    return _created(response, f"/api/users/{user.id}", user.to_dict())


@app.post("/api/users/signup", response_model=UserModel, status_code=201)
def sign_up(payload: SignUpPayload, response: Response, lib: Library = Depends(get_library)):
    return _sign_up(payload, UserRole.MEMBER, response, lib)


@app.post("/api/users/signup-admin", response_model=UserModel, status_code=201,
          dependencies=[Depends(get_api_key)])
def sign_up_admin(payload: SignUpPayload, response: Response, lib: Library = Depends(get_library)):
    return _sign_up(payload, UserRole.ADMIN, response, lib)


@app.put("/api/users/{user_id}", response_model=UserModel, dependencies=[Depends(get_api_key)])
def update_user(user_id: int, payload: UserUpdatePayload, lib: Library = Depends(get_library)):
    user = User(username=payload.username, email=payload.email, role=_parse_role(payload.role))
    user.id = user_id
    return lib.users.update_user(user, payload.password).to_dict()


@app.delete("/api/users/{user_id}", status_code=204, dependencies=[Depends(get_api_key)])
def delete_user(user_id: int, lib: Library = Depends(get_library)):
    lib.users.delete_user(user_id)
    return Response(status_code=204)


# --- Loans ---
@app.get("/api/loans", response_model=List[LoanModel])
def list_loans(lib: Library = Depends(get_library)):
    return [loan.to_dict() for loan in lib.loans.all_loans()]


@app.get("/api/loans/active", response_model=List[LoanModel])
def list_active_loans(lib: Library = Depends(get_library)):
    return [loan.to_dict() for loan in lib.loans.active_loans()]


@app.get("/api/loans/overdue", response_model=List[LoanModel])
def list_overdue_loans(today: Optional[date] = Query(None, description="Defaults to the current UTC date"),
                       lib: Library = Depends(get_library)):
    return [loan.to_dict(today) for loan in lib.loans.overdue_loans(today)]


@app.get("/api/loans/by-status", response_model=List[LoanModel])
def loans_by_status(status: str = Query(...), lib: Library = Depends(get_library)):
    return [loan.to_dict() for loan in lib.loans.loans_by_status(status)]


@app.get("/api/loans/by-member/{member_id}", response_model=List[LoanModel])
def loans_by_member(member_id: int, lib: Library = Depends(get_library)):
    return [loan.to_dict() for loan in lib.loans.loans_by_member(member_id)]


@app.get("/api/loans/by-book/{book_id}", response_model=List[LoanModel])
def loans_by_book(book_id: int, lib: Library = Depends(get_library)):
    return [loan.to_dict() for loan in lib.loans.loans_by_book(book_id)]


@app.get("/api/loans/member/{member_id}/active-count", response_model=CountModel)
def member_active_loan_count(member_id: int, lib: Library = Depends(get_library)):
    return {"count": lib.loans.active_loan_count_by_member(member_id)}


@app.get("/api/loans/book/{book_id}/active-count", response_model=CountModel)
def book_active_loan_count(book_id: int, lib: Library = Depends(get_library)):
    return {"count": lib.loans.active_loan_count_by_book(book_id)}


@app.get("/api/loans/check-active", response_model=ActiveLoanCheckModel)
def check_active_loan(member_id: int = Query(...), book_id: int = Query(...),
                      lib: Library = Depends(get_library)):
    return {"has_active_loan": lib.loans.has_active_loan(member_id, book_id)}


@app.get("/api/loans/{loan_id}", response_model=LoanModel)
def get_loan(loan_id: int, lib: Library = Depends(get_library)):
    return _require(lib.loans.get_loan(loan_id), "Loan", loan_id).to_dict()


@app.post("/api/loans/borrow", response_model=LoanModel, status_code=201, dependencies=[Depends(get_api_key)])
def borrow_book(payload: BorrowRequest, response: Response, lib: Library = Depends(get_library)):
    loan = lib.loans.borrow(payload.member_id, payload.book_id, payload.notes)
    return _created(response, f"/api/loans/{loan.id}", loan.to_dict())


@app.post("/api/loans/return", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def return_book(payload: ReturnRequest, lib: Library = Depends(get_library)):
    return lib.loans.return_book(payload.loan_id).to_dict()


@app.put("/api/loans/{loan_id}", response_model=LoanModel, dependencies=[Depends(get_api_key)])
def update_loan(loan_id: int, payload: LoanUpdatePayload, lib: Library = Depends(get_library)):
    return lib.loans.update_loan(loan_id, due_date=payload.due_date, notes=payload.notes).to_dict()


@app.delete("/api/loans/{loan_id}", status_code=204, dependencies=[Depends(get_api_key)])
def delete_loan(loan_id: int, lib: Library = Depends(get_library)):
    lib.loans.delete_loan(loan_id)
    return Response(status_code=204)
