import logging
from typing import List, Optional

from .. import database
from ..errors import BusinessRuleError, ConflictError, DuplicateKeyError, NotFoundError
from ..models import Book, utcnow
from ..repositories import books, categories, loans
from ..validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)


class BookService:
    """Catalog operations; availability is always derived from the loan ledger."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Queries ------------------------- #
    def list_books(self) -> List[Book]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return books.list_active(conn)

    def get_book(self, book_id: int) -> Optional[Book]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return books.get_by_id(conn, book_id)

    def find_by_author(self, author: str) -> List[Book]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return books.find_by_author(conn, author.strip())

    def find_by_category(self, category_id: int) -> List[Book]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return books.find_by_category(conn, category_id)

    def list_available(self) -> List[Book]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return books.list_available(conn)

    def is_isbn_unique(self, isbn: str, exclude_id: Optional[int] = None) -> bool:
        with database.transaction(self.db_file, readonly=True) as conn:
            return books.is_isbn_unique(conn, ISBNValidator.normalize_isbn(isbn), exclude_id)

    def available_copies(self, book_id: int) -> int:
        """max(0, total copies - Borrowed loans); 0 for a soft-deleted book."""
        with database.transaction(self.db_file, readonly=True) as conn:
            count = books.available_copies(conn, book_id)
        if count is None:
            raise NotFoundError(f"Book with ID {book_id} not found.")
        return count

    def is_available(self, book_id: int) -> bool:
        return self.available_copies(book_id) > 0

    # ------------------------- Commands ------------------------- #
    def create_book(self, book: Book) -> Book:
        self._normalize(book)
        now = utcnow()
        book.created_at = now
        book.updated_at = now
        book.is_active = True
        with database.transaction(self.db_file) as conn:
            if not books.is_isbn_unique(conn, book.isbn):
                raise DuplicateKeyError(f"Book with ISBN {book.isbn} already exists.")
            self._check_category(conn, book.category_id)
            book_id = books.insert(conn, book)
            created = books.get_by_id(conn, book_id)
        logger.info("Book %s created (ISBN %s)", book_id, created.isbn)
        return created

    def update_book(self, book: Book) -> Book:
        self._normalize(book)
        with database.transaction(self.db_file) as conn:
            existing = books.get_by_id(conn, book.id)
            if existing is None:
                raise NotFoundError(f"Book with ID {book.id} not found.")
            if not books.is_isbn_unique(conn, book.isbn, exclude_id=book.id):
                raise DuplicateKeyError(f"Book with ISBN {book.isbn} already exists.")
            if book.category_id != existing.category_id:
                self._check_category(conn, book.category_id)
            borrowed = loans.count_active_by_book(conn, book.id)
            if book.total_copies < borrowed:
                raise ConflictError(
                    f"Book with ID {book.id} has {borrowed} copies on loan; "
                    f"total copies cannot be set to {book.total_copies}."
                )

            existing.isbn = book.isbn
            existing.title = book.title
            existing.author = book.author
            existing.publisher = book.publisher
            existing.publication_year = book.publication_year
            existing.genre = book.genre
            existing.description = book.description
            existing.total_copies = book.total_copies
            existing.location = book.location
            existing.cover_image_url = book.cover_image_url
            existing.category_id = book.category_id
            existing.updated_at = utcnow()
            books.update(conn, existing)
            updated = books.get_by_id(conn, book.id)
        logger.info("Book %s updated", book.id)
        return updated

    def delete_book(self, book_id: int) -> None:
        """Soft delete; refused while any copy is out on loan."""
        with database.transaction(self.db_file) as conn:
            if books.get_by_id(conn, book_id) is None:
                raise NotFoundError(f"Book with ID {book_id} not found.")
            active = loans.count_active_by_book(conn, book_id)
            if active > 0:
                logger.warning("Refusing to delete book %s with %s active loan(s)", book_id, active)
                raise ConflictError(f"Cannot delete book with ID {book_id}. It has {active} active loan(s).")
            books.set_active(conn, book_id, False, utcnow())
        logger.info("Book %s deactivated", book_id)

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _normalize(book: Book) -> None:
        if not ISBNValidator.is_valid_isbn(book.isbn):
            raise BusinessRuleError(f"Invalid ISBN: {book.isbn!r}.")
        book.isbn = ISBNValidator.normalize_isbn(book.isbn)
        book.title = TextValidator.require(book.title, "Title")
        book.author = TextValidator.require(book.author, "Author")
        if book.total_copies is None or book.total_copies < 0:
            raise BusinessRuleError("Total copies cannot be negative.")

    @staticmethod
    def _check_category(conn, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        category = categories.get_by_id(conn, category_id)
        if category is None or not category.is_active:
            raise BusinessRuleError(f"Category with ID {category_id} does not exist.")
