from typing import Any, Dict, Optional

from . import database
from .models import start_of_day, to_iso, utcnow
from .services.book_service import BookService
from .services.category_service import CategoryService
from .services.loan_service import LoanService
from .services.member_service import MemberService
from .services.user_service import UserService


class Library:
    """Entry point to the library services, all sharing one database file."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        database.initialize_database(self.db_file)  # Ensure DB and tables exist

        self.books = BookService(self.db_file)
        self.categories = CategoryService(self.db_file)
        self.members = MemberService(self.db_file)
        self.users = UserService(self.db_file)
        self.loans = LoanService(self.db_file)

    def get_statistics(self) -> Dict[str, Any]:
        """Get library statistics."""
        cutoff = start_of_day(utcnow().date())
        with database.transaction(self.db_file, readonly=True) as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM books WHERE is_active = 1) AS total_books,
                    (SELECT COALESCE(SUM(total_copies), 0) FROM books WHERE is_active = 1) AS total_copies,
                    (SELECT COUNT(DISTINCT author) FROM books WHERE is_active = 1) AS unique_authors,
                    (SELECT COUNT(*) FROM categories WHERE is_active = 1) AS total_categories,
                    (SELECT COUNT(*) FROM members WHERE is_active = 1) AS active_members,
                    (SELECT COUNT(*) FROM loans WHERE status = 'Borrowed') AS active_loans,
                    (SELECT COUNT(*) FROM loans WHERE status = 'Borrowed' AND due_date < ?) AS overdue_loans
                """,
                (to_iso(cutoff),),
            ).fetchone()
        return dict(row)

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
