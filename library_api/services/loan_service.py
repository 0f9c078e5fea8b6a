"""Loan workflow: borrowing, returning and the ledger queries.

A loan moves ``Borrowed -> Returned`` exactly once. Each workflow step runs
in a single write transaction so the availability check and the insert that
depends on it cannot interleave with another borrower.
"""

import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from .. import database
from ..config import settings
from ..errors import ConflictError, InvalidStateError, NoCopiesAvailableError, NotFoundError
from ..models import Loan, LoanStatus, MembershipStatus, start_of_day, utcnow
from ..repositories import books, loans, members
from ..validators import TextValidator

logger = logging.getLogger(__name__)


class LoanService:
    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Workflow ------------------------- #
    def borrow(self, member_id: int, book_id: int, notes: Optional[str] = None) -> Loan:
        with database.transaction(self.db_file) as conn:
            member = members.get_by_id(conn, member_id)
            if member is None:
                raise NotFoundError(f"Member with ID {member_id} not found.")
            if not member.is_active or member.membership_status != MembershipStatus.ACTIVE:
                logger.warning("Borrow refused: member %s is not active", member_id)
                raise InvalidStateError(f"Member with ID {member_id} is not active.")

            book = books.get_by_id(conn, book_id)
            if book is None:
                raise NotFoundError(f"Book with ID {book_id} not found.")
            if not book.is_active:
                logger.warning("Borrow refused: book %s is not active", book_id)
                raise InvalidStateError(f"Book with ID {book_id} is not active.")

            if loans.has_active_loan(conn, member_id, book_id):
                logger.warning("Borrow refused: member %s already has book %s", member_id, book_id)
                raise ConflictError(f"Member {member_id} already has book {book_id} borrowed.")
            if books.available_copies(conn, book_id) == 0:
                logger.warning("Borrow refused: no copies of book %s available", book_id)
                raise NoCopiesAvailableError(f"Book with ID {book_id} has no available copies.")

            now = utcnow()
            loan = Loan(
                book_id=book_id,
                member_id=member_id,
                loan_date=now,
                due_date=now + timedelta(days=settings.loan_period_days),
                status=LoanStatus.BORROWED,
                notes=TextValidator.clean(notes),
                created_at=now,
                updated_at=now,
            )
            loan_id = loans.insert(conn, loan)
            created = loans.get_by_id(conn, loan_id)
        logger.info("Loan %s: member %s borrowed book %s, due %s",
                    loan_id, member_id, book_id, created.due_date.date())
        return created

    def return_book(self, loan_id: int) -> Loan:
        with database.transaction(self.db_file) as conn:
            loan = loans.get_by_id(conn, loan_id)
            if loan is None:
                raise NotFoundError(f"Loan with ID {loan_id} not found.")
            if not loans.mark_returned(conn, loan_id, utcnow()):
                logger.warning("Return refused: loan %s is %s", loan_id, loan.status.value)
                raise ConflictError(f"Loan with ID {loan_id} has already been returned.")
            returned = loans.get_by_id(conn, loan_id)
        logger.info("Loan %s returned (book %s)", loan_id, returned.book_id)
        return returned

    def update_loan(self, loan_id: int, due_date: Optional[datetime] = None,
                    notes: Optional[str] = None) -> Loan:
        """Adjust the due date and notes. Status only changes through the workflow."""
        with database.transaction(self.db_file) as conn:
            loan = loans.get_by_id(conn, loan_id)
            if loan is None:
                raise NotFoundError(f"Loan with ID {loan_id} not found.")
            if due_date is not None and due_date != loan.due_date:
                if loan.status != LoanStatus.BORROWED:
                    raise ConflictError(f"Cannot change the due date of returned loan {loan_id}.")
                loan.due_date = due_date
            if notes is not None:
                loan.notes = TextValidator.clean(notes)
            loan.updated_at = utcnow()
            loans.update_details(conn, loan)
            updated = loans.get_by_id(conn, loan_id)
        logger.info("Loan %s updated", loan_id)
        return updated

    def delete_loan(self, loan_id: int) -> None:
        """Hard delete; only Returned loans leave the ledger."""
        with database.transaction(self.db_file) as conn:
            loan = loans.get_by_id(conn, loan_id)
            if loan is None:
                raise NotFoundError(f"Loan with ID {loan_id} not found.")
            if loan.status == LoanStatus.BORROWED:
                logger.warning("Refusing to delete open loan %s", loan_id)
                raise ConflictError(f"Cannot delete loan with ID {loan_id}. The book has not been returned.")
            loans.delete(conn, loan_id)
        logger.info("Loan %s deleted", loan_id)

    # ------------------------- Queries ------------------------- #
    def get_loan(self, loan_id: int) -> Optional[Loan]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.get_by_id(conn, loan_id)

    def all_loans(self) -> List[Loan]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.list_all(conn)

    def active_loans(self) -> List[Loan]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.list_by_status(conn, LoanStatus.BORROWED)

    def overdue_loans(self, today: Optional[date] = None) -> List[Loan]:
        """Borrowed loans due before the start of ``today`` (UTC), earliest first."""
        cutoff = start_of_day(today or utcnow().date())
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.list_overdue(conn, cutoff)

    def loans_by_status(self, status: str) -> List[Loan]:
        parsed = LoanStatus.parse(status)
        if parsed is None:
            return []
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.list_by_status(conn, parsed)

    def loans_by_member(self, member_id: int) -> List[Loan]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.list_by_member(conn, member_id)

    def loans_by_book(self, book_id: int) -> List[Loan]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.list_by_book(conn, book_id)

    def active_loan_count_by_member(self, member_id: int) -> int:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.count_active_by_member(conn, member_id)

    def active_loan_count_by_book(self, book_id: int) -> int:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.count_active_by_book(conn, book_id)

    def has_active_loan(self, member_id: int, book_id: int) -> bool:
        with database.transaction(self.db_file, readonly=True) as conn:
            return loans.has_active_loan(conn, member_id, book_id)
