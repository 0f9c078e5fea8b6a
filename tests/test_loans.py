import threading
from datetime import timedelta

import pytest

from library_api.config import settings
from library_api.errors import (
    ConflictError,
    InvalidStateError,
    NoCopiesAvailableError,
    NotFoundError,
)
from library_api.models import LoanStatus, MembershipStatus, utcnow


def test_borrow_creates_loan(lib, make_member, make_book):
    member = make_member(first_name="Ada", last_name="Lovelace")
    book = make_book(title="Dune")

    loan = lib.loans.borrow(member.id, book.id)

    assert loan.status == LoanStatus.BORROWED
    assert loan.return_date is None
    assert loan.due_date - loan.loan_date == timedelta(days=settings.loan_period_days)
    assert loan.book_title == "Dune"
    assert loan.member_name == "Ada Lovelace"
    assert lib.loans.has_active_loan(member.id, book.id) is True


def test_copy_accounting_scenario(lib, make_member, make_book):
    book = make_book(isbn="111", total_copies=2)
    m1, m2, m3 = make_member(), make_member(), make_member()

    first = lib.loans.borrow(m1.id, book.id)
    lib.loans.borrow(m2.id, book.id)
    assert lib.books.available_copies(book.id) == 0

    with pytest.raises(NoCopiesAvailableError):
        lib.loans.borrow(m3.id, book.id)

    lib.loans.return_book(first.id)
    assert lib.books.available_copies(book.id) == 1


def test_no_copies_is_a_conflict(lib, make_member, make_book):
    book = make_book(total_copies=0)

    with pytest.raises(ConflictError):
        lib.loans.borrow(make_member().id, book.id)


def test_double_borrow_conflicts(lib, make_member, make_book):
    member = make_member()
    book = make_book(total_copies=5)
    lib.loans.borrow(member.id, book.id)

    with pytest.raises(ConflictError, match="already has book"):
        lib.loans.borrow(member.id, book.id)
    assert lib.loans.active_loan_count_by_member(member.id) == 1


def test_borrow_again_after_return(lib, make_member, make_book):
    member = make_member()
    book = make_book()
    loan = lib.loans.borrow(member.id, book.id)
    lib.loans.return_book(loan.id)

    again = lib.loans.borrow(member.id, book.id)
    assert again.id != loan.id


def test_borrow_missing_member_or_book(lib, make_member, make_book):
    book = make_book()
    member = make_member()

    with pytest.raises(NotFoundError, match="Member"):
        lib.loans.borrow(999, book.id)
    with pytest.raises(NotFoundError, match="Book"):
        lib.loans.borrow(member.id, 999)


def test_borrow_requires_active_member(lib, make_member, make_book):
    book = make_book()
    suspended = make_member()
    suspended.membership_status = MembershipStatus.SUSPENDED
    lib.members.update_member(suspended)
    deleted = make_member()
    lib.members.delete_member(deleted.id)

    with pytest.raises(InvalidStateError):
        lib.loans.borrow(suspended.id, book.id)
    with pytest.raises(InvalidStateError):
        lib.loans.borrow(deleted.id, book.id)


def test_borrow_requires_active_book(lib, make_member, make_book):
    book = make_book()
    lib.books.delete_book(book.id)

    with pytest.raises(InvalidStateError):
        lib.loans.borrow(make_member().id, book.id)


def test_double_return_conflicts(lib, make_member, make_book):
    loan = lib.loans.borrow(make_member().id, make_book().id)

    returned = lib.loans.return_book(loan.id)
    assert returned.status == LoanStatus.RETURNED
    assert returned.return_date is not None

    with pytest.raises(ConflictError, match="already been returned"):
        lib.loans.return_book(loan.id)
    assert lib.loans.get_loan(loan.id).return_date == returned.return_date


def test_return_missing_loan(lib):
    with pytest.raises(NotFoundError):
        lib.loans.return_book(123)


def test_overdue_loans(lib, make_member, make_book):
    member = make_member()
    late = lib.loans.borrow(member.id, make_book(title="Late").id)
    on_time = lib.loans.borrow(member.id, make_book(title="On time").id)
    late_returned = lib.loans.borrow(member.id, make_book(title="Late but back").id)

    yesterday = utcnow() - timedelta(days=1)
    lib.loans.update_loan(late.id, due_date=yesterday)
    lib.loans.update_loan(late_returned.id, due_date=utcnow() - timedelta(days=3))
    lib.loans.return_book(late_returned.id)

    overdue = lib.loans.overdue_loans()

    assert [loan.id for loan in overdue] == [late.id]
    assert overdue[0].is_overdue() is True
    assert overdue[0].days_overdue() == 1
    assert on_time.id not in [loan.id for loan in overdue]


def test_overdue_ordered_by_due_date(lib, make_member, make_book):
    member = make_member()
    a = lib.loans.borrow(member.id, make_book().id)
    b = lib.loans.borrow(member.id, make_book().id)
    lib.loans.update_loan(a.id, due_date=utcnow() - timedelta(days=2))
    lib.loans.update_loan(b.id, due_date=utcnow() - timedelta(days=5))

    assert [loan.id for loan in lib.loans.overdue_loans()] == [b.id, a.id]


def test_due_today_is_not_overdue(lib, make_member, make_book):
    loan = lib.loans.borrow(make_member().id, make_book().id)
    today = utcnow().date()

    assert lib.loans.overdue_loans(today=today) == []
    later = loan.due_date.date() + timedelta(days=1)
    assert [x.id for x in lib.loans.overdue_loans(today=later)] == [loan.id]


def test_update_loan_notes_and_due_date(lib, make_member, make_book):
    loan = lib.loans.borrow(make_member().id, make_book().id)
    new_due = loan.due_date + timedelta(days=7)

    updated = lib.loans.update_loan(loan.id, due_date=new_due, notes="  extended ")

    assert updated.due_date == new_due
    assert updated.notes == "extended"
    assert updated.status == LoanStatus.BORROWED


def test_returned_loan_due_date_is_frozen(lib, make_member, make_book):
    loan = lib.loans.borrow(make_member().id, make_book().id)
    lib.loans.return_book(loan.id)

    with pytest.raises(ConflictError):
        lib.loans.update_loan(loan.id, due_date=loan.due_date + timedelta(days=1))
    assert lib.loans.update_loan(loan.id, notes="damaged cover").notes == "damaged cover"


def test_delete_loan(lib, make_member, make_book):
    loan = lib.loans.borrow(make_member().id, make_book().id)

    with pytest.raises(ConflictError):
        lib.loans.delete_loan(loan.id)

    lib.loans.return_book(loan.id)
    lib.loans.delete_loan(loan.id)
    assert lib.loans.get_loan(loan.id) is None
    with pytest.raises(NotFoundError):
        lib.loans.delete_loan(loan.id)


def test_ledger_queries(lib, make_member, make_book):
    alice, bob = make_member(), make_member()
    dune, emma = make_book(title="Dune"), make_book(title="Emma")
    l1 = lib.loans.borrow(alice.id, dune.id)
    l2 = lib.loans.borrow(alice.id, emma.id)
    lib.loans.return_book(l1.id)
    l3 = lib.loans.borrow(bob.id, dune.id)

    assert {loan.id for loan in lib.loans.all_loans()} == {l1.id, l2.id, l3.id}
    assert {loan.id for loan in lib.loans.active_loans()} == {l2.id, l3.id}
    assert [loan.id for loan in lib.loans.loans_by_status("returned")] == [l1.id]
    assert lib.loans.loans_by_status("lost") == []
    assert {loan.id for loan in lib.loans.loans_by_member(alice.id)} == {l1.id, l2.id}
    assert {loan.id for loan in lib.loans.loans_by_book(dune.id)} == {l1.id, l3.id}
    assert lib.loans.active_loan_count_by_member(alice.id) == 1
    assert lib.loans.active_loan_count_by_book(dune.id) == 1
    assert lib.loans.has_active_loan(alice.id, dune.id) is False


def test_concurrent_borrow_of_last_copy(lib, make_member, make_book):
    book = make_book(total_copies=1)
    members = [make_member() for _ in range(4)]
    barrier = threading.Barrier(len(members))
    results, errors = [], []

    def borrow(member_id):
        barrier.wait()
        try:
            results.append(lib.loans.borrow(member_id, book.id))
        except NoCopiesAvailableError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=borrow, args=(m.id,)) for m in members]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 1
    assert len(errors) == len(members) - 1
    assert lib.books.available_copies(book.id) == 0
    assert lib.loans.active_loan_count_by_book(book.id) == 1


def test_statistics(lib, make_member, make_book):
    member = make_member()
    book = make_book(total_copies=3)
    make_book(author="Someone Else")
    loan = lib.loans.borrow(member.id, book.id)
    lib.loans.update_loan(loan.id, due_date=utcnow() - timedelta(days=2))

    stats = lib.get_statistics()

    assert stats["total_books"] == 2
    assert stats["total_copies"] == 4
    assert stats["unique_authors"] == 2
    assert stats["active_members"] == 1
    assert stats["active_loans"] == 1
    assert stats["overdue_loans"] == 1
