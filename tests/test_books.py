import pytest

from library_api.errors import (
    BusinessRuleError,
    ConflictError,
    DuplicateKeyError,
    NotFoundError,
)
from library_api.models import Book, Category


def test_create_list_and_get(lib):
    assert lib.books.list_books() == []

    book = lib.books.create_book(Book(isbn="978-0-19-953567-5", title="Ulysses", author="James Joyce"))

    assert book.id is not None
    assert book.isbn == "9780199535675"
    assert book.is_active is True
    assert book.available_copies == 1
    assert book.created_at is not None and book.created_at.tzinfo is not None
    assert [b.title for b in lib.books.list_books()] == ["Ulysses"]
    assert lib.books.get_book(book.id).author == "James Joyce"


def test_create_duplicate_isbn(make_book):
    make_book(isbn="1234567890")

    with pytest.raises(DuplicateKeyError, match="Book with ISBN 1234567890 already exists."):
        make_book(isbn="123-456-7890")


def test_isbn_reusable_after_soft_delete(lib, make_book):
    old = make_book(isbn="1234567890")
    lib.books.delete_book(old.id)

    new = make_book(isbn="1234567890")
    assert new.id != old.id


@pytest.mark.parametrize("isbn", ["", "abc", "12345678901234", "12X4"])
def test_invalid_isbn_rejected(lib, isbn):
    with pytest.raises(BusinessRuleError, match="Invalid ISBN"):
        lib.books.create_book(Book(isbn=isbn, title="T", author="A"))


def test_title_and_author_required(lib):
    with pytest.raises(BusinessRuleError, match="Title cannot be empty."):
        lib.books.create_book(Book(isbn="111", title="   ", author="A"))
    with pytest.raises(BusinessRuleError, match="Author cannot be empty."):
        lib.books.create_book(Book(isbn="111", title="T", author=""))


def test_negative_copies_rejected(lib):
    with pytest.raises(BusinessRuleError):
        lib.books.create_book(Book(isbn="111", title="T", author="A", total_copies=-1))


def test_unknown_category_rejected(lib):
    with pytest.raises(BusinessRuleError, match="Category with ID 99 does not exist."):
        lib.books.create_book(Book(isbn="111", title="T", author="A", category_id=99))


def test_category_name_joined_in(lib, make_book):
    category = lib.categories.create_category(Category(name="Science Fiction"))
    book = make_book(category_id=category.id)

    assert book.category_name == "Science Fiction"
    assert [b.id for b in lib.books.find_by_category(category.id)] == [book.id]


def test_find_by_author_is_case_insensitive_substring(make_book, lib):
    make_book(title="Dune", author="Frank Herbert")
    make_book(title="Emma", author="Jane Austen")

    assert [b.title for b in lib.books.find_by_author("herb")] == ["Dune"]
    assert lib.books.find_by_author("Tolkien") == []


def test_update_book_replaces_fields(lib, make_book):
    book = make_book(isbn="1112223334", title="Old Title", author="Old Author")
    book.title = "New Title"
    book.author = "New Author"
    book.isbn = "1112223335"
    book.total_copies = 3

    updated = lib.books.update_book(book)

    assert updated.title == "New Title"
    assert updated.isbn == "1112223335"
    assert updated.available_copies == 3
    assert updated.updated_at >= updated.created_at
    assert lib.books.get_book(book.id).author == "New Author"


def test_update_keeping_own_isbn_does_not_conflict(lib, make_book):
    book = make_book(isbn="1112223334")
    book.title = "Renamed"
    assert lib.books.update_book(book).title == "Renamed"


def test_update_to_taken_isbn(lib, make_book):
    make_book(isbn="1111111111")
    other = make_book(isbn="2222222222")
    other.isbn = "1111111111"

    with pytest.raises(DuplicateKeyError):
        lib.books.update_book(other)


def test_update_missing_book(lib):
    with pytest.raises(NotFoundError):
        lib.books.update_book(Book(id=42, isbn="111", title="T", author="A"))


def test_total_copies_cannot_drop_below_borrowed(lib, make_book, make_member):
    book = make_book(total_copies=2)
    lib.loans.borrow(make_member().id, book.id)
    lib.loans.borrow(make_member().id, book.id)

    book.total_copies = 1
    with pytest.raises(ConflictError):
        lib.books.update_book(book)


def test_soft_delete_keeps_book_readable(lib, make_book):
    book = make_book()

    lib.books.delete_book(book.id)

    assert lib.books.list_books() == []
    stored = lib.books.get_book(book.id)
    assert stored is not None
    assert stored.is_active is False
    assert lib.books.available_copies(book.id) == 0


def test_delete_with_active_loan_conflicts(lib, make_book, make_member):
    book = make_book()
    lib.loans.borrow(make_member().id, book.id)

    with pytest.raises(ConflictError, match="active loan"):
        lib.books.delete_book(book.id)
    assert lib.books.get_book(book.id).is_active is True


def test_delete_missing_book(lib):
    with pytest.raises(NotFoundError):
        lib.books.delete_book(7)


def test_availability_derived_from_loans(lib, make_book, make_member):
    book = make_book(total_copies=2)
    assert lib.books.available_copies(book.id) == 2
    assert lib.books.is_available(book.id) is True

    loan = lib.loans.borrow(make_member().id, book.id)
    assert lib.books.available_copies(book.id) == 1

    lib.loans.return_book(loan.id)
    assert lib.books.available_copies(book.id) == 2


def test_available_copies_missing_book(lib):
    with pytest.raises(NotFoundError):
        lib.books.available_copies(404)


def test_list_available_excludes_exhausted_books(lib, make_book, make_member):
    single = make_book(title="Single", total_copies=1)
    make_book(title="Double", total_copies=2)
    make_book(title="None", total_copies=0)
    lib.loans.borrow(make_member().id, single.id)

    assert [b.title for b in lib.books.list_available()] == ["Double"]


def test_is_isbn_unique(lib, make_book):
    book = make_book(isbn="1234567890")

    assert lib.books.is_isbn_unique("123-4567-890") is False
    assert lib.books.is_isbn_unique("1234567890", exclude_id=book.id) is True
    assert lib.books.is_isbn_unique("9999999999") is True
