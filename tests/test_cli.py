import json
from datetime import timedelta
from unittest.mock import patch

from typer.testing import CliRunner

from library_api.main import app
from library_api.models import utcnow

runner = CliRunner()


def test_init_db(tmp_path):
    db_file = str(tmp_path / "fresh.db")
    result = runner.invoke(app, ["--db", db_file, "init-db"])
    assert result.exit_code == 0
    assert f"Database initialized at {db_file}" in result.stdout
    assert (tmp_path / "fresh.db").exists()


def test_books_empty(lib, db_file):
    result = runner.invoke(app, ["--db", db_file, "books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_books_plain(lib, db_file, make_book):
    book = make_book(isbn="111", title="Dune", author="Frank Herbert", total_copies=2)

    result = runner.invoke(app, ["--db", db_file, "books"])

    assert result.exit_code == 0
    assert f"{book.id}. 111 - Dune by Frank Herbert (2/2 available)" in result.stdout


def test_books_json(lib, db_file, make_book):
    make_book(isbn="111", title="Dune")

    result = runner.invoke(app, ["--output", "json", "--db", db_file, "books"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [b["isbn"] for b in payload] == ["111"]


def test_borrow_and_return(lib, db_file, make_book, make_member):
    book = make_book(title="Dune")
    member = make_member(first_name="Ada", last_name="Lovelace")

    result = runner.invoke(app, ["--db", db_file, "borrow", str(member.id), str(book.id)])
    assert result.exit_code == 0
    assert "Borrowed: loan 1, 'Dune' for Ada Lovelace" in result.stdout

    result = runner.invoke(app, ["--db", db_file, "return", "1"])
    assert result.exit_code == 0
    assert "Returned: loan 1" in result.stdout


def test_borrow_failure_exits_nonzero(lib, db_file, make_book, make_member):
    book = make_book(total_copies=0)
    member = make_member()

    result = runner.invoke(app, ["--db", db_file, "borrow", str(member.id), str(book.id)])

    assert result.exit_code == 1
    assert "Error: Book with ID" in result.stdout


def test_return_unknown_loan(lib, db_file):
    result = runner.invoke(app, ["--db", db_file, "return", "99"])
    assert result.exit_code == 1
    assert "Loan with ID 99 not found." in result.stdout


def test_overdue(lib, db_file, make_book, make_member):
    result = runner.invoke(app, ["--db", db_file, "overdue"])
    assert "No overdue loans." in result.stdout

    loan = lib.loans.borrow(make_member().id, make_book(title="Emma").id)
    lib.loans.update_loan(loan.id, due_date=utcnow() - timedelta(days=2))

    result = runner.invoke(app, ["--db", db_file, "overdue"])
    assert result.exit_code == 0
    assert f"Loan {loan.id}: 'Emma'" in result.stdout
    assert "2 day(s) overdue" in result.stdout


def test_stats(lib, db_file, make_book):
    make_book(total_copies=3)

    result = runner.invoke(app, ["--db", db_file, "stats"])

    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Total Copies: 3" in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, db_file):
    result = runner.invoke(app, ["--db", db_file, "serve", "--port", "8123"])

    assert result.exit_code == 0
    assert "Starting API on http://" in result.stdout
    args = mock_subprocess_run.call_args.args[0]
    assert "library_api.api:app" in args
    assert "8123" in args
    assert mock_subprocess_run.call_args.kwargs["env"]["LIBRARY_DB_FILE"] == db_file
