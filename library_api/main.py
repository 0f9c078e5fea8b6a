import logging
import os
import subprocess
import sys
from typing import Optional

import typer

from . import database
from .config import settings
from .errors import LibraryError
from .library import Library
from .ui_helpers import (
    print_book_list,
    print_error,
    print_loan_list,
    print_loan_result,
    print_stats_result,
    set_output_mode,
)


# Database file chosen with --db; None means settings.database_file
_state = {"db_file": None}


def _is_test_env() -> bool:
    return ("PYTEST_CURRENT_TEST" in os.environ) or (os.environ.get("LIB_CLI_TEST_MODE") == "1")


def get_library() -> Library:
    return Library(_state["db_file"])


# --- Typer CLI application ---
app = typer.Typer(help="Library management CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database file (default: LIBRARY_DB_FILE)"),
):
    """Global CLI options (output mode, database file)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)
    _state["db_file"] = db


@app.command("init-db")
def cli_init_db():
    """Create the database schema."""
    db_file = _state["db_file"] or database.DATABASE_FILE
    database.initialize_database(db_file)
    print(f"Database initialized at {db_file}")


@app.command("books")
def cli_books(available: bool = typer.Option(False, "--available", "-a", help="Only books with a free copy")):
    """List active books with their availability."""
    lib = get_library()
    books = lib.books.list_available() if available else lib.books.list_books()
    print_book_list(books)


@app.command("overdue")
def cli_overdue():
    """List Borrowed loans past their due date."""
    print_loan_list(get_library().loans.overdue_loans(), empty_message="No overdue loans.")


@app.command("borrow")
def cli_borrow(member_id: int, book_id: int):
    """Lend a copy of BOOK_ID to MEMBER_ID."""
    try:
        loan = get_library().loans.borrow(member_id, book_id)
    except LibraryError as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    print_loan_result(loan, "Borrowed")


@app.command("return")
def cli_return(loan_id: int):
    """Return the book held under LOAN_ID."""
    try:
        loan = get_library().loans.return_book(loan_id)
    except LibraryError as e:
        print_error(str(e))
        raise typer.Exit(code=1)
    print_loan_result(loan, "Returned")


@app.command("stats")
def cli_stats():
    """Show library statistics."""
    print_stats_result(get_library().get_statistics())


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (default: API_HOST)"),
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: API_PORT)"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the REST API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "library_api.api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload and not _is_test_env():
        args.append("--reload")
    env = dict(os.environ)
    if _state["db_file"]:
        env["LIBRARY_DB_FILE"] = _state["db_file"]
    subprocess.run(args, env=env)


if __name__ == "__main__":
    app()
