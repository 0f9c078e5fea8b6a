import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_book_list(books: List[Any]) -> None:
    """Print books in the current output mode.
    - plain: 'ID. ISBN - Title by Author (available/total)' lines, or 'No books in library.'
    - json: array of the book dictionaries
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="dim", justify="right")
        table.add_column("ISBN", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Available", justify="right")
        for b in books:
            table.add_row(str(b.id), b.isbn, b.title, b.author, f"{b.available_copies}/{b.total_copies}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id}. {b.isbn} - {b.title} by {b.author} ({b.available_copies}/{b.total_copies} available)")


def print_loan_list(loans: List[Any], empty_message: str = "No loans.") -> None:
    mode = get_output_mode()

    if not loans:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps([loan.to_dict() for loan in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📖 Loans", show_lines=True, header_style="bold cyan")
        table.add_column("Loan", style="dim", justify="right")
        table.add_column("Book", style="white")
        table.add_column("Member", style="white")
        table.add_column("Due", style="yellow")
        table.add_column("Days overdue", justify="right", style="red")
        for loan in loans:
            table.add_row(str(loan.id), loan.book_title or str(loan.book_id),
                          loan.member_name or str(loan.member_id),
                          loan.due_date.date().isoformat(), str(loan.days_overdue()))
        _console.print(table)
    else:
        for loan in loans:
            print(f"Loan {loan.id}: '{loan.book_title}' -> {loan.member_name} "
                  f"(due {loan.due_date.date().isoformat()}, {loan.days_overdue()} day(s) overdue)")


def print_loan_result(loan: Any, action: str) -> None:
    """Print the outcome of a borrow or return."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(loan.to_dict(), ensure_ascii=False))
    elif mode == "rich":
        content = (f"[bold]Loan:[/] {loan.id}\n[bold]Book:[/] {loan.book_title}\n"
                   f"[bold]Member:[/] {loan.member_name}\n[bold]Due:[/] {loan.due_date.date().isoformat()}")
        _console.print(Panel.fit(content, title=f"✅ {action}", border_style="green"))
    else:
        print(f"{action}: loan {loan.id}, '{loan.book_title}' for {loan.member_name}, "
              f"due {loan.due_date.date().isoformat()}")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print statistics in the current output mode.
    - plain: one 'Label: value' line per metric
    - json: JSON object
    - rich: Panel with the metrics
    """
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "total_copies": "Total Copies",
        "unique_authors": "Unique Authors",
        "total_categories": "Categories",
        "active_members": "Active Members",
        "active_loans": "Active Loans",
        "overdue_loans": "Overdue Loans",
    }

    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")


def print_error(message: str) -> None:
    if get_output_mode() == "json":
        print(json.dumps({"error": message}, ensure_ascii=False))
    else:
        print(f"Error: {message}")
