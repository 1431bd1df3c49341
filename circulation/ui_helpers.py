import json
import os
from typing import Any, List, Sequence, Tuple

from rich.console import Console
from rich.table import Table

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "CIRCULATION_CLI_OUTPUT"

_console = Console()

Column = Tuple[str, str]

BOOK_COLUMNS: List[Column] = [("ID", "id"), ("Title", "title"), ("Author", "author"), ("Available", "available")]
REQUEST_COLUMNS: List[Column] = [
    ("ID", "id"), ("Type", "type"), ("User", "username"), ("Book", "book_id"),
    ("Title", "title"), ("Requested", "requested_at"), ("Status", "status"),
]
ISSUE_COLUMNS: List[Column] = [
    ("ID", "id"), ("User", "username"), ("Book", "book_id"), ("Title", "title"),
    ("Issued", "issue_date"), ("Returned", "return_date"),
]


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _cell(value: Any) -> str:
    return "-" if value is None else str(value)


def print_records(items: Sequence[Any], columns: List[Column], title: str, empty_message: str) -> None:
    """Print model objects according to the current output mode.
    - plain: one ' | '-separated line per item, or ``empty_message``
    - json: JSON array of the items' ``to_dict()``
    - rich: Rich table
    """
    mode = get_output_mode()

    if not items:
        print(empty_message)
        return

    rows = [item.to_dict() for item in items]
    if mode == "json":
        print(json.dumps(rows, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=title, show_lines=True, header_style="bold cyan")
        for header, _ in columns:
            table.add_column(header, style="magenta" if header == "ID" else "white", no_wrap=header == "ID")
        for row in rows:
            table.add_row(*(_cell(row.get(key)) for _, key in columns))
        _console.print(table)
    else:
        for row in rows:
            print(" | ".join(_cell(row.get(key)) for _, key in columns))


def print_books(books: Sequence[Any]) -> None:
    print_records(books, BOOK_COLUMNS, "📚 Books", "No books in library.")


def print_requests(requests: Sequence[Any]) -> None:
    print_records(requests, REQUEST_COLUMNS, "📝 Pending Requests", "No pending requests.")


def print_issues(issues: Sequence[Any]) -> None:
    print_records(issues, ISSUE_COLUMNS, "📖 Issued Books", "No issued books.")


def print_result(message: str, item: Any = None) -> None:
    """Print the outcome of a single mutation."""
    if get_output_mode() == "json" and item is not None:
        print(json.dumps(item.to_dict(), ensure_ascii=False))
    elif get_output_mode() == "rich":
        _console.print(f"[green]✅ {message}[/]")
    else:
        print(message)


def print_error(message: str) -> None:
    if get_output_mode() == "rich":
        _console.print(f"[bold red]❌ {message}[/]")
    else:
        print(f"Error: {message}")
