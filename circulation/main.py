import logging
import os
import subprocess
import sys
from functools import wraps
from typing import Optional

import typer

from circulation.auth import UserDirectory
from circulation.config import settings
from circulation.database import initialize_database, migrate_from_json
from circulation.errors import CirculationError
from circulation.library import Library, seed_defaults
from circulation.ui_helpers import (
    print_books,
    print_error,
    print_issues,
    print_requests,
    print_result,
    set_output_mode,
)

APP_NAME = "Circulation CLI"


class LibraryManager:
    """Lazily built, process-wide Library instance for the CLI."""

    _instance: Optional[Library] = None

    @classmethod
    def get_instance(cls) -> Library:
        if cls._instance is None:
            db_file = os.environ.get("LIBRARY_DB_FILE") or settings.database_file
            cls._instance = Library(initialize_database(db_file))
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None


def handle_errors(func):
    """Report circulation errors as one line and exit with status 1."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CirculationError as e:
            print_error(e.message)
            raise typer.Exit(code=1)
    return wrapper


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log workflow events to stderr"),
):
    """Global options for the CLI (output mode, logging)."""
    if output:
        set_output_mode(output)
    logging.basicConfig(
        level=logging.INFO if verbose else settings.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("books")
@handle_errors
def cli_books():
    """List every book with its available copies."""
    print_books(LibraryManager.get_instance().list_books())


@app.command("add")
@handle_errors
def cli_add(
    title: str,
    author: str,
    copies: int = typer.Option(settings.default_book_copies, "--copies", "-c", help="Copies on the shelf"),
):
    """Add a book to the inventory."""
    book = LibraryManager.get_instance().create_book(title, author, copies)
    print_result(f"Added book {book.id}: {book.title} by {book.author} ({book.available} copies)", book)


@app.command("remove")
@handle_errors
def cli_remove(book_id: int):
    """Delete a book that nobody currently holds."""
    book = LibraryManager.get_instance().delete_book(book_id)
    print_result(f"Book {book.id} has been removed.", book)


@app.command("borrow")
@handle_errors
def cli_borrow(username: str, book_id: int):
    """Submit a borrow request on behalf of a student."""
    request = LibraryManager.get_instance().submit_borrow(username, book_id)
    print_result(f"Borrow request {request.id} submitted for {request.title}.", request)


@app.command("return")
@handle_errors
def cli_return(username: str, book_id: int):
    """Submit a return request on behalf of a student."""
    request = LibraryManager.get_instance().submit_return(username, book_id)
    print_result(f"Return request {request.id} submitted for {request.title}.", request)


@app.command("pending")
@handle_errors
def cli_pending(user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's requests")):
    """List pending requests, oldest first."""
    lib = LibraryManager.get_instance()
    print_requests(lib.list_pending_for_user(user) if user else lib.list_pending())


@app.command("approve")
@handle_errors
def cli_approve(request_id: int):
    """Approve a pending request."""
    request = LibraryManager.get_instance().approve(request_id)
    print_result(f"Request {request.id} approved.", request)


@app.command("reject")
@handle_errors
def cli_reject(request_id: int):
    """Reject a pending request."""
    request = LibraryManager.get_instance().reject(request_id)
    print_result(f"Request {request.id} rejected.", request)


@app.command("issued")
@handle_errors
def cli_issued(user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's open issues")):
    """List issue records (all of them, or one user's open issues)."""
    lib = LibraryManager.get_instance()
    print_issues(lib.list_open_issues_for_user(user) if user else lib.list_issued())


@app.command("seed")
@handle_errors
def cli_seed():
    """Create the demo books and accounts on an empty database."""
    lib = LibraryManager.get_instance()
    books, users = seed_defaults(lib, UserDirectory(lib.database))
    print_result(f"Seeded {books} books and {users} users.")


@app.command("migrate")
@handle_errors
def cli_migrate(data_dir: str):
    """Import books, issues, requests and users from a legacy JSON data directory."""
    count = migrate_from_json(LibraryManager.get_instance().database, data_dir)
    print_result(f"Migrated {count} records from {data_dir}.")


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
    reload: bool = typer.Option(False, "--reload"),
):
    """Start the HTTP API with uvicorn."""
    print(f"Starting circulation API on http://{host}:{port}")
    cmd = [sys.executable, "-m", "uvicorn", "circulation.api:app", "--host", host, "--port", str(port)]
    if reload:
        cmd.append("--reload")
    subprocess.run(cmd)


if __name__ == "__main__":
    app()
