import json
import logging
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from circulation.config import settings
from circulation.errors import PersistenceError
from circulation.main import LibraryManager, app
from circulation.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_lib(lib, monkeypatch):
    # Restores the output mode that --output writes into the environment
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    LibraryManager._instance = lib
    yield lib
    LibraryManager.reset()


def test_books_empty():
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_and_list(cli_lib):
    result = runner.invoke(app, ["add", "Clean Code", "Robert C. Martin", "--copies", "3"])
    assert result.exit_code == 0
    assert "Added book 1: Clean Code by Robert C. Martin (3 copies)" in result.stdout

    result = runner.invoke(app, ["books"])
    assert "1 | Clean Code | Robert C. Martin | 3" in result.stdout


def test_books_json_output(cli_lib):
    cli_lib.create_book("Atomic Habits", "James Clear", 2)
    result = runner.invoke(app, ["--output", "json", "books"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == [
        {"id": 1, "title": "Atomic Habits", "author": "James Clear", "available": 2}
    ]


def test_borrow_approve_return(cli_lib):
    book = cli_lib.create_book("Clean Code", "Robert C. Martin", 1)

    result = runner.invoke(app, ["borrow", "alice", str(book.id)])
    assert result.exit_code == 0
    assert "Borrow request 1 submitted for Clean Code." in result.stdout

    result = runner.invoke(app, ["pending"])
    assert "1 | borrow | alice" in result.stdout

    result = runner.invoke(app, ["approve", "1"])
    assert result.exit_code == 0
    assert "Request 1 approved." in result.stdout

    result = runner.invoke(app, ["issued", "--user", "alice"])
    assert "alice | 1 | Clean Code" in result.stdout

    result = runner.invoke(app, ["return", "alice", str(book.id)])
    assert result.exit_code == 0
    runner.invoke(app, ["approve", "2"])
    assert cli_lib.get_book(book.id).available == 1


def test_errors_exit_non_zero(cli_lib):
    result = runner.invoke(app, ["borrow", "alice", "7"])
    assert result.exit_code == 1
    assert "Error: Book 7 not found." in result.stdout

    result = runner.invoke(app, ["reject", "3"])
    assert result.exit_code == 1
    assert "Request 3 not found." in result.stdout


@pytest.mark.parametrize("command", [["books"], ["pending"], ["issued"]])
def test_listing_reports_storage_errors(cli_lib, monkeypatch, command):
    def unreadable(name):
        raise PersistenceError("Could not read collection 'books': disk I/O error")

    monkeypatch.setattr(cli_lib.database, "load", unreadable)
    result = runner.invoke(app, command)
    assert result.exit_code == 1
    assert "Error: Could not read collection" in result.stdout


@patch("circulation.main.logging.basicConfig")
def test_log_level_defaults_to_settings(mock_basic_config, monkeypatch):
    monkeypatch.setattr(settings, "log_level", "ERROR")
    runner.invoke(app, ["books"])
    assert mock_basic_config.call_args.kwargs["level"] == "ERROR"

    runner.invoke(app, ["--verbose", "books"])
    assert mock_basic_config.call_args.kwargs["level"] == logging.INFO


def test_remove_book_with_open_issue(cli_lib):
    book = cli_lib.create_book("Clean Code", "Robert C. Martin", 1)
    cli_lib.approve(cli_lib.submit_borrow("alice", book.id).id)

    result = runner.invoke(app, ["remove", str(book.id)])
    assert result.exit_code == 1
    assert "active issues" in result.stdout


def test_seed(cli_lib):
    result = runner.invoke(app, ["seed"])
    assert result.exit_code == 0
    assert "Seeded 3 books and 2 users." in result.stdout
    result = runner.invoke(app, ["seed"])
    assert "Seeded 0 books and 0 users." in result.stdout


@patch("circulation.main.subprocess.run")
def test_serve_command(mock_subprocess_run):
    result = runner.invoke(app, ["serve", "--port", "8123"])
    assert result.exit_code == 0
    assert "Starting circulation API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "circulation.api:app" in args
    assert "8123" in args
