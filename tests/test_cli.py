import json

import httpx
import pytest
from typer.testing import CliRunner

import main
from api import DEFAULT_USERS
from config import settings
from library_console.services.http_client import LendingHTTPClient
from main import app
from utils.cli_config import get_cli_config
from utils.ui_helpers import OUTPUT_MODE_ENV

runner = CliRunner()

SANDBOX_URL = "http://testserver"
CREDENTIALS = {user["role"]: (user["email"], user["password"]) for user in DEFAULT_USERS}


@pytest.fixture(autouse=True)
def cli_sandbox(sandbox, tmp_path, monkeypatch):
    """Point the CLI at an in-process sandbox and a throwaway config dir."""
    monkeypatch.setenv("LIB_CLI_CONFIG_DIR", str(tmp_path))
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")

    def make_http_client():
        token = get_cli_config().get("session.token")
        cookies = {settings.session_cookie: token} if token else None
        return LendingHTTPClient(base_url=SANDBOX_URL, transport=httpx.ASGITransport(app=sandbox), cookies=cookies)

    monkeypatch.setattr(main, "make_http_client", make_http_client)
    return sandbox


def login(role):
    email, password = CREDENTIALS[role]
    result = runner.invoke(app, ["login", email, "--password", password])
    assert result.exit_code == 0, result.stdout
    return result


def test_login_remembers_session():
    result = login("librarian")
    assert "Logged in as Librarian (librarian) - librarian dashboard" in result.stdout
    cfg = get_cli_config()
    assert cfg.get("session.token")
    assert cfg.get("session.role") == "librarian"

    whoami = runner.invoke(app, ["whoami"])
    assert whoami.exit_code == 0
    assert "email: librarian@library.local" in whoami.stdout


def test_wrong_password_fails():
    result = runner.invoke(app, ["login", "admin@library.local", "--password", "wrong"])
    assert result.exit_code == 1
    assert "Error: Invalid email or password" in result.stdout


def test_books_without_session_fails():
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 1
    assert "Error: Not authenticated" in result.stdout


def test_books_plain_listing():
    login("customer")
    result = runner.invoke(app, ["books"])
    assert result.exit_code == 0
    assert "1. Ulysses by James Joyce (ISBN 9780199535675) x1" in result.stdout
    assert "2. Sapiens by Yuval Noah Harari (ISBN 9780099590088) x3" in result.stdout
    assert "Page 1 of 1" in result.stdout


def test_books_search_json():
    login("librarian")
    result = runner.invoke(app, ["-o", "json", "books", "--search", "harari"])
    assert result.exit_code == 0
    body = json.loads(result.stdout.strip().splitlines()[-1])
    assert body["currentPage"] == 1
    assert body["totalPages"] == 1
    assert [b["title"] for b in body["books"]] == ["Sapiens"]


def test_books_search_without_match():
    login("librarian")
    result = runner.invoke(app, ["books", "-s", "tolkien"])
    assert result.exit_code == 0
    assert "No books found" in result.stdout
    assert "Page 1 of 1 (search: tolkien)" in result.stdout


def test_add_and_edit_book():
    login("librarian")
    added = runner.invoke(app, ["add", "--title", "Dune", "--author", "Frank Herbert",
                                "--isbn", "9780441013593", "-q", "2"])
    assert added.exit_code == 0
    assert "Book added successfully! Dune by Frank Herbert (id 3)" in added.stdout

    edited = runner.invoke(app, ["edit", "3", "--quantity", "5"])
    assert edited.exit_code == 0
    assert "quantity 5" in edited.stdout


def test_add_book_with_zero_quantity_is_rejected():
    login("librarian")
    result = runner.invoke(app, ["add", "--title", "Dune", "--author", "Frank Herbert",
                                 "--isbn", "9780441013593", "-q", "0"])
    assert result.exit_code == 1
    assert "quantity" in result.stdout


def test_issue_return_and_loans():
    login("librarian")
    issued = runner.invoke(app, ["issue", "1", "3"])
    assert issued.exit_code == 0
    assert "Book issued successfully! Issue ID 1" in issued.stdout

    empty = runner.invoke(app, ["issue", "1", "2"])
    assert empty.exit_code == 1
    assert "No copies of 'Ulysses' are available" in empty.stdout

    loans = runner.invoke(app, ["loans"])
    assert "#1 book 1 -> user 3" in loans.stdout
    assert "Not returned" in loans.stdout

    returned = runner.invoke(app, ["return", "1"])
    assert returned.exit_code == 0
    assert "Book returned successfully! Issue ID 1" in returned.stdout

    again = runner.invoke(app, ["return", "1"])
    assert again.exit_code == 1
    assert "Error: Book already returned" in again.stdout


def test_delete_with_active_loan_fails():
    login("librarian")
    runner.invoke(app, ["issue", "2", "3"])
    login("admin")
    result = runner.invoke(app, ["delete", "2", "--yes"])
    assert result.exit_code == 1
    assert "Error: Cannot delete a book with active loans" in result.stdout

    deleted = runner.invoke(app, ["delete", "1", "--yes"])
    assert deleted.exit_code == 0
    assert "Book 1 deleted." in deleted.stdout


def test_delete_can_be_cancelled():
    login("admin")
    result = runner.invoke(app, ["delete", "1"], input="n\n")
    assert "Cancelled." in result.stdout
    books = runner.invoke(app, ["books"])
    assert "1. Ulysses" in books.stdout


def test_customer_sees_own_loans():
    login("librarian")
    runner.invoke(app, ["issue", "2", "3"])
    login("customer")
    result = runner.invoke(app, ["my-loans"])
    assert result.exit_code == 0
    assert "Welcome, Customer" in result.stdout
    assert "Sapiens (2) -> user 3" in result.stdout


def test_customer_without_loans():
    login("customer")
    result = runner.invoke(app, ["my-loans"])
    assert result.exit_code == 0
    assert "No borrowed books found." in result.stdout


def test_admin_adds_user():
    login("admin")
    result = runner.invoke(app, ["add-user", "--name", "Ada", "--email", "ada@library.local",
                                 "--password", "secret", "--role", "librarian"])
    assert result.exit_code == 0
    assert "User added successfully! ada@library.local (librarian, id 4)" in result.stdout


def test_logout_clears_session():
    login("customer")
    result = runner.invoke(app, ["logout"])
    assert result.exit_code == 0
    assert "Logged out." in result.stdout
    assert get_cli_config().get("session.token") is None
    assert runner.invoke(app, ["whoami"]).exit_code == 1


def test_login_again_replaces_stored_session():
    login("librarian")
    first = get_cli_config().get("session.token")
    result = login("customer")
    assert "Logged in as Customer (customer)" in result.stdout
    assert get_cli_config().get("session.token") != first
    assert get_cli_config().get("session.role") == "customer"

    whoami = runner.invoke(app, ["whoami"])
    assert "email: customer@library.local" in whoami.stdout


def test_output_mode_is_remembered(monkeypatch):
    login("librarian")
    first = runner.invoke(app, ["-o", "json", "whoami"])
    assert json.loads(first.stdout.strip().splitlines()[-1])["role"] == "librarian"
    assert get_cli_config().get("preferences.output") == "json"

    monkeypatch.delenv(OUTPUT_MODE_ENV)
    result = runner.invoke(app, ["books", "-s", "joyce"])
    body = json.loads(result.stdout.strip().splitlines()[-1])
    assert [b["title"] for b in body["books"]] == ["Ulysses"]


def test_environment_output_mode_beats_saved_preference(monkeypatch):
    login("librarian")
    runner.invoke(app, ["-o", "json", "whoami"])
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    result = runner.invoke(app, ["books", "-s", "joyce"])
    assert "1. Ulysses by James Joyce" in result.stdout
