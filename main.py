import asyncio
import logging
import os
import subprocess
import sys
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console

from config import settings
from library_console.errors import LibraryConsoleError
from library_console.models import Role
from library_console.services import LendingServices
from library_console.services.auth_service import dashboard_for
from library_console.services.http_client import LendingHTTPClient
from library_console.view_state import CustomerLoansView
from utils.cli_config import get_cli_config
from utils.ui_helpers import OUTPUT_MODE_ENV, print_catalog_page, print_loans, print_record, set_output_mode

APP_NAME = "Library Console"

console = Console(stderr=True)
T = TypeVar("T")

app = typer.Typer(help=f"{APP_NAME} CLI")


def make_http_client() -> LendingHTTPClient:
    """HTTP client carrying the stored session cookie, if any."""
    cfg = get_cli_config()
    token = cfg.get("session.token")
    cookies = {settings.session_cookie: token} if token else None
    return LendingHTTPClient(base_url=cfg.get("api_url", settings.api_url), cookies=cookies)


def run(action: Callable[[LendingServices], Awaitable[T]]) -> T:
    """Run one API action on a fresh client; errors become a message and exit code 1."""
    async def runner():
        async with make_http_client() as http:
            return await action(LendingServices.from_http(http))

    try:
        return asyncio.run(runner())
    except LibraryConsoleError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Lending API base URL (saved for later runs)"),
):
    """Global options for the CLI (output mode, API URL)."""
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.WARNING))
    cfg = get_cli_config()
    if output:
        if set_output_mode(output):
            cfg.set("preferences.output", output.lower().strip())
    elif OUTPUT_MODE_ENV not in os.environ:
        # LIB_CLI_OUTPUT wins over the saved preference
        set_output_mode(cfg.get("preferences.output", "plain"))
    if api_url:
        cfg.set("api_url", api_url)


# --- Session ---
@app.command("login")
def cli_login(email: str, password: str = typer.Option(..., prompt=True, hide_input=True)):
    """Log in and remember the session for later commands."""
    async def action(services: LendingServices):
        session = await services.auth.login(email, password)
        token = services.http.cookies.get(settings.session_cookie)
        return session, token

    session, token = run(action)
    user = session.user
    get_cli_config().save_session(token, user.email, user.role.value)
    print(f"Logged in as {user.name or user.email} ({user.role.value}) - {dashboard_for(user.role)} dashboard")


@app.command("logout")
def cli_logout():
    """End the stored session."""
    cfg = get_cli_config()
    try:
        run(lambda services: services.auth.logout())
    finally:
        cfg.clear_session()
    print("Logged out.")


@app.command("whoami")
def cli_whoami():
    """Show the logged-in user."""
    session = run(lambda services: services.auth.me())
    print_record("Current User", session.user.model_dump(mode="json"))


# --- Catalog ---
@app.command("books")
def cli_books(
    page: int = typer.Option(1, "--page", "-p", help="Page number"),
    search: str = typer.Option("", "--search", "-s", help="Filter by title, author or ISBN"),
):
    """List one page of the catalog."""
    catalog = run(lambda services: services.catalog.query(max(1, page), search))
    print_catalog_page(catalog)


@app.command("add")
def cli_add(
    title: str = typer.Option(..., "--title"),
    author: str = typer.Option(..., "--author"),
    isbn: str = typer.Option(..., "--isbn"),
    quantity: int = typer.Option(1, "--quantity", "-q"),
):
    """Add a book to the catalog."""
    draft = {"title": title, "author": author, "isbn": isbn, "quantity": quantity}
    book = run(lambda services: services.inventory.create(draft))
    print(f"Book added successfully! {book.title} by {book.author} (id {book.id})")


@app.command("edit")
def cli_edit(
    book_id: int,
    title: Optional[str] = typer.Option(None, "--title"),
    author: Optional[str] = typer.Option(None, "--author"),
    isbn: Optional[str] = typer.Option(None, "--isbn"),
    quantity: Optional[int] = typer.Option(None, "--quantity", "-q"),
):
    """Edit a book's fields."""
    patch = {"title": title, "author": author, "isbn": isbn, "quantity": quantity}
    book = run(lambda services: services.inventory.update(book_id, patch))
    print(f"Book updated successfully! {book.title} by {book.author}, quantity {book.quantity}")


@app.command("delete")
def cli_delete(book_id: int, yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")):
    """Delete a book (refused while it has active loans)."""
    if not yes and not typer.confirm(f"Delete book {book_id}?"):
        print("Cancelled.")
        return
    run(lambda services: services.inventory.delete(book_id))
    print(f"Book {book_id} deleted.")


# --- Loans ---
@app.command("issue")
def cli_issue(book_id: int, user_id: int):
    """Issue a book to a borrower."""
    loan = run(lambda services: services.loans.issue(book_id, user_id))
    print(f"Book issued successfully! Issue ID {loan.id}")


@app.command("return")
def cli_return(issue_id: int):
    """Return an issued book."""
    loan = run(lambda services: services.loans.return_loan(issue_id))
    print(f"Book returned successfully! Issue ID {loan.id}")


@app.command("loans")
def cli_loans():
    """List every issue record."""
    print_loans(run(lambda services: services.loans.list_loans()))


@app.command("my-loans")
def cli_my_loans(page: int = typer.Option(1, "--page", "-p")):
    """Show the logged-in borrower's loans."""
    async def action(services: LendingServices):
        view = CustomerLoansView(services.auth, services.loans)
        await view.load()
        view.go_to_page(page)
        return view

    view = run(action)
    if view.state.error:
        print(f"Error: {view.state.error}")
        raise typer.Exit(code=1)
    print(f"Welcome, {view.state.user.name or 'User'}")
    print_loans(view.page_items(), empty="No borrowed books found.")
    if len(view.state.loans) > view.per_page:
        print(f"Page {view.state.page} of {view.total_pages}")


# --- Users ---
@app.command("add-user")
def cli_add_user(
    name: str = typer.Option(..., "--name"),
    email: str = typer.Option(..., "--email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    role: Role = typer.Option(Role.CUSTOMER, "--role"),
):
    """Create a user account (admin only)."""
    draft = {"name": name, "email": email, "password": password, "role": role.value}
    user = run(lambda services: services.auth.add_user(draft))
    print(f"User added successfully! {user.email} ({user.role.value}, id {user.id})")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Run the sandbox lending API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting sandbox API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        console.print("[yellow]Sandbox API stopped[/]")


if __name__ == "__main__":
    app()
