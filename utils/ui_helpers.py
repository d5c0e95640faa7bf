import os
import json
from typing import Any, Dict, Sequence
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from library_console.models import CatalogPage, Loan

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()

def set_output_mode(mode: str) -> bool:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode
        return True
    return False

def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()

def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""

def print_catalog_page(page: CatalogPage) -> None:
    """Print one catalog page in the current output mode.
    - plain: 'id. Title by Author (ISBN ...) x quantity' lines, then a page footer
    - json: the page as {books, currentPage, totalPages}
    - rich: a table with the footer as caption
    """
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps(page.model_dump(by_alias=True, exclude={"search_term"}), ensure_ascii=False))
        return

    footer = f"Page {page.current_page} of {page.total_pages}"
    if page.search_term:
        footer += f" (search: {page.search_term})"

    if not page.books:
        print("No books found")
        print(footer)
        return

    if mode == "rich":
        table = Table(title="📚 Books", caption=footer, show_lines=True, header_style="bold cyan")
        for column in ("ID", "Title", "Author", "ISBN", "Quantity"):
            table.add_column(column)
        for b in page.books:
            table.add_row(str(b.id), b.title, b.author, b.isbn, str(b.quantity))
        _console.print(table)
    else:
        for b in page.books:
            print(f"{b.id}. {b.title} by {b.author} (ISBN {b.isbn}) x{b.quantity}")
        print(footer)

def print_loans(loans: Sequence[Loan], empty: str = "No issued books found") -> None:
    mode = get_output_mode()

    if mode == "json":
        print(json.dumps([l.model_dump(mode="json", exclude_none=True) for l in loans], ensure_ascii=False))
        return

    if not loans:
        print(empty)
        return

    if mode == "rich":
        table = Table(title="📖 Issued Books", show_lines=True, header_style="bold cyan")
        for column in ("Issue ID", "Book", "User ID", "Issued At", "Returned At"):
            table.add_column(column)
        for l in loans:
            book = l.title or str(l.book_id)
            table.add_row(str(l.id), book, str(l.user_id), _fmt_time(l.issued_at),
                          _fmt_time(l.returned_at) or "Not returned")
        _console.print(table)
    else:
        for l in loans:
            book = f"{l.title} ({l.book_id})" if l.title else f"book {l.book_id}"
            status = f"returned {_fmt_time(l.returned_at)}" if l.returned_at else "Not returned"
            print(f"#{l.id} {book} -> user {l.user_id}, issued {_fmt_time(l.issued_at)}, {status}")

def print_record(title: str, record: Dict[str, Any]) -> None:
    """Print a single confirmed record (book, loan or user)."""
    mode = get_output_mode()
    if mode == "json":
        print(json.dumps(record, ensure_ascii=False, default=str))
    elif mode == "rich":
        content = "\n".join(f"[bold]{k}:[/] {v}" for k, v in record.items())
        _console.print(Panel.fit(content, title=title, border_style="blue"))
    else:
        print(title)
        for k, v in record.items():
            print(f"{k}: {v}")
