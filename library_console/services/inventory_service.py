import logging
from typing import Union

from pydantic import ValidationError as PydanticValidationError

from library_console.errors import ErrorKind, LibraryConsoleError, MutationError
from library_console.models import Book, BookDraft, BookPatch
from library_console.services.http_client import LendingHTTPClient

logger = logging.getLogger(__name__)

BOOKS_PATH = "/api/books"


def describe_validation_error(error: PydanticValidationError) -> str:
    """Flatten pydantic errors into one line for the form's error banner."""
    parts = []
    for item in error.errors():
        field = ".".join(str(loc) for loc in item.get("loc", ()))
        parts.append(f"{field}: {item.get('msg')}" if field else str(item.get("msg")))
    return "; ".join(parts) or "Invalid input"


class InventoryMutationClient:
    """Add, edit and delete catalog records.

    Nothing here touches local catalog state: callers re-query the current page
    after a confirmed mutation so quantities always come from the server.
    """

    def __init__(self, http: LendingHTTPClient):
        self.http = http

    async def create(self, draft: Union[BookDraft, dict]) -> Book:
        draft = self._coerce(BookDraft, draft)
        data = await self._send("POST", BOOKS_PATH, "Failed to add book", json=draft.model_dump())
        book = self._parse_book(data)
        logger.info(f"Book created: id={book.id} isbn={book.isbn}")
        return book

    async def update(self, book_id: int, patch: Union[BookPatch, dict]) -> Book:
        patch = self._coerce(BookPatch, patch)
        payload = patch.to_payload()
        if not payload:
            raise MutationError(ErrorKind.VALIDATION, "Nothing to update")
        data = await self._send("PUT", f"{BOOKS_PATH}/{book_id}", "Failed to update book", json=payload)
        book = self._parse_book(data)
        logger.info(f"Book updated: id={book.id}")
        return book

    async def delete(self, book_id: int) -> None:
        # Delete with active loans is refused by the server (409); never assume success.
        await self._send("DELETE", f"{BOOKS_PATH}/{book_id}", "Failed to delete")
        logger.info(f"Book deleted: id={book_id}")

    @staticmethod
    def _coerce(model, value):
        if isinstance(value, model):
            return value
        try:
            return model.model_validate(value)
        except PydanticValidationError as e:
            raise MutationError(ErrorKind.VALIDATION, describe_validation_error(e)) from e

    async def _send(self, method: str, path: str, default_error: str, **kwargs):
        try:
            return await self.http.request_json(method, path, default_error=default_error, **kwargs)
        except LibraryConsoleError as e:
            raise MutationError.from_error(e) from e

    @staticmethod
    def _parse_book(data) -> Book:
        try:
            return Book.model_validate(data)
        except PydanticValidationError as e:
            raise MutationError(ErrorKind.SERVER, "Malformed book record from the lending service") from e
