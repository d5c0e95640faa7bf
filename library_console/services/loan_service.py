import logging
from typing import List, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from library_console.errors import (
    ApiError,
    CatalogFetchError,
    ErrorKind,
    IssueError,
    LibraryConsoleError,
    ReturnError,
)
from library_console.models import BorrowerId, Loan
from library_console.services.catalog_service import CatalogQueryClient
from library_console.services.http_client import LendingHTTPClient

logger = logging.getLogger(__name__)

_LOANS = TypeAdapter(List[Loan])


class LoanLifecycleController:
    """Issues and returns loans.

    A loan is ACTIVE until its single, irreversible return. The server owns
    quantities; this class checks preconditions against freshly fetched data
    and never adjusts counts locally.
    """

    def __init__(self, http: LendingHTTPClient, catalog: CatalogQueryClient):
        self.http = http
        self.catalog = catalog

    async def issue(self, book_id: int, borrower_id: BorrowerId) -> Loan:
        if borrower_id is None or not str(borrower_id).strip():
            raise IssueError(ErrorKind.VALIDATION, "Borrower is required")

        try:
            book = await self.catalog.get_book(book_id)
        except CatalogFetchError as e:
            raise IssueError(e.kind, e.message, e.status_code) from e
        if book.quantity < 1:
            raise IssueError(ErrorKind.CONFLICT, f"No copies of '{book.title}' are available")

        payload = {"book_id": book_id, "user_id": borrower_id}
        try:
            data = await self.http.post("/api/books/issue", json=payload, default_error="Failed to issue book")
        except LibraryConsoleError as e:
            raise IssueError.from_error(e) from e
        loan = self._parse_loan(data, IssueError)
        logger.info(f"Loan {loan.id} issued: book={book_id} borrower={borrower_id}")
        return loan

    async def return_loan(self, loan: Union[Loan, int]) -> Loan:
        if isinstance(loan, Loan):
            if not loan.is_active:
                raise ReturnError(ErrorKind.ALREADY_RETURNED, f"Loan {loan.id} was already returned")
            loan_id = loan.id
        else:
            loan_id = loan

        try:
            data = await self.http.post("/api/books/return", json={"issue_id": loan_id},
                                        default_error="Failed to return book")
        except LibraryConsoleError as e:
            if e.status_code == 409:
                raise ReturnError(ErrorKind.ALREADY_RETURNED, e.message, e.status_code) from e
            raise ReturnError.from_error(e) from e
        returned = self._parse_loan(data, ReturnError)
        logger.info(f"Loan {returned.id} returned")
        return returned

    async def list_loans(self) -> List[Loan]:
        data = await self.http.get("/api/books/fetchissued", default_error="Failed to load issued books")
        return self._parse_loans(data)

    async def list_borrower_loans(self, user_id: int) -> List[Loan]:
        data = await self.http.get(f"/api/books/issuedbooks/{user_id}",
                                   default_error="Failed to load borrowed books.")
        return self._parse_loans(data if isinstance(data, list) else [])

    @staticmethod
    def _parse_loans(data) -> List[Loan]:
        try:
            return _LOANS.validate_python(data or [])
        except PydanticValidationError as e:
            raise ApiError("Malformed loan list from the lending service") from e

    @staticmethod
    def _parse_loan(data, error_cls) -> Loan:
        try:
            return Loan.model_validate(data)
        except PydanticValidationError as e:
            raise error_cls(ErrorKind.SERVER, "Malformed loan record from the lending service") from e
