"""Dashboard view state and the coordinator that keeps it in sync.

The state is an immutable record: every transition builds a new ``ViewState``
with ``dataclasses.replace``. After any confirmed mutation the coordinator
drops the open modal and re-queries the page the user is looking at, so book
quantities and loan rows only ever show server-confirmed values.

Catalog queries are numbered. A response is applied only if its number is
still the latest one issued; anything older is discarded on arrival.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from config import settings
from library_console.errors import (
    AuthError,
    CatalogFetchError,
    ErrorKind,
    LibraryConsoleError,
    MutationError,
)
from library_console.models import Book, Loan, Role, User
from library_console.services import LendingServices
from library_console.services.auth_service import AuthService
from library_console.services.catalog_service import CatalogQueryClient, SearchDebouncer
from library_console.services.inventory_service import InventoryMutationClient
from library_console.services.loan_service import LoanLifecycleController

logger = logging.getLogger(__name__)


class Modal(str, Enum):
    ADD_BOOK = "add_book"
    EDIT_BOOK = "edit_book"
    ISSUE = "issue"
    RETURN = "return"
    ADD_USER = "add_user"


class Action(str, Enum):
    ADD_BOOK = "add_book"
    EDIT_BOOK = "edit_book"
    DELETE_BOOK = "delete_book"
    ISSUE = "issue"
    RETURN = "return"
    SEARCH = "search"
    LOANS = "loans"
    ADD_USER = "add_user"


CAPABILITIES: Dict[Role, FrozenSet[Action]] = {
    Role.ADMIN: frozenset({Action.ADD_BOOK, Action.EDIT_BOOK, Action.DELETE_BOOK, Action.ADD_USER}),
    Role.LIBRARIAN: frozenset({
        Action.ADD_BOOK, Action.EDIT_BOOK, Action.ISSUE, Action.RETURN, Action.SEARCH, Action.LOANS,
    }),
    Role.CUSTOMER: frozenset(),
}

MODAL_ACTIONS = {
    Modal.ADD_BOOK: Action.ADD_BOOK,
    Modal.EDIT_BOOK: Action.EDIT_BOOK,
    Modal.ISSUE: Action.ISSUE,
    Modal.RETURN: Action.RETURN,
    Modal.ADD_USER: Action.ADD_USER,
}

EMPTY_BOOK_FORM = {"title": "", "author": "", "isbn": "", "quantity": 1}
EMPTY_USER_FORM = {"name": "", "email": "", "password": "", "role": Role.CUSTOMER.value}


def clamp_page(page: int, total_pages: int) -> int:
    """Nearest page inside ``[1, max(1, total_pages)]``."""
    return min(max(1, page), max(1, total_pages))


def total_pages_for(count: int, per_page: int) -> int:
    return max(1, math.ceil(count / per_page))


def paginate(items: Sequence[Any], page: int, per_page: int) -> List[Any]:
    page = clamp_page(page, total_pages_for(len(items), per_page))
    start = (page - 1) * per_page
    return list(items[start:start + per_page])


@dataclass(frozen=True)
class ViewState:
    current_page: int = 1
    total_pages: int = 1
    search_term: str = ""
    debounced_search_term: str = ""
    books: Tuple[Book, ...] = ()
    loans: Tuple[Loan, ...] = ()
    modal: Optional[Modal] = None
    selected_book: Optional[Book] = None
    selected_loan: Optional[Loan] = None
    form: Dict[str, Any] = field(default_factory=dict)
    submitting: bool = False
    pending_deletes: FrozenSet[int] = frozenset()
    pending_returns: FrozenSet[int] = frozenset()
    loading: bool = False
    error: str = ""
    success: str = ""
    auth_required: bool = False


class DashboardCoordinator:
    """Owns pagination, search, modals and reconciliation for one dashboard."""

    def __init__(
        self,
        role: Role,
        catalog: CatalogQueryClient,
        inventory: InventoryMutationClient,
        loans: LoanLifecycleController,
        auth: Optional[AuthService] = None,
        debounce: Optional[float] = None,
    ):
        self.role = Role(role)
        self.catalog = catalog
        self.inventory = inventory
        self.loans = loans
        self.auth = auth
        self.state = ViewState()
        self._catalog_generation = 0
        self._loans_generation = 0
        self._debouncer = SearchDebouncer(self._apply_search, delay=debounce)

    @classmethod
    def for_services(cls, role: Role, services: LendingServices, debounce: Optional[float] = None):
        return cls(role, services.catalog, services.inventory, services.loans, services.auth, debounce=debounce)

    # ------------------------- State helpers ------------------------- #
    def _set(self, **changes) -> ViewState:
        self.state = replace(self.state, **changes)
        return self.state

    def _fail(self, error: LibraryConsoleError) -> None:
        self._set(error=error.message, auth_required=self.state.auth_required or error.kind is ErrorKind.AUTH)

    def can(self, action: Action) -> bool:
        return action in CAPABILITIES.get(self.role, frozenset())

    def _require(self, action: Action) -> None:
        if not self.can(action):
            raise AuthError(f"The {self.role.value} dashboard cannot {action.value.replace('_', ' ')}")

    def can_return(self, loan: Loan) -> bool:
        return loan.is_active and loan.id not in self.state.pending_returns

    def can_delete(self, book: Book) -> bool:
        return self.can(Action.DELETE_BOOK) and book.id not in self.state.pending_deletes

    # ------------------------- Queries ------------------------- #
    async def load(self) -> ViewState:
        if self.can(Action.LOANS):
            await asyncio.gather(self.refresh(), self.refresh_loans())
        else:
            await self.refresh()
        return self.state

    async def refresh(self, page: Optional[int] = None, term: Optional[str] = None) -> bool:
        """Re-query the catalog; returns False if nothing was applied.

        ``term`` replaces the debounced search term only once its page arrives.
        """
        page = self.state.current_page if page is None else page
        term = self.state.debounced_search_term if term is None else term
        self._catalog_generation += 1
        generation = self._catalog_generation
        self._set(loading=True)
        try:
            catalog = await self.catalog.query(page, term)
        except CatalogFetchError as e:
            if generation != self._catalog_generation:
                logger.debug(f"Dropping error from superseded catalog query #{generation}: {e}")
                return False
            # Keep the previous page visible
            self._set(loading=False)
            self._fail(e)
            return False
        except asyncio.CancelledError:
            if generation == self._catalog_generation:
                self._set(loading=False)
            raise

        if generation != self._catalog_generation:
            logger.debug(f"Dropping stale catalog page {catalog.current_page} for {term!r} (query #{generation})")
            return False

        total = max(1, catalog.total_pages)
        self._set(
            books=tuple(catalog.books),
            debounced_search_term=term,
            current_page=clamp_page(catalog.current_page, total),
            total_pages=total,
            loading=False,
        )
        return True

    async def refresh_loans(self) -> bool:
        self._loans_generation += 1
        generation = self._loans_generation
        try:
            loans = await self.loans.list_loans()
        except LibraryConsoleError as e:
            if generation == self._loans_generation:
                self._fail(e)
            return False
        if generation != self._loans_generation:
            return False
        self._set(loans=tuple(loans))
        return True

    async def _reconcile(self, loans: bool = False, page: Optional[int] = None) -> None:
        if loans and self.can(Action.LOANS):
            await asyncio.gather(self.refresh(page), self.refresh_loans())
        else:
            await self.refresh(page)

    # ------------------------- Pagination ------------------------- #
    async def go_to_page(self, page: int) -> bool:
        if page < 1 or page > max(1, self.state.total_pages):
            return False
        return await self.refresh(page)

    async def next_page(self) -> bool:
        return await self.go_to_page(self.state.current_page + 1)

    async def prev_page(self) -> bool:
        return await self.go_to_page(self.state.current_page - 1)

    # ------------------------- Search ------------------------- #
    def set_search_term(self, term: str) -> None:
        self._require(Action.SEARCH)
        self._set(search_term=term)
        self._debouncer.submit(term)

    @property
    def search_pending(self) -> bool:
        return self._debouncer.pending

    async def settle_search(self) -> None:
        await self._debouncer.wait()

    async def flush_search(self) -> None:
        """Apply the typed term now (e.g. on Enter) without waiting for the window."""
        await self._debouncer.flush()

    def close(self) -> None:
        self._debouncer.close()

    async def _apply_search(self, term: str) -> None:
        await self.refresh(1, term)

    # ------------------------- Modals ------------------------- #
    def _open(self, modal: Modal, **changes) -> bool:
        self._require(MODAL_ACTIONS[modal])
        if self.state.submitting:
            return False
        self._set(modal=modal, selected_book=None, selected_loan=None, form={}, error="", success="")
        self._set(**changes)
        return True

    def open_add_book(self) -> bool:
        return self._open(Modal.ADD_BOOK, form=dict(EMPTY_BOOK_FORM))

    def open_edit_book(self, book: Book) -> bool:
        form = {"title": book.title, "author": book.author, "isbn": book.isbn, "quantity": book.quantity}
        return self._open(Modal.EDIT_BOOK, selected_book=book, form=form)

    def open_issue(self, book: Book) -> bool:
        return self._open(Modal.ISSUE, selected_book=book, form={"user_id": ""})

    def open_return(self, loan: Loan) -> bool:
        return self._open(Modal.RETURN, selected_loan=loan)

    def open_add_user(self) -> bool:
        return self._open(Modal.ADD_USER, form=dict(EMPTY_USER_FORM))

    def close_modal(self) -> bool:
        if self.state.submitting:
            return False
        self._set(modal=None, selected_book=None, selected_loan=None, form={})
        return True

    def update_form(self, **fields) -> ViewState:
        if self.state.modal is None:
            raise ValueError("No form is open")
        return self._set(form={**self.state.form, **fields})

    async def submit(self) -> Optional[Any]:
        """Submit the open modal. Returns the confirmed record, or None.

        A second call while the first is in flight is dropped without a request.
        """
        modal = self.state.modal
        if modal is None:
            return None
        if self.state.submitting:
            logger.debug(f"Ignoring duplicate submit of {modal.value}")
            return None

        self._set(submitting=True, error="", success="")
        try:
            result, message = await self._dispatch(modal)
        except LibraryConsoleError as e:
            self._fail(e)
            return None
        finally:
            self._set(submitting=False)

        self._set(modal=None, selected_book=None, selected_loan=None, form={}, success=message)
        await self._reconcile(loans=modal in (Modal.ISSUE, Modal.RETURN))
        return result

    async def _dispatch(self, modal: Modal):
        state = self.state
        if modal is Modal.ADD_BOOK:
            return await self.inventory.create(state.form), "Book added successfully!"
        if modal is Modal.EDIT_BOOK:
            return await self.inventory.update(state.selected_book.id, state.form), "Book updated successfully!"
        if modal is Modal.ISSUE:
            loan = await self.loans.issue(state.selected_book.id, state.form.get("user_id"))
            return loan, "Book issued successfully!"
        if modal is Modal.RETURN:
            return await self.loans.return_loan(state.selected_loan), "Book returned successfully!"
        if modal is Modal.ADD_USER:
            if self.auth is None:
                raise MutationError(ErrorKind.AUTH, "User management is not available")
            return await self.auth.add_user(state.form), "User added successfully!"
        raise ValueError(f"Unknown modal: {modal}")

    # ------------------------- Row actions ------------------------- #
    async def delete_book(self, book_id: int) -> bool:
        self._require(Action.DELETE_BOOK)
        if book_id in self.state.pending_deletes:
            return False

        self._set(pending_deletes=self.state.pending_deletes | {book_id}, error="", success="")
        try:
            await self.inventory.delete(book_id)
        except MutationError as e:
            self._fail(e)
            return False
        finally:
            self._set(pending_deletes=self.state.pending_deletes - {book_id})

        state = self.state
        page = state.current_page
        emptied = bool(state.books) and all(b.id == book_id for b in state.books)
        if emptied and page == state.total_pages and page > 1:
            page = max(1, state.total_pages - 1)
        if state.selected_book is not None and state.selected_book.id == book_id and not state.submitting:
            self._set(modal=None, selected_book=None, form={})
        self._set(success="Book deleted successfully!")
        await self.refresh(page)
        return True

    async def return_loan(self, loan_id: int) -> bool:
        self._require(Action.RETURN)
        if loan_id in self.state.pending_returns:
            return False
        loan = next((item for item in self.state.loans if item.id == loan_id), None)

        self._set(pending_returns=self.state.pending_returns | {loan_id}, error="", success="")
        try:
            await self.loans.return_loan(loan if loan is not None else loan_id)
        except MutationError as e:
            self._fail(e)
            return False
        finally:
            self._set(pending_returns=self.state.pending_returns - {loan_id})

        self._set(success="Book returned successfully!")
        await self._reconcile(loans=True)
        return True


@dataclass(frozen=True)
class CustomerState:
    user: Optional[User] = None
    loans: Tuple[Loan, ...] = ()
    page: int = 1
    loading: bool = True
    error: str = ""
    auth_required: bool = False


class CustomerLoansView:
    """A customer's own loans, paginated locally."""

    def __init__(self, auth: AuthService, loans: LoanLifecycleController, per_page: Optional[int] = None):
        self.auth = auth
        self.loans = loans
        self.per_page = per_page or settings.loans_per_page
        self.state = CustomerState()

    async def load(self) -> CustomerState:
        try:
            session = await self.auth.me()
        except LibraryConsoleError as e:
            self.state = replace(self.state, loading=False, error=e.message,
                                 auth_required=e.kind is ErrorKind.AUTH)
            return self.state

        try:
            loans = await self.loans.list_borrower_loans(session.user.id)
        except LibraryConsoleError as e:
            logger.warning(f"Could not load loans for user {session.user.id}: {e}")
            loans = []
        self.state = replace(self.state, user=session.user, loans=tuple(loans), page=1, loading=False)
        return self.state

    @property
    def total_pages(self) -> int:
        return total_pages_for(len(self.state.loans), self.per_page)

    def page_items(self) -> List[Loan]:
        return paginate(self.state.loans, self.state.page, self.per_page)

    def go_to_page(self, page: int) -> bool:
        if page < 1 or page > self.total_pages:
            return False
        self.state = replace(self.state, page=page)
        return True
