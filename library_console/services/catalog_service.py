import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from config import settings
from library_console.errors import CatalogFetchError, LibraryConsoleError
from library_console.models import Book, CatalogPage
from library_console.services.http_client import LendingHTTPClient

logger = logging.getLogger(__name__)

BOOKS_PATH = "/api/books"


class CatalogQueryClient:
    """Paginated, search-filtered reads of the book catalog."""

    def __init__(self, http: LendingHTTPClient, page_size: Optional[int] = None):
        self.http = http
        self.page_size = page_size or settings.books_per_page

    async def query(self, page: int, search_term: str = "") -> CatalogPage:
        """Fetch one catalog page. Exactly one request per call.

        ``page`` must already be clamped by the caller; an empty search term
        means no filter.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        params = {"page": page, "limit": self.page_size, "search": search_term}
        try:
            data = await self.http.get(BOOKS_PATH, params=params, default_error="Failed to load books")
        except LibraryConsoleError as e:
            raise CatalogFetchError.from_error(e) from e
        try:
            catalog = CatalogPage.model_validate(data)
        except ValueError as e:
            raise CatalogFetchError("Malformed catalog page from the lending service") from e
        return catalog.model_copy(update={"search_term": search_term})

    async def get_book(self, book_id: int) -> Book:
        """Fresh read of a single book (never served from a cache)."""
        try:
            data = await self.http.get(f"{BOOKS_PATH}/{book_id}", default_error="Failed to load book")
        except LibraryConsoleError as e:
            raise CatalogFetchError.from_error(e) from e
        try:
            return Book.model_validate(data)
        except ValueError as e:
            raise CatalogFetchError("Malformed book record from the lending service") from e


class SearchDebouncer:
    """Delays a search callback until input has been quiet for ``delay`` seconds.

    Every ``submit`` restarts the window; only the last submitted term is
    delivered, and only once. A delivery that already started is left to
    finish: dropping its result, if superseded, is the caller's job.
    """

    def __init__(self, callback: Callable[[str], Awaitable[None]], delay: Optional[float] = None):
        self._callback = callback
        self.delay = settings.search_debounce_seconds if delay is None else delay
        self._timer: Optional[asyncio.Task] = None
        self._pending: Optional[str] = None
        self._deliveries: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def submit(self, term: str) -> None:
        self.cancel()
        self._pending = term
        self._timer = asyncio.get_running_loop().create_task(self._fire_later(term))

    def cancel(self) -> None:
        if self.pending:
            self._timer.cancel()
        self._timer = None
        self._pending = None

    def close(self) -> None:
        """Drop the pending term and cancel deliveries still in flight."""
        self.cancel()
        for delivery in list(self._deliveries):
            delivery.cancel()

    async def flush(self) -> None:
        """Deliver the pending term now instead of waiting out the window."""
        if not self.pending:
            return
        term = self._pending
        self.cancel()
        await self._callback(term)

    async def wait(self) -> None:
        """Wait until the pending term (if any) has been delivered."""
        if self._timer is not None:
            await asyncio.wait({self._timer})
        if self._deliveries:
            await asyncio.wait(set(self._deliveries))

    async def _fire_later(self, term: str) -> None:
        await asyncio.sleep(self.delay)
        self._pending = None
        logger.debug(f"Search settled on {term!r}")
        delivery = asyncio.get_running_loop().create_task(self._callback(term))
        self._deliveries.add(delivery)
        delivery.add_done_callback(self._deliveries.discard)
