import asyncio

import httpx
import pytest

from api import create_app
from library_console.errors import CatalogFetchError, ErrorKind
from library_console.services.catalog_service import CatalogQueryClient, SearchDebouncer
from library_console.services.http_client import LendingHTTPClient


def _many_books(count):
    return [
        {"title": f"Book {i:02d}", "author": "Author A" if i % 2 else "Author B", "isbn": f"isbn-{i}", "quantity": 1}
        for i in range(1, count + 1)
    ]


def test_query_returns_requested_page(connect):
    app = create_app(books=_many_books(23))

    async def scenario():
        async with connect(app, "librarian") as services:
            return await services.catalog.query(3)

    page = asyncio.run(scenario())
    assert page.current_page == 3
    assert page.total_pages == 3
    assert [b.title for b in page.books] == ["Book 21", "Book 22", "Book 23"]
    assert page.search_term == ""


def test_query_with_search_term_filters(connect, sandbox):
    async def scenario():
        async with connect(sandbox, "librarian") as services:
            return await services.catalog.query(1, "joyce")

    page = asyncio.run(scenario())
    assert [b.title for b in page.books] == ["Ulysses"]
    assert page.search_term == "joyce"
    assert page.total_pages == 1


def test_query_sends_exactly_one_request_with_page_size():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"books": [], "currentPage": 2, "totalPages": 4})

    async def scenario():
        async with LendingHTTPClient(base_url="http://lending.test", transport=httpx.MockTransport(handler)) as http:
            return await CatalogQueryClient(http, page_size=10).query(2, "dune")

    page = asyncio.run(scenario())
    assert len(requests) == 1
    params = requests[0].url.params
    assert params["page"] == "2"
    assert params["limit"] == "10"
    assert params["search"] == "dune"
    assert page.total_pages == 4


def test_query_rejects_unclamped_page():
    async def scenario():
        async with LendingHTTPClient(base_url="http://lending.test") as http:
            await CatalogQueryClient(http).query(0)

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_server_error_becomes_catalog_fetch_error():
    def handler(request):
        return httpx.Response(500, json={"error": "database offline"})

    async def scenario():
        async with LendingHTTPClient(base_url="http://lending.test", transport=httpx.MockTransport(handler)) as http:
            await CatalogQueryClient(http).query(1)

    with pytest.raises(CatalogFetchError, match="database offline"):
        asyncio.run(scenario())


def test_unauthenticated_query_is_auth_kind(connect, sandbox):
    async def scenario():
        async with connect(sandbox) as services:
            await services.catalog.query(1)

    with pytest.raises(CatalogFetchError) as exc:
        asyncio.run(scenario())
    assert exc.value.kind is ErrorKind.AUTH


def test_get_book_reads_fresh_quantity(connect, sandbox):
    async def scenario():
        async with connect(sandbox, "librarian") as services:
            return await services.catalog.get_book(2)

    book = asyncio.run(scenario())
    assert book.title == "Sapiens"
    assert book.quantity == 3


# ------------------------- Debounce ------------------------- #
def test_rapid_keystrokes_deliver_only_final_term():
    delivered = []

    async def callback(term):
        delivered.append(term)

    async def scenario():
        debouncer = SearchDebouncer(callback, delay=0.05)
        for term in ["h", "ha", "har", "harr", "harari"]:
            debouncer.submit(term)
            await asyncio.sleep(0.01)
        assert delivered == []
        await debouncer.wait()

    asyncio.run(scenario())
    assert delivered == ["harari"]


def test_separate_pauses_deliver_each_settled_term():
    delivered = []

    async def callback(term):
        delivered.append(term)

    async def scenario():
        debouncer = SearchDebouncer(callback, delay=0.02)
        debouncer.submit("joyce")
        await debouncer.wait()
        debouncer.submit("harari")
        await debouncer.wait()

    asyncio.run(scenario())
    assert delivered == ["joyce", "harari"]


def test_cancel_drops_pending_term():
    delivered = []

    async def callback(term):
        delivered.append(term)

    async def scenario():
        debouncer = SearchDebouncer(callback, delay=0.02)
        debouncer.submit("joyce")
        debouncer.cancel()
        assert not debouncer.pending
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert delivered == []


def test_flush_delivers_immediately_once():
    delivered = []

    async def callback(term):
        delivered.append(term)

    async def scenario():
        debouncer = SearchDebouncer(callback, delay=10)
        debouncer.submit("ulysses")
        await debouncer.flush()
        await debouncer.flush()

    asyncio.run(scenario())
    assert delivered == ["ulysses"]


def test_close_cancels_running_delivery():
    started = asyncio.Event()
    finished = []

    async def callback(term):
        started.set()
        await asyncio.sleep(10)
        finished.append(term)

    async def scenario():
        debouncer = SearchDebouncer(callback, delay=0.01)
        debouncer.submit("dune")
        await started.wait()
        debouncer.close()
        await debouncer.wait()

    asyncio.run(scenario())
    assert finished == []
