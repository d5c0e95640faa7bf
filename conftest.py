from contextlib import asynccontextmanager

import httpx
import pytest

from api import DEFAULT_USERS, create_app
from library_console.services import LendingServices
from library_console.services.http_client import LendingHTTPClient

SANDBOX_URL = "http://testserver"

CREDENTIALS = {user["role"]: (user["email"], user["password"]) for user in DEFAULT_USERS}


@pytest.fixture
def sandbox():
    """A fresh in-memory lending API for each test."""
    return create_app(books=[
        {"title": "Ulysses", "author": "James Joyce", "isbn": "9780199535675", "quantity": 1},
        {"title": "Sapiens", "author": "Yuval Noah Harari", "isbn": "9780099590088", "quantity": 3},
    ])


@pytest.fixture
def connect():
    """Factory: ``async with connect(app, "librarian") as services: ...``"""
    @asynccontextmanager
    async def _connect(app, role=None):
        http = LendingHTTPClient(base_url=SANDBOX_URL, transport=httpx.ASGITransport(app=app))
        services = LendingServices.from_http(http)
        try:
            if role:
                await services.auth.login(*CREDENTIALS[role])
            yield services
        finally:
            await http.close()
    return _connect
