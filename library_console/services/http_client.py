import logging
from typing import Any, Dict, Optional

import httpx

from config import settings
from library_console.errors import (
    ApiError,
    AuthError,
    ConflictError,
    LibraryConsoleError,
    NetworkError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


_STATUS_ERRORS = {
    400: ValidationError,
    401: AuthError,
    403: AuthError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
}


def error_message(response: httpx.Response, default: str) -> str:
    """Pull the human-readable message out of an error body.

    The lending API reports ``{"error": ...}``; FastAPI-style ``detail`` is
    accepted too. Non-JSON bodies fall back to ``default``.
    """
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        message = data.get("error") or data.get("detail")
        if isinstance(message, str) and message:
            return message
    return default


def classify_response(response: httpx.Response, default: str) -> LibraryConsoleError:
    error_cls = _STATUS_ERRORS.get(response.status_code, ApiError)
    return error_cls(error_message(response, default), status_code=response.status_code)


class LendingHTTPClient:
    """Credentialed async client for the lending API.

    Holds the session cookie jar, so every call after ``/auth/login`` is sent
    with the session. Any non-2xx status raises, whatever the body looks like.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cookies: Optional[Dict[str, str]] = None,
    ):
        limits = httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0
        )
        timeout = timeout if timeout is not None else settings.http_timeout

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_url,
            limits=limits,
            timeout=httpx.Timeout(timeout, connect=5.0),
            follow_redirects=True,
            transport=transport,
            cookies=cookies,
        )

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    async def request_json(self, method: str, path: str, default_error: str = "Request failed", **kwargs) -> Any:
        """Send a request and return the decoded JSON body (``None`` when empty)."""
        logger.debug(f"{method} {path} {kwargs.get('params') or ''}")
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise NetworkError(f"Could not reach the lending service: {e}") from e

        if not response.is_success:
            error = classify_response(response, default_error)
            logger.warning(f"{method} {path} -> {response.status_code}: {error.message}")
            raise error

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError("Malformed response from the lending service", status_code=response.status_code) from e

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request_json("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request_json("POST", path, **kwargs)

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
