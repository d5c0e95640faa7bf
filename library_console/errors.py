"""Error taxonomy shared by the lending API clients and the dashboards.

Transport-level errors are raised by the HTTP client after classifying the
response status. The services re-raise them as operation errors
(``CatalogFetchError``, ``MutationError`` and friends) so the view layer only
has to show ``str(error)``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NETWORK = "network"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    SERVER = "server"
    ALREADY_RETURNED = "already_returned"


class LibraryConsoleError(Exception):
    """Base exception for every error surfaced to the user"""

    kind: ErrorKind = ErrorKind.SERVER

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class NetworkError(LibraryConsoleError):
    """Transport failure: the request never produced a response"""
    kind = ErrorKind.NETWORK


class ValidationError(LibraryConsoleError):
    """Input rejected, either locally or with a 400/422 response"""
    kind = ErrorKind.VALIDATION


class ConflictError(LibraryConsoleError):
    """Server-side state precondition violated (409)"""
    kind = ErrorKind.CONFLICT


class AuthError(LibraryConsoleError):
    """Unauthenticated or not allowed (401/403)"""
    kind = ErrorKind.AUTH


class NotFoundError(LibraryConsoleError):
    kind = ErrorKind.NOT_FOUND


class ApiError(LibraryConsoleError):
    """Any other non-2xx response"""
    kind = ErrorKind.SERVER


class CatalogFetchError(LibraryConsoleError):
    """A catalog page could not be loaded; the previous page stays visible"""

    def __init__(self, message: str, status_code: Optional[int] = None, kind: ErrorKind = ErrorKind.SERVER):
        super().__init__(message, status_code)
        self.kind = kind

    @classmethod
    def from_error(cls, error: LibraryConsoleError) -> "CatalogFetchError":
        return cls(error.message, error.status_code, error.kind)


class MutationError(LibraryConsoleError):
    """A create/update/delete (or issue/return) was not applied"""

    def __init__(self, kind: ErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.kind = kind

    @classmethod
    def from_error(cls, error: LibraryConsoleError) -> "MutationError":
        return cls(error.kind, error.message, error.status_code)


class IssueError(MutationError):
    pass


class ReturnError(MutationError):
    pass
