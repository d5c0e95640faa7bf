from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Role(str, Enum):
    ADMIN = "admin"
    LIBRARIAN = "librarian"
    CUSTOMER = "customer"


class LoanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"


class Book(BaseModel):
    """A catalog entry as confirmed by the lending API."""
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    author: str
    isbn: str
    quantity: int = Field(ge=0, description="Copies available for new issues")

    def __str__(self) -> str:
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"


def _required_text(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be blank")
    return value


class BookDraft(BaseModel):
    title: str
    author: str
    isbn: str
    quantity: int = Field(gt=0)

    @field_validator("title", "author", "isbn")
    @classmethod
    def strip_required(cls, value: str) -> str:
        return _required_text(value)


class BookPatch(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)

    @field_validator("title", "author", "isbn")
    @classmethod
    def strip_optional(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _required_text(value)

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class Loan(BaseModel):
    """An issue record. ``returned_at`` is set exactly once, by a return."""
    model_config = ConfigDict(frozen=True)

    id: int
    book_id: int
    user_id: int
    issued_at: datetime
    returned_at: Optional[datetime] = None
    # Present on a borrower's own loan list, joined in by the server
    title: Optional[str] = None
    author: Optional[str] = None

    @property
    def status(self) -> LoanStatus:
        return LoanStatus.ACTIVE if self.returned_at is None else LoanStatus.RETURNED

    @property
    def is_active(self) -> bool:
        return self.returned_at is None


class CatalogPage(BaseModel):
    """One page of the book list. Always replaced wholesale, never merged."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    books: List[Book] = Field(default_factory=list)
    current_page: int = Field(default=1, alias="currentPage")
    total_pages: int = Field(default=1, alias="totalPages")
    search_term: str = ""


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    email: str
    role: Role = Role.CUSTOMER


class UserDraft(BaseModel):
    name: str
    email: str
    password: str
    role: Role = Role.CUSTOMER

    @field_validator("name", "email", "password")
    @classmethod
    def strip_required(cls, value: str) -> str:
        return _required_text(value)


BorrowerId = Union[int, str]
