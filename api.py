"""Sandbox lending API.

An in-memory FastAPI implementation of the lending service the console talks
to. ``main.py serve`` runs it for local development and the test-suite drives
it in-process through ``httpx.ASGITransport``.

Server rules: issuing needs an available copy, a loan is returned once, and a
book with active loans cannot be deleted. All failures answer with
``{"error": "..."}``.
"""

import hashlib
import math
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import settings

STAFF = ("admin", "librarian")

DEFAULT_USERS = [
    {"name": "Admin", "email": "admin@library.local", "password": "admin123", "role": "admin"},
    {"name": "Librarian", "email": "librarian@library.local", "password": "librarian123", "role": "librarian"},
    {"name": "Customer", "email": "customer@library.local", "password": "customer123", "role": "customer"},
]


def _hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LendingStore:
    books: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    loans: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    users: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    sessions: Dict[str, int] = field(default_factory=dict)

    def add_user(self, name: str, email: str, password: str, role: str) -> Dict[str, Any]:
        user_id = max(self.users, default=0) + 1
        self.users[user_id] = {
            "id": user_id, "name": name, "email": email, "role": role,
            "password_hash": _hash_password(password),
        }
        return self.users[user_id]

    def add_book(self, title: str, author: str, isbn: str, quantity: int) -> Dict[str, Any]:
        book_id = max(self.books, default=0) + 1
        self.books[book_id] = {"id": book_id, "title": title, "author": author, "isbn": isbn, "quantity": quantity}
        return self.books[book_id]

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email = email.strip().lower()
        return next((u for u in self.users.values() if u["email"].lower() == email), None)

    def active_loans_for(self, book_id: int) -> List[Dict[str, Any]]:
        return [l for l in self.loans.values() if l["book_id"] == book_id and l["returned_at"] is None]


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {k: user[k] for k in ("id", "name", "email", "role")}


# --- Models ---
class LoginModel(BaseModel):
    email: str
    password: str


class UserCreateModel(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    role: str = Field(default="customer", pattern="^(admin|librarian|customer)$")


class BookCreateModel(BaseModel):
    title: str = Field(min_length=1)
    author: str = Field(min_length=1)
    isbn: str = Field(min_length=1)
    quantity: int = Field(ge=1)


class BookUpdateModel(BaseModel):
    title: str | None = Field(default=None, min_length=1)
    author: str | None = Field(default=None, min_length=1)
    isbn: str | None = Field(default=None, min_length=1)
    quantity: int | None = Field(default=None, ge=0)


class IssueModel(BaseModel):
    book_id: int
    user_id: int


class ReturnModel(BaseModel):
    issue_id: int


# --- Security ---
async def get_store(request: Request) -> LendingStore:
    return request.app.state.store


async def current_user(request: Request, store: LendingStore = Depends(get_store)) -> Dict[str, Any]:
    token = request.cookies.get(settings.session_cookie)
    user_id = store.sessions.get(token) if token else None
    if user_id is None or user_id not in store.users:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return store.users[user_id]


def require_roles(*roles: str):
    async def dependency(user: Dict[str, Any] = Depends(current_user)) -> Dict[str, Any]:
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="You do not have permission to do that")
        return user
    return dependency


require_staff = require_roles(*STAFF)
require_admin = require_roles("admin")


def create_app(books: Optional[List[Dict[str, Any]]] = None, seed_users: bool = True) -> FastAPI:
    """Build a fresh app with its own in-memory store."""
    store = LendingStore()
    if seed_users:
        for user in DEFAULT_USERS:
            store.add_user(**user)
    for book in books or []:
        store.add_book(**book)

    app = FastAPI(title=f"{settings.app_name} sandbox API", version=settings.app_version)
    app.state.store = store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = ", ".join(".".join(str(p) for p in e["loc"][1:]) or "body" for e in exc.errors())
        return JSONResponse(status_code=400, content={"error": f"Invalid or missing fields: {fields}"})

    # --- Auth ---
    @app.post("/auth/login")
    async def login(body: LoginModel, response: Response, store: LendingStore = Depends(get_store)):
        user = store.find_user_by_email(body.email)
        if not user or user["password_hash"] != _hash_password(body.password):
            raise HTTPException(status_code=401, detail="Invalid email or password")
        token = secrets.token_hex(16)
        store.sessions[token] = user["id"]
        response.set_cookie(settings.session_cookie, token, httponly=True, samesite="lax")
        return {"user": public_user(user)}

    @app.post("/auth/logout")
    async def logout(request: Request, response: Response, store: LendingStore = Depends(get_store)):
        store.sessions.pop(request.cookies.get(settings.session_cookie, ""), None)
        response.delete_cookie(settings.session_cookie)
        return {"message": "Logged out"}

    @app.get("/auth/me")
    async def me(user: Dict[str, Any] = Depends(current_user)):
        return {"user": public_user(user)}

    @app.post("/users/add", status_code=201, dependencies=[Depends(require_admin)])
    async def add_user(body: UserCreateModel, store: LendingStore = Depends(get_store)):
        if store.find_user_by_email(body.email):
            raise HTTPException(status_code=409, detail="A user with that email already exists")
        user = store.add_user(body.name.strip(), body.email.strip(), body.password, body.role)
        return public_user(user)

    # --- Books ---
    @app.get("/api/books", dependencies=[Depends(current_user)])
    async def list_books(
        page: int = Query(1),
        limit: int = Query(settings.books_per_page, ge=1, le=100),
        search: str = Query(""),
        store: LendingStore = Depends(get_store),
    ):
        term = search.strip().lower()
        matches = [
            b for _, b in sorted(store.books.items())
            if not term or term in b["title"].lower() or term in b["author"].lower() or term in b["isbn"].lower()
        ]
        total_pages = max(1, math.ceil(len(matches) / limit))
        page = min(max(1, page), total_pages)
        start = (page - 1) * limit
        return {"books": matches[start:start + limit], "currentPage": page, "totalPages": total_pages}

    @app.post("/api/books", status_code=201, dependencies=[Depends(require_staff)])
    async def create_book(body: BookCreateModel, store: LendingStore = Depends(get_store)):
        isbn = body.isbn.strip()
        if any(b["isbn"] == isbn for b in store.books.values()):
            raise HTTPException(status_code=409, detail=f"Book with ISBN {isbn} already exists.")
        return store.add_book(body.title.strip(), body.author.strip(), isbn, body.quantity)

    # --- Loans (declared before /api/books/{book_id}) ---
    @app.post("/api/books/issue", status_code=201, dependencies=[Depends(require_staff)])
    async def issue_book(body: IssueModel, store: LendingStore = Depends(get_store)):
        book = store.books.get(body.book_id)
        if book is None:
            raise HTTPException(status_code=404, detail="Book not found")
        if body.user_id not in store.users:
            raise HTTPException(status_code=400, detail="Invalid user")
        if book["quantity"] < 1:
            raise HTTPException(status_code=409, detail="No copies available")
        loan_id = max(store.loans, default=0) + 1
        loan = {"id": loan_id, "book_id": book["id"], "user_id": body.user_id,
                "issued_at": _now(), "returned_at": None}
        store.loans[loan_id] = loan
        book["quantity"] -= 1
        return loan

    @app.post("/api/books/return", dependencies=[Depends(require_staff)])
    async def return_book(body: ReturnModel, store: LendingStore = Depends(get_store)):
        loan = store.loans.get(body.issue_id)
        if loan is None:
            raise HTTPException(status_code=404, detail="Issue record not found")
        if loan["returned_at"] is not None:
            raise HTTPException(status_code=409, detail="Book already returned")
        loan["returned_at"] = _now()
        book = store.books.get(loan["book_id"])
        if book is not None:
            book["quantity"] += 1
        return loan

    @app.get("/api/books/fetchissued", dependencies=[Depends(require_staff)])
    async def fetch_issued(store: LendingStore = Depends(get_store)):
        return [store.loans[k] for k in sorted(store.loans)]

    @app.get("/api/books/issuedbooks/{user_id}")
    async def borrower_loans(user_id: int, store: LendingStore = Depends(get_store),
                             user: Dict[str, Any] = Depends(current_user)):
        if user["id"] != user_id and user["role"] not in STAFF:
            raise HTTPException(status_code=403, detail="You can only view your own loans")
        rows = []
        for key in sorted(store.loans):
            loan = store.loans[key]
            if loan["user_id"] != user_id:
                continue
            book = store.books.get(loan["book_id"], {})
            rows.append({**loan, "title": book.get("title"), "author": book.get("author")})
        return rows

    @app.get("/api/books/{book_id}", dependencies=[Depends(current_user)])
    async def get_book(book_id: int, store: LendingStore = Depends(get_store)):
        book = store.books.get(book_id)
        if book is None:
            raise HTTPException(status_code=404, detail="Book not found")
        return book

    @app.put("/api/books/{book_id}", dependencies=[Depends(require_staff)])
    async def update_book(book_id: int, body: BookUpdateModel, store: LendingStore = Depends(get_store)):
        book = store.books.get(book_id)
        if book is None:
            raise HTTPException(status_code=404, detail="Book not found")
        changes = body.model_dump(exclude_none=True)
        if not changes:
            raise HTTPException(status_code=400, detail="Nothing to update")
        isbn = changes.get("isbn")
        if isbn and any(b["isbn"] == isbn and b["id"] != book_id for b in store.books.values()):
            raise HTTPException(status_code=409, detail=f"Book with ISBN {isbn} already exists.")
        book.update(changes)
        return book

    @app.delete("/api/books/{book_id}", dependencies=[Depends(require_staff)])
    async def delete_book(book_id: int, store: LendingStore = Depends(get_store)):
        if book_id not in store.books:
            raise HTTPException(status_code=404, detail="Book not found")
        if store.active_loans_for(book_id):
            raise HTTPException(status_code=409, detail="Cannot delete a book with active loans")
        del store.books[book_id]
        return {"message": "Book deleted"}

    return app


app = create_app(books=[
    {"title": "Ulysses", "author": "James Joyce", "isbn": "9780199535675", "quantity": 2},
    {"title": "Sapiens", "author": "Yuval Noah Harari", "isbn": "9780099590088", "quantity": 1},
])
