import logging
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from library_console.errors import ApiError, ErrorKind, LibraryConsoleError, MutationError
from library_console.models import Role, User, UserDraft
from library_console.services.http_client import LendingHTTPClient
from library_console.services.inventory_service import describe_validation_error

logger = logging.getLogger(__name__)

DASHBOARDS = {
    Role.ADMIN: "admin",
    Role.LIBRARIAN: "librarian",
    Role.CUSTOMER: "customer",
}


def dashboard_for(role: Role) -> str:
    return DASHBOARDS.get(role, "customer")


@dataclass(frozen=True)
class Session:
    """The logged-in user, passed explicitly to whoever needs it."""
    user: Optional[User] = None

    @property
    def authenticated(self) -> bool:
        return self.user is not None


def _parse_user(data) -> User:
    if isinstance(data, dict) and isinstance(data.get("user"), dict):
        data = data["user"]
    try:
        return User.model_validate(data)
    except PydanticValidationError as e:
        raise ApiError("Malformed user record from the lending service") from e


class AuthService:
    def __init__(self, http: LendingHTTPClient):
        self.http = http

    async def login(self, email: str, password: str) -> Session:
        # A stored session cookie would sit beside the new one under the same name
        self.http.cookies.clear()
        data = await self.http.post("/auth/login", json={"email": email, "password": password},
                                    default_error="Login failed")
        user = _parse_user(data)
        logger.info(f"Logged in as {user.email} ({user.role.value})")
        return Session(user=user)

    async def me(self) -> Session:
        data = await self.http.get("/auth/me", default_error="Please log in first.")
        return Session(user=_parse_user(data))

    async def logout(self) -> Session:
        await self.http.post("/auth/logout", default_error="Logout failed")
        self.http.cookies.clear()
        return Session()

    async def add_user(self, draft: Union[UserDraft, dict]) -> User:
        if not isinstance(draft, UserDraft):
            try:
                draft = UserDraft.model_validate(draft)
            except PydanticValidationError as e:
                raise MutationError(ErrorKind.VALIDATION, describe_validation_error(e)) from e
        try:
            data = await self.http.post("/users/add", json=draft.model_dump(mode="json"),
                                        default_error="Failed to add user")
        except LibraryConsoleError as e:
            raise MutationError.from_error(e) from e
        user = _parse_user(data)
        logger.info(f"User created: id={user.id} role={user.role.value}")
        return user
