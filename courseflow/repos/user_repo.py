from __future__ import annotations

from typing import Protocol
from uuid import UUID

from courseflow.core.errors import Conflict
from courseflow.models.user import User


class UserRepo(Protocol):
    async def get_by_id(self, user_id: UUID) -> User | None: ...
    async def add(self, user: User) -> None: ...


class InMemoryUserRepo:
    def __init__(self) -> None:
        self._by_email: dict[str, User] = {}
        self._by_id: dict[UUID, User] = {}

    def clear(self) -> None:
        self._by_email.clear()
        self._by_id.clear()

    async def get_by_id(self, user_id: UUID) -> User | None:
        return self._by_id.get(user_id)

    async def add(self, user: User) -> None:
        if user.email in self._by_email:
            raise Conflict("email already exists")
        self._by_email[user.email] = user
        self._by_id[user.id] = user
