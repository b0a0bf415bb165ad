from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class User:
    """Directory entry for a person known to the platform.

    Identity itself lives with the identity provider; this record holds
    what certificates and enrollment rules need (display name, roles).
    """

    id: UUID
    email: str
    name: str = ""
    roles: tuple[str, ...] = ()  # immutable

    @staticmethod
    def new(*, email: str, name: str = "", roles: tuple[str, ...] = ()) -> User:
        return User(id=uuid4(), email=email.strip().lower(), name=name, roles=roles)
