from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Carried through the request via FastAPI's dependency system and
    handed to services, which apply the business rules that depend on
    who is asking.

        user_id: subject from JWT
        roles: platform roles (student, instructor, admin)
    """

    user_id: UUID
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str]) -> bool:
        return bool(self.roles & roles)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def is_student(self) -> bool:
        return "student" in self.roles
