"""Enrollment persistence.

Three writes must hold under concurrent callers, and every
implementation provides them as single atomic steps:

  add                      insert-if-absent on (student_id, course_id)
  update                   serialized read-modify-write per enrollment
  mark_certificate_issued  compare-and-swap on certificate_issued
  delete_cascade           remove the row, its exam attempts and its seat
                           on the course counter as one unit
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Protocol
from uuid import UUID

from courseflow.core.errors import Conflict
from courseflow.models.enrollment import CompletionSnapshot, Enrollment
from courseflow.repos.attempt_repo import InMemoryAttemptRepo
from courseflow.repos.course_catalog import InMemoryCourseCatalog

Mutation = Callable[[Enrollment], Enrollment]


@dataclass(frozen=True, slots=True)
class Removal:
    enrollment: Enrollment
    attempts_deleted: int


class EnrollmentRepo(Protocol):
    async def add(self, enrollment: Enrollment) -> Enrollment: ...
    async def get(self, enrollment_id: UUID) -> Enrollment | None: ...
    async def get_for(
        self, student_id: UUID, course_id: UUID
    ) -> Enrollment | None: ...
    async def get_by_certificate_id(self, certificate_id: str) -> Enrollment | None: ...
    async def list_by_student(
        self,
        student_id: UUID,
        *,
        status: str | None = None,
        offset: int = 0,
        limit: int = 12,
    ) -> tuple[list[Enrollment], int]: ...
    async def update(
        self, enrollment_id: UUID, mutate: Mutation
    ) -> Enrollment | None: ...
    async def mark_certificate_issued(
        self,
        enrollment_id: UUID,
        *,
        certificate_id: str,
        url: str,
        issued_at: int,
        snapshot: CompletionSnapshot,
    ) -> Enrollment | None: ...
    async def delete_cascade(self, enrollment_id: UUID) -> Removal | None: ...


def _activity_key(enrollment: Enrollment) -> int:
    return enrollment.last_accessed_at or enrollment.enrolled_at


class InMemoryEnrollmentRepo:
    """Lock-guarded dict store.

    Methods are async to satisfy the protocol but never await while
    holding the lock, so the lock also covers callers on worker threads.
    """

    def __init__(
        self,
        *,
        attempts: InMemoryAttemptRepo | None = None,
        catalog: InMemoryCourseCatalog | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[UUID, Enrollment] = {}
        self._by_pair: dict[tuple[UUID, UUID], UUID] = {}
        self._removing: set[UUID] = set()
        self._attempts = attempts
        self._catalog = catalog

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
            self._by_pair.clear()
            self._removing.clear()

    async def add(self, enrollment: Enrollment) -> Enrollment:
        key = (enrollment.student_id, enrollment.course_id)
        with self._lock:
            if key in self._by_pair:
                raise Conflict("student is already enrolled in this course")
            self._by_pair[key] = enrollment.id
            self._by_id[enrollment.id] = enrollment
        return enrollment

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        return self._by_id.get(enrollment_id)

    async def get_for(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        enrollment_id = self._by_pair.get((student_id, course_id))
        if enrollment_id is None:
            return None
        return self._by_id.get(enrollment_id)

    async def get_by_certificate_id(self, certificate_id: str) -> Enrollment | None:
        for enrollment in list(self._by_id.values()):
            if enrollment.certificate_id == certificate_id:
                return enrollment
        return None

    async def list_by_student(
        self,
        student_id: UUID,
        *,
        status: str | None = None,
        offset: int = 0,
        limit: int = 12,
    ) -> tuple[list[Enrollment], int]:
        matches = [
            e
            for e in list(self._by_id.values())
            if e.student_id == student_id and (status is None or e.status == status)
        ]
        matches.sort(key=_activity_key, reverse=True)
        return matches[offset : offset + limit], len(matches)

    async def update(self, enrollment_id: UUID, mutate: Mutation) -> Enrollment | None:
        with self._lock:
            current = self._by_id.get(enrollment_id)
            if current is None:
                return None
            updated = mutate(current)
            if updated == current:
                return current
            updated = replace(updated, version=current.version + 1)
            self._by_id[enrollment_id] = updated
            return updated

    async def mark_certificate_issued(
        self,
        enrollment_id: UUID,
        *,
        certificate_id: str,
        url: str,
        issued_at: int,
        snapshot: CompletionSnapshot,
    ) -> Enrollment | None:
        with self._lock:
            current = self._by_id.get(enrollment_id)
            if current is None or current.certificate_issued:
                return None
            if current.status != "completed":
                return None
            updated = replace(
                current,
                certificate_issued=True,
                certificate_id=certificate_id,
                certificate_url=url,
                certificate_issued_at=issued_at,
                completion_snapshot=snapshot,
                version=current.version + 1,
            )
            self._by_id[enrollment_id] = updated
            return updated

    async def delete_cascade(self, enrollment_id: UUID) -> Removal | None:
        """Cascade first, drop the row last.

        A failure part way leaves the row in place, so a retry finds it and
        repeats the idempotent attempt delete and the single decrement.
        """
        with self._lock:
            current = self._by_id.get(enrollment_id)
            if current is None or enrollment_id in self._removing:
                return None
            self._removing.add(enrollment_id)
        try:
            deleted = 0
            if self._attempts is not None:
                deleted = await self._attempts.delete_for_enrollment(
                    current.student_id, current.course_id
                )
            if self._catalog is not None:
                await self._catalog.adjust_enrollment_count(current.course_id, -1)
        except Exception:
            with self._lock:
                self._removing.discard(enrollment_id)
            raise
        with self._lock:
            self._removing.discard(enrollment_id)
            self._by_id.pop(enrollment_id, None)
            self._by_pair.pop((current.student_id, current.course_id), None)
        return Removal(enrollment=current, attempts_deleted=deleted)
