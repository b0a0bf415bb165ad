"""Exam attempt persistence.

``create_exclusive`` and ``finish`` are the two conditional writes the
attempt lifecycle relies on: the first admits at most one in-progress
attempt per (exam, student) within the quota, the second moves an
attempt out of in_progress only if nobody else already did.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from courseflow.core.errors import Conflict, ResourceExhausted
from courseflow.models.exam import Answers, AttemptStatus, ExamAttempt


class AttemptRepo(Protocol):
    async def create_exclusive(
        self,
        *,
        exam_id: UUID,
        student_id: UUID,
        course_id: UUID,
        started_at: int,
        expires_at: int,
        max_attempts: int | None,
    ) -> ExamAttempt: ...
    async def get(self, attempt_id: UUID) -> ExamAttempt | None: ...
    async def list_for(self, exam_id: UUID, student_id: UUID) -> list[ExamAttempt]: ...
    async def list_overdue(self, now: int) -> list[ExamAttempt]: ...
    async def finish(
        self,
        attempt_id: UUID,
        *,
        status: AttemptStatus,
        submitted_at: int,
        score: float | None = None,
        max_score: float | None = None,
        passed: bool | None = None,
        is_late: bool = False,
        answers: Answers | None = None,
    ) -> ExamAttempt | None: ...
    async def save_answers(
        self, attempt_id: UUID, answers: Answers
    ) -> ExamAttempt | None: ...


class InMemoryAttemptRepo:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[UUID, ExamAttempt] = {}

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()

    def _for_pair(self, exam_id: UUID, student_id: UUID) -> list[ExamAttempt]:
        return [
            a
            for a in self._by_id.values()
            if a.exam_id == exam_id and a.student_id == student_id
        ]

    async def create_exclusive(
        self,
        *,
        exam_id: UUID,
        student_id: UUID,
        course_id: UUID,
        started_at: int,
        expires_at: int,
        max_attempts: int | None,
    ) -> ExamAttempt:
        with self._lock:
            existing = self._for_pair(exam_id, student_id)
            if any(a.status == "in_progress" for a in existing):
                raise Conflict("an attempt is already in progress for this exam")
            terminal = sum(1 for a in existing if a.is_terminal)
            if max_attempts is not None and terminal >= max_attempts:
                raise ResourceExhausted("maximum number of attempts reached")
            attempt = ExamAttempt.new(
                exam_id=exam_id,
                student_id=student_id,
                course_id=course_id,
                attempt_number=terminal + 1,
                started_at=started_at,
                expires_at=expires_at,
            )
            self._by_id[attempt.id] = attempt
            return attempt

    async def get(self, attempt_id: UUID) -> ExamAttempt | None:
        return self._by_id.get(attempt_id)

    async def list_for(self, exam_id: UUID, student_id: UUID) -> list[ExamAttempt]:
        with self._lock:
            attempts = self._for_pair(exam_id, student_id)
        return sorted(attempts, key=lambda a: a.attempt_number)

    async def list_overdue(self, now: int) -> list[ExamAttempt]:
        with self._lock:
            overdue = [
                a
                for a in self._by_id.values()
                if a.status == "in_progress" and a.expires_at < now
            ]
        return sorted(overdue, key=lambda a: a.expires_at)

    async def finish(
        self,
        attempt_id: UUID,
        *,
        status: AttemptStatus,
        submitted_at: int,
        score: float | None = None,
        max_score: float | None = None,
        passed: bool | None = None,
        is_late: bool = False,
        answers: Answers | None = None,
    ) -> ExamAttempt | None:
        with self._lock:
            current = self._by_id.get(attempt_id)
            if current is None or current.status != "in_progress":
                return None
            updated = replace(
                current,
                status=status,
                submitted_at=submitted_at,
                score=score,
                max_score=max_score,
                passed=passed,
                is_late=is_late,
                answers=dict(answers) if answers is not None else current.answers,
            )
            self._by_id[attempt_id] = updated
            return updated

    async def save_answers(
        self, attempt_id: UUID, answers: Answers
    ) -> ExamAttempt | None:
        with self._lock:
            current = self._by_id.get(attempt_id)
            if current is None or current.status != "in_progress":
                return None
            updated = replace(current, answers=dict(answers))
            self._by_id[attempt_id] = updated
            return updated

    async def delete_for_enrollment(self, student_id: UUID, course_id: UUID) -> int:
        with self._lock:
            doomed = [
                a.id
                for a in self._by_id.values()
                if a.student_id == student_id and a.course_id == course_id
            ]
            for attempt_id in doomed:
                del self._by_id[attempt_id]
        return len(doomed)
