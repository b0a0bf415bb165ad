from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal
from uuid import UUID, uuid4

EnrollmentStatus = Literal["active", "completed", "suspended", "expired"]

ENROLLMENT_STATUSES: frozenset[str] = frozenset(
    {"active", "completed", "suspended", "expired"}
)

# Statuses in which the learner is still working through the course.
PROGRESSING_STATUSES: frozenset[str] = frozenset({"active", "completed"})

# Upper bound for total_time_spent (minutes); additions saturate here.
MAX_TIME_SPENT_MINUTES = 2**31 - 1


@dataclass(frozen=True, slots=True)
class CompletionSnapshot:
    """Progress metrics frozen at certificate issuance."""

    total_lessons: int
    published_lessons: int
    completed_lessons: int
    snapshot_date: int


@dataclass(frozen=True, slots=True)
class Enrollment:
    id: UUID
    student_id: UUID
    course_id: UUID
    enrolled_at: int
    total_lessons: int  # published-lesson count at enrollment time
    required_exams: frozenset[UUID] = frozenset()
    completed_lessons: frozenset[UUID] = frozenset()
    completed_exams: frozenset[UUID] = frozenset()  # required exams passed
    passed_exams: frozenset[UUID] = frozenset()  # every exam passed
    status: EnrollmentStatus = "active"
    progress: float = 0.0
    total_time_spent: int = 0
    completed_at: int | None = None
    last_accessed_at: int | None = None
    payment_id: str | None = None
    certificate_issued: bool = False
    certificate_id: str | None = None
    certificate_url: str | None = None
    certificate_issued_at: int | None = None
    completion_snapshot: CompletionSnapshot | None = None
    version: int = 1

    @property
    def requirements_met(self) -> bool:
        return self.progress >= 100 and self.required_exams <= self.completed_exams

    @staticmethod
    def new(
        *,
        student_id: UUID,
        course_id: UUID,
        enrolled_at: int,
        total_lessons: int,
        required_exams: frozenset[UUID] = frozenset(),
        payment_id: str | None = None,
    ) -> Enrollment:
        return Enrollment(
            id=uuid4(),
            student_id=student_id,
            course_id=course_id,
            enrolled_at=enrolled_at,
            total_lessons=total_lessons,
            required_exams=required_exams,
            payment_id=payment_id,
            last_accessed_at=enrolled_at,
        )


def compute_progress(completed: int, total: int) -> float:
    """Percentage of lessons completed, capped at 100, 2 decimals."""
    if total <= 0:
        return 0.0
    return round(min(100.0, completed / total * 100), 2)


def apply_completion(enrollment: Enrollment, now: int) -> Enrollment:
    """Move an active enrollment to completed once its requirements hold.

    Anything other than the first transition is returned unchanged, so
    completed_at is stamped exactly once.
    """
    if enrollment.status != "active" or not enrollment.requirements_met:
        return enrollment
    return replace(
        enrollment,
        status="completed",
        completed_at=enrollment.completed_at or now,
    )
