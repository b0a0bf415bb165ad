"""Progress tracking.

Every mutation runs through ``EnrollmentRepo.update`` so that two
concurrent completions for the same enrollment are serialized and neither
lesson is lost.  The completion transition happens inside the same
update; issuing the certificate and notifying happen after it commits.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from courseflow.core.clock import Clock, utc_now
from courseflow.core.errors import InvalidInput, InvalidState, NotFound
from courseflow.models.certificate import Certificate
from courseflow.models.enrollment import (
    MAX_TIME_SPENT_MINUTES,
    PROGRESSING_STATUSES,
    Enrollment,
    apply_completion,
    compute_progress,
)
from courseflow.models.principal import Principal
from courseflow.repos.course_catalog import CourseCatalog
from courseflow.repos.enrollment_repo import EnrollmentRepo, Mutation
from courseflow.services import eligibility
from courseflow.services.notifications import Notification, NotificationDispatcher

logger = logging.getLogger(__name__)


class CertificateIssuer(Protocol):
    async def issue(self, enrollment_id: UUID) -> Certificate: ...


def drop_withdrawn_exams(
    enrollment: Enrollment, published: frozenset[UUID]
) -> Enrollment:
    """Stop requiring exams that are no longer published.

    Exams published after enrollment stay optional; only removals narrow
    the required set.
    """
    required = enrollment.required_exams & published
    if required == enrollment.required_exams:
        return enrollment
    return replace(
        enrollment,
        required_exams=required,
        completed_exams=enrollment.completed_exams & required,
    )


class ProgressService:
    def __init__(
        self,
        *,
        enrollments: EnrollmentRepo,
        catalog: CourseCatalog,
        notifications: NotificationDispatcher,
        certificates: CertificateIssuer | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._enrollments = enrollments
        self._catalog = catalog
        self._notifications = notifications
        self._certificates = certificates
        self._clock = clock

    async def _load(self, enrollment_id: UUID, actor: Principal | None) -> Enrollment:
        enrollment = await self._enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFound("enrollment not found")
        if actor is not None:
            eligibility.ensure_enrollment_owner(actor, enrollment)
        return enrollment

    async def _apply(self, enrollment_id: UUID, mutate: Mutation) -> Enrollment:
        """Run ``mutate`` serialized, then react to a completion transition."""
        completed_now = False

        def _mutate(current: Enrollment) -> Enrollment:
            nonlocal completed_now
            updated = mutate(current)
            completed_now = (
                current.status != "completed" and updated.status == "completed"
            )
            return updated

        updated = await self._enrollments.update(enrollment_id, _mutate)
        if updated is None:
            raise NotFound("enrollment not found")
        if completed_now:
            await self._on_completed(updated)
        return updated

    async def _on_completed(self, enrollment: Enrollment) -> None:
        logger.info(
            "Enrollment %s completed course %s",
            enrollment.id,
            enrollment.course_id,
            extra={
                "enrollment_id": str(enrollment.id),
                "course_id": str(enrollment.course_id),
            },
        )
        await self._notifications.send(
            Notification(
                type="course_completed",
                user_id=enrollment.student_id,
                data={"course_id": enrollment.course_id},
            )
        )
        if self._certificates is None:
            return
        try:
            await self._certificates.issue(enrollment.id)
        except Exception:
            # Left for the manual GenerateCertificate retry.
            logger.exception(
                "Automatic certificate issue failed for enrollment %s",
                enrollment.id,
                extra={"enrollment_id": str(enrollment.id)},
            )

    async def record_lesson_completion(
        self,
        enrollment_id: UUID,
        lesson_id: UUID,
        actor: Principal | None = None,
    ) -> Enrollment:
        enrollment = await self._load(enrollment_id, actor)
        lesson = await self._catalog.get_lesson(lesson_id)
        if (
            lesson is None
            or lesson.course_id != enrollment.course_id
            or not lesson.is_published
        ):
            raise InvalidInput("lesson is not part of this course")

        published_exams = await self._catalog.published_exam_ids(enrollment.course_id)
        now = self._clock()

        def mutate(current: Enrollment) -> Enrollment:
            if current.status not in PROGRESSING_STATUSES:
                raise InvalidState(f"enrollment is {current.status}")
            completed = current.completed_lessons | {lesson_id}
            updated = replace(
                current,
                completed_lessons=completed,
                progress=max(
                    current.progress,
                    compute_progress(len(completed), current.total_lessons),
                ),
                last_accessed_at=now,
            )
            return apply_completion(drop_withdrawn_exams(updated, published_exams), now)

        updated = await self._apply(enrollment_id, mutate)
        logger.info(
            "Lesson %s completed, enrollment %s at %.2f%%",
            lesson_id,
            updated.id,
            updated.progress,
            extra={"enrollment_id": str(updated.id)},
        )
        return updated

    async def record_exam_pass(self, enrollment_id: UUID, exam_id: UUID) -> Enrollment:
        """Record a passed exam; only required exams gate completion."""
        enrollment = await self._load(enrollment_id, None)
        published_exams = await self._catalog.published_exam_ids(enrollment.course_id)
        now = self._clock()

        def mutate(current: Enrollment) -> Enrollment:
            narrowed = drop_withdrawn_exams(current, published_exams)
            completed_exams = narrowed.completed_exams
            if exam_id in narrowed.required_exams:
                completed_exams = completed_exams | {exam_id}
            updated = replace(
                narrowed,
                passed_exams=current.passed_exams | {exam_id},
                completed_exams=completed_exams,
            )
            if updated == current:
                return current
            return apply_completion(replace(updated, last_accessed_at=now), now)

        updated = await self._apply(enrollment_id, mutate)
        logger.info(
            "Exam %s passed for enrollment %s",
            exam_id,
            updated.id,
            extra={"enrollment_id": str(updated.id), "exam_id": str(exam_id)},
        )
        return updated

    async def record_time_spent(
        self,
        enrollment_id: UUID,
        minutes: int,
        actor: Principal | None = None,
    ) -> Enrollment:
        if minutes < 0:
            raise InvalidInput("minutes must not be negative")
        await self._load(enrollment_id, actor)
        now = self._clock()

        def mutate(current: Enrollment) -> Enrollment:
            return replace(
                current,
                total_time_spent=min(
                    MAX_TIME_SPENT_MINUTES, current.total_time_spent + minutes
                ),
                last_accessed_at=now,
            )

        return await self._apply(enrollment_id, mutate)
