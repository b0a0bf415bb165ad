"""Enrollment lifecycle: enroll, add a student, unenroll, read.

Uniqueness of (student, course) is enforced by the repository's atomic
insert, never by a read-then-write check here.  Unenroll hands the row
delete, the attempt cascade and the counter decrement to the repository
as one unit, so a retry after a partial failure still decrements once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from courseflow.core.clock import Clock, utc_now
from courseflow.core.errors import (
    Conflict,
    DomainError,
    Forbidden,
    InvalidInput,
    NotFound,
)
from courseflow.core.metrics import ENROLLMENTS
from courseflow.models.course import Course
from courseflow.models.enrollment import ENROLLMENT_STATUSES, Enrollment
from courseflow.models.principal import Principal
from courseflow.repos.course_catalog import CourseCatalog
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.repos.payment_lookup import PaymentReferenceLookup
from courseflow.repos.user_repo import UserRepo
from courseflow.services import eligibility
from courseflow.services.certificate_service import CertificateService
from courseflow.services.notifications import Notification, NotificationDispatcher

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 12
MAX_PAGE_SIZE = 50


@dataclass(frozen=True, slots=True)
class EnrollmentPage:
    items: list[Enrollment]
    total: int
    page: int
    limit: int


class EnrollmentService:
    def __init__(
        self,
        *,
        enrollments: EnrollmentRepo,
        catalog: CourseCatalog,
        users: UserRepo,
        payments: PaymentReferenceLookup,
        certificates: CertificateService,
        notifications: NotificationDispatcher,
        clock: Clock = utc_now,
    ) -> None:
        self._enrollments = enrollments
        self._catalog = catalog
        self._users = users
        self._payments = payments
        self._certificates = certificates
        self._notifications = notifications
        self._clock = clock

    async def _course(self, course_id: UUID) -> Course:
        course = await self._catalog.get_course(course_id)
        if course is None:
            raise NotFound("course not found")
        return course

    async def _create(
        self, student_id: UUID, course: Course, payment_id: str | None
    ) -> Enrollment:
        enrollment = Enrollment.new(
            student_id=student_id,
            course_id=course.id,
            enrolled_at=self._clock(),
            total_lessons=await self._catalog.published_lesson_count(course.id),
            required_exams=await self._catalog.published_exam_ids(course.id),
            payment_id=payment_id,
        )
        try:
            await self._enrollments.add(enrollment)
        except Conflict:
            ENROLLMENTS.labels(result="duplicate").inc()
            logger.warning(
                "Duplicate enrollment: student=%s course=%s",
                student_id,
                course.id,
                extra={"course_id": str(course.id)},
            )
            raise

        ENROLLMENTS.labels(result="created").inc()
        await self._catalog.adjust_enrollment_count(course.id, +1)
        logger.info(
            "Student %s enrolled in course %s",
            student_id,
            course.id,
            extra={"enrollment_id": str(enrollment.id), "course_id": str(course.id)},
        )
        await self._notifications.send(
            Notification(
                type="enrollment_created",
                user_id=student_id,
                data={"course_id": course.id, "enrollment_id": enrollment.id},
            )
        )
        return enrollment

    async def enroll(
        self,
        principal: Principal,
        course_id: UUID,
        payment_id: str | None = None,
    ) -> Enrollment:
        course = await self._course(course_id)
        try:
            eligibility.ensure_can_enroll(principal, course)
        except DomainError:
            ENROLLMENTS.labels(result="rejected").inc()
            raise

        if payment_id is not None and not await self._payments.exists(payment_id):
            ENROLLMENTS.labels(result="rejected").inc()
            raise InvalidInput("unknown payment reference")

        return await self._create(principal.user_id, course, payment_id)

    async def add_student(
        self, actor: Principal, course_id: UUID, student_id: UUID
    ) -> Enrollment:
        course = await self._course(course_id)
        eligibility.ensure_can_manage_course(actor, course)

        student = await self._users.get_by_id(student_id)
        if student is None:
            raise NotFound("user not found")
        if "student" not in student.roles:
            raise InvalidInput("user is not a student")
        eligibility.ensure_course_open(course)

        return await self._create(student.id, course, None)

    async def unenroll(self, enrollment_id: UUID, actor: Principal) -> Enrollment:
        enrollment = await self._enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFound("enrollment not found")
        course = await self._catalog.get_course(enrollment.course_id)
        eligibility.ensure_can_manage_course(actor, course)

        removal = await self._enrollments.delete_cascade(enrollment_id)
        if removal is None:
            # A concurrent or retried unenroll got there first.
            raise NotFound("enrollment not found")

        removed = removal.enrollment
        if removed.certificate_id is not None:
            await self._certificates.invalidate(removed.certificate_id)

        ENROLLMENTS.labels(result="removed").inc()
        logger.info(
            "Enrollment %s removed by %s (%d attempts deleted)",
            removed.id,
            actor.user_id,
            removal.attempts_deleted,
            extra={
                "enrollment_id": str(removed.id),
                "course_id": str(removed.course_id),
            },
        )
        return removed

    async def list_my_enrollments(
        self,
        student_id: UUID,
        *,
        status: str | None = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> EnrollmentPage:
        if page < 1:
            raise InvalidInput("page must be at least 1")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInput(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if status is not None and status not in ENROLLMENT_STATUSES:
            raise InvalidInput(f"unknown status {status!r}")

        items, total = await self._enrollments.list_by_student(
            student_id, status=status, offset=(page - 1) * limit, limit=limit
        )
        return EnrollmentPage(items=items, total=total, page=page, limit=limit)

    async def get_enrollment(
        self, enrollment_id: UUID, requester: Principal
    ) -> Enrollment:
        enrollment = await self._enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFound("enrollment not found")
        course = await self._catalog.get_course(enrollment.course_id)
        if not eligibility.can_view_enrollment(requester, enrollment, course):
            logger.warning(
                "Enrollment read denied: user=%s enrollment=%s",
                requester.user_id,
                enrollment.id,
            )
            raise Forbidden("not allowed to view this enrollment")
        return enrollment
