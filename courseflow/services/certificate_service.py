"""Certificate issuance, lookup and public verification.

Issuance is exactly-once per enrollment:

  1. A certificate ID is drawn and the document is rendered first.
  2. Only then is ``certificate_issued`` flipped with a compare-and-swap.
  3. A caller that loses the swap gets the winner's certificate back.

A render failure raises before anything is written, so the enrollment
stays unissued and the manual retry path stays safe.
"""

from __future__ import annotations

import json
import logging
import secrets
from dataclasses import asdict
from uuid import UUID

from courseflow.core.clock import Clock, utc_now
from courseflow.core.errors import InvalidState, NotFound
from courseflow.core.metrics import CACHE_OPERATIONS, CERTIFICATES
from courseflow.models.certificate import (
    Certificate,
    CertificateDetail,
    CertificatePublicView,
)
from courseflow.models.enrollment import CompletionSnapshot, Enrollment
from courseflow.models.principal import Principal
from courseflow.repos.course_catalog import CourseCatalog
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.repos.user_repo import UserRepo
from courseflow.services import eligibility
from courseflow.services.cache import CacheService
from courseflow.services.certificate_renderer import CertificateRenderer, RenderRequest
from courseflow.services.notifications import Notification, NotificationDispatcher

logger = logging.getLogger(__name__)

# Long enough to absorb bursts of verification hits on a shared link,
# short enough that a stale entry disappears quickly.
VERIFY_CACHE_TTL = 300


def new_certificate_id() -> str:
    return f"CERT-{secrets.token_hex(8).upper()}"


def _cache_key(certificate_id: str) -> str:
    return f"certificate:{certificate_id}"


def _certificate_from(enrollment: Enrollment) -> Certificate:
    if (
        not enrollment.certificate_issued
        or enrollment.certificate_id is None
        or enrollment.completion_snapshot is None
    ):
        raise InvalidState("certificate has not been issued")
    return Certificate(
        certificate_id=enrollment.certificate_id,
        enrollment_id=enrollment.id,
        student_id=enrollment.student_id,
        course_id=enrollment.course_id,
        url=enrollment.certificate_url or "",
        issued_at=enrollment.certificate_issued_at or 0,
        snapshot=enrollment.completion_snapshot,
    )


def _view_to_json(view: CertificatePublicView) -> str:
    return json.dumps(asdict(view))


def _view_from_json(raw: str) -> CertificatePublicView:
    data = json.loads(raw)
    data["snapshot"] = CompletionSnapshot(**data["snapshot"])
    return CertificatePublicView(**data)


class CertificateService:
    def __init__(
        self,
        *,
        enrollments: EnrollmentRepo,
        catalog: CourseCatalog,
        users: UserRepo,
        renderer: CertificateRenderer,
        cache: CacheService,
        notifications: NotificationDispatcher,
        clock: Clock = utc_now,
    ) -> None:
        self._enrollments = enrollments
        self._catalog = catalog
        self._users = users
        self._renderer = renderer
        self._cache = cache
        self._notifications = notifications
        self._clock = clock

    async def _names(self, enrollment: Enrollment) -> tuple[str, str, str]:
        """(student name, course title, instructor name) for display."""
        student = await self._users.get_by_id(enrollment.student_id)
        course = await self._catalog.get_course(enrollment.course_id)
        instructor = (
            await self._users.get_by_id(course.instructor_id) if course else None
        )
        return (
            student.name if student else "",
            course.title if course else "",
            instructor.name if instructor else "",
        )

    async def _public_view(self, enrollment: Enrollment) -> CertificatePublicView:
        certificate = _certificate_from(enrollment)
        student_name, course_title, instructor_name = await self._names(enrollment)
        return CertificatePublicView(
            certificate_id=certificate.certificate_id,
            student_name=student_name,
            course_title=course_title,
            instructor_name=instructor_name,
            issued_at=certificate.issued_at,
            snapshot=certificate.snapshot,
        )

    async def issue(self, enrollment_id: UUID) -> Certificate:
        enrollment = await self._enrollments.get(enrollment_id)
        if enrollment is None:
            raise NotFound("enrollment not found")

        if enrollment.certificate_issued:
            CERTIFICATES.labels(result="already_issued").inc()
            return _certificate_from(enrollment)

        if enrollment.status != "completed" or enrollment.progress < 100:
            logger.warning(
                "Certificate refused: enrollment %s status=%s progress=%s",
                enrollment.id,
                enrollment.status,
                enrollment.progress,
                extra={"enrollment_id": str(enrollment.id)},
            )
            raise InvalidState("course is not completed")

        now = self._clock()
        certificate_id = new_certificate_id()
        snapshot = CompletionSnapshot(
            total_lessons=enrollment.total_lessons,
            published_lessons=await self._catalog.published_lesson_count(
                enrollment.course_id
            ),
            completed_lessons=len(enrollment.completed_lessons),
            snapshot_date=now,
        )
        student_name, course_title, instructor_name = await self._names(enrollment)

        try:
            url = await self._renderer.render(
                RenderRequest(
                    certificate_id=certificate_id,
                    student_name=student_name,
                    course_title=course_title,
                    instructor_name=instructor_name,
                    issued_at=now,
                    snapshot=snapshot,
                )
            )
        except Exception:
            CERTIFICATES.labels(result="render_failed").inc()
            raise

        issued = await self._enrollments.mark_certificate_issued(
            enrollment.id,
            certificate_id=certificate_id,
            url=url,
            issued_at=now,
            snapshot=snapshot,
        )
        if issued is None:
            # Lost the swap: somebody else issued first, or the enrollment
            # changed underneath us.
            current = await self._enrollments.get(enrollment.id)
            if current is not None and current.certificate_issued:
                CERTIFICATES.labels(result="already_issued").inc()
                return _certificate_from(current)
            raise InvalidState("enrollment is no longer eligible for a certificate")

        CERTIFICATES.labels(result="issued").inc()
        logger.info(
            "Certificate %s issued for enrollment %s",
            certificate_id,
            issued.id,
            extra={"certificate_id": certificate_id, "enrollment_id": str(issued.id)},
        )
        await self._notifications.send(
            Notification(
                type="certificate_issued",
                user_id=issued.student_id,
                data={"certificate_id": certificate_id, "course_id": issued.course_id},
            )
        )
        return _certificate_from(issued)

    async def has_new_content_since_completion(self, enrollment: Enrollment) -> bool:
        snapshot = enrollment.completion_snapshot
        if snapshot is None:
            return False
        current = await self._catalog.published_lesson_count(enrollment.course_id)
        return current > snapshot.published_lessons

    async def get_certificate(
        self, enrollment_id: UUID, requester: Principal
    ) -> CertificateDetail:
        enrollment = await self._enrollments.get(enrollment_id)
        # Unknown, hidden and not-yet-issued all look the same.
        if (
            enrollment is None
            or not eligibility.can_view_certificate(requester, enrollment)
            or not enrollment.certificate_issued
        ):
            raise NotFound("certificate not found")

        return CertificateDetail(
            view=await self._public_view(enrollment),
            enrollment_id=enrollment.id,
            url=enrollment.certificate_url or "",
            has_new_content=await self.has_new_content_since_completion(enrollment),
            progress=enrollment.progress,
        )

    async def verify(self, certificate_id: str) -> CertificatePublicView:
        cached = await self._cache.get(_cache_key(certificate_id))
        if cached is not None:
            CACHE_OPERATIONS.labels(operation="hit").inc()
            return _view_from_json(cached)
        CACHE_OPERATIONS.labels(operation="miss").inc()

        enrollment = await self._enrollments.get_by_certificate_id(certificate_id)
        if enrollment is None or not enrollment.certificate_issued:
            raise NotFound("certificate not found")

        view = await self._public_view(enrollment)
        await self._cache.set(
            _cache_key(certificate_id), _view_to_json(view), VERIFY_CACHE_TTL
        )
        return view

    async def invalidate(self, certificate_id: str) -> None:
        await self._cache.delete(_cache_key(certificate_id))
