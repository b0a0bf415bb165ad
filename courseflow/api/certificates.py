"""Certificate endpoints.

The verification route is deliberately unauthenticated: anyone holding a
certificate ID (an employer, say) can confirm it.  Unknown and
not-yet-issued IDs produce the same 404.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter
from pydantic import BaseModel

from courseflow import runtime
from courseflow.api.dependencies import CurrentUser
from courseflow.models.certificate import (
    Certificate,
    CertificateDetail,
    CertificatePublicView,
)
from courseflow.models.enrollment import CompletionSnapshot

router = APIRouter(tags=["certificates"])


class SnapshotOut(BaseModel):
    total_lessons: int
    published_lessons: int
    completed_lessons: int
    snapshot_date: int

    @classmethod
    def from_domain(cls, s: CompletionSnapshot) -> SnapshotOut:
        return cls(
            total_lessons=s.total_lessons,
            published_lessons=s.published_lessons,
            completed_lessons=s.completed_lessons,
            snapshot_date=s.snapshot_date,
        )


class IssuedCertificateOut(BaseModel):
    certificate_id: str
    enrollment_id: UUID
    url: str
    issued_at: int
    snapshot: SnapshotOut

    @classmethod
    def from_domain(cls, c: Certificate) -> IssuedCertificateOut:
        return cls(
            certificate_id=c.certificate_id,
            enrollment_id=c.enrollment_id,
            url=c.url,
            issued_at=c.issued_at,
            snapshot=SnapshotOut.from_domain(c.snapshot),
        )


class CertificatePublicOut(BaseModel):
    certificate_id: str
    student_name: str
    course_title: str
    instructor_name: str
    issued_at: int
    snapshot: SnapshotOut

    @classmethod
    def from_view(cls, v: CertificatePublicView) -> CertificatePublicOut:
        return cls(
            certificate_id=v.certificate_id,
            student_name=v.student_name,
            course_title=v.course_title,
            instructor_name=v.instructor_name,
            issued_at=v.issued_at,
            snapshot=SnapshotOut.from_domain(v.snapshot),
        )


class CertificateDetailOut(CertificatePublicOut):
    enrollment_id: UUID
    url: str
    has_new_content: bool
    progress: float

    @classmethod
    def from_detail(cls, d: CertificateDetail) -> CertificateDetailOut:
        return cls(
            **CertificatePublicOut.from_view(d.view).model_dump(),
            enrollment_id=d.enrollment_id,
            url=d.url,
            has_new_content=d.has_new_content,
            progress=d.progress,
        )


@router.post(
    "/v1/enrollments/{enrollment_id}/certificate",
    response_model=IssuedCertificateOut,
)
async def generate_certificate(
    enrollment_id: UUID, principal: CurrentUser
) -> IssuedCertificateOut:
    # Visibility check first: owner, course instructor or admin.
    await runtime.enrollment_service.get_enrollment(enrollment_id, principal)
    certificate = await runtime.certificate_service.issue(enrollment_id)
    return IssuedCertificateOut.from_domain(certificate)


@router.get(
    "/v1/enrollments/{enrollment_id}/certificate",
    response_model=CertificateDetailOut,
)
async def get_certificate(
    enrollment_id: UUID, principal: CurrentUser
) -> CertificateDetailOut:
    detail = await runtime.certificate_service.get_certificate(enrollment_id, principal)
    return CertificateDetailOut.from_detail(detail)


@router.get(
    "/v1/certificates/{certificate_id}/verify",
    response_model=CertificatePublicOut,
)
async def verify_certificate(certificate_id: str) -> CertificatePublicOut:
    view = await runtime.certificate_service.verify(certificate_id)
    return CertificatePublicOut.from_view(view)
