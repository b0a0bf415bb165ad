from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from courseflow.models.enrollment import CompletionSnapshot


@dataclass(frozen=True, slots=True)
class CertificatePublicView:
    """What anyone holding a certificate ID may see."""

    certificate_id: str
    student_name: str
    course_title: str
    instructor_name: str
    issued_at: int
    snapshot: CompletionSnapshot


@dataclass(frozen=True, slots=True)
class Certificate:
    certificate_id: str
    enrollment_id: UUID
    student_id: UUID
    course_id: UUID
    url: str
    issued_at: int
    snapshot: CompletionSnapshot


@dataclass(frozen=True, slots=True)
class CertificateDetail:
    """Owner/admin view: the public fields plus live enrollment state."""

    view: CertificatePublicView
    enrollment_id: UUID
    url: str
    has_new_content: bool
    progress: float
