"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in courseflow/models/.
Repos convert between SQLAlchemy rows and domain dataclasses.

Timestamps are integer epoch seconds throughout, matching the models.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from courseflow.db.engine import Base

# --- Directory and catalog (read-mostly, authored elsewhere) ---


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    roles: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=[])


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="draft"
    )  # draft|published|archived
    instructor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    enrollment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class LessonRow(Base):
    __tablename__ = "lessons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ExamRow(Base):
    __tablename__ = "exams"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="draft"
    )  # draft|published|archived
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    total_points: Mapped[float] = mapped_column(Float, nullable=False)
    passing_score: Mapped[float] = mapped_column(Float, nullable=False)
    open_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    close_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    max_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scoring_method: Mapped[str] = mapped_column(
        String(16), nullable=False, default="highest"
    )  # highest|latest|average
    show_correct_answers: Mapped[str] = mapped_column(
        String(16), nullable=False, default="after_submit"
    )  # never|after_submit|after_close
    allow_late_submission: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    late_penalty_percent: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    questions: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=[])


# --- Learner state (owned by this service) ---


class EnrollmentRow(Base):
    __tablename__ = "enrollments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False
    )
    enrolled_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="active"
    )  # active|completed|suspended|expired
    total_lessons: Mapped[int] = mapped_column(Integer, nullable=False)
    required_exams: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )
    completed_lessons: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )
    completed_exams: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )
    passed_exams: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )
    progress: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_time_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_accessed_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    certificate_issued: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    certificate_id: Mapped[str | None] = mapped_column(
        String(64), unique=True, nullable=True
    )
    certificate_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    certificate_issued_at: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )
    snapshot_total_lessons: Mapped[int | None] = mapped_column(Integer, nullable=True)
    snapshot_published_lessons: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    snapshot_completed_lessons: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    snapshot_date: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_enrollments_student_course"),
        Index("ix_enrollments_student_id", "student_id"),
    )


class ExamAttemptRow(Base):
    __tablename__ = "exam_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    exam_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("exams.id"), nullable=False
    )
    student_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    course_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("courses.id"), nullable=False
    )
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="in_progress"
    )  # in_progress|submitted|expired|abandoned
    started_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    submitted_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    answers: Mapped[dict] = mapped_column(JSONB, nullable=False, default={})

    __table_args__ = (
        UniqueConstraint(
            "exam_id",
            "student_id",
            "attempt_number",
            name="uq_exam_attempts_number",
        ),
        # At most one open attempt per (exam, student).
        Index(
            "uq_exam_attempts_in_progress",
            "exam_id",
            "student_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
        ),
        Index("ix_exam_attempts_expires_at", "expires_at"),
        Index("ix_exam_attempts_student_course", "student_id", "course_id"),
    )
