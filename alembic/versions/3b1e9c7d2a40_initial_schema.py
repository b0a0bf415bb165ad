"""initial schema

Revision ID: 3b1e9c7d2a40
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1e9c7d2a40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)
_UUID_ARRAY = postgresql.ARRAY(postgresql.UUID(as_uuid=True))


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column(
            "roles",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default="{}",
        ),
    )

    op.create_table(
        "courses",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("instructor_id", _UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("enrollment_count", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "lessons",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column(
            "is_published", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
    )
    op.create_index("ix_lessons_course_id", "lessons", ["course_id"])

    op.create_table(
        "exams",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("total_points", sa.Float(), nullable=False),
        sa.Column("passing_score", sa.Float(), nullable=False),
        sa.Column("open_at", sa.BigInteger(), nullable=True),
        sa.Column("close_at", sa.BigInteger(), nullable=True),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column(
            "scoring_method", sa.String(length=16), nullable=False, server_default="highest"
        ),
        sa.Column(
            "show_correct_answers",
            sa.String(length=16),
            nullable=False,
            server_default="after_submit",
        ),
        sa.Column(
            "allow_late_submission",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "late_penalty_percent", sa.Float(), nullable=False, server_default="0"
        ),
        sa.Column(
            "questions",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
    )
    op.create_index("ix_exams_course_id", "exams", ["course_id"])

    op.create_table(
        "enrollments",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("student_id", _UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("enrolled_at", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("total_lessons", sa.Integer(), nullable=False),
        sa.Column("required_exams", _UUID_ARRAY, nullable=False, server_default="{}"),
        sa.Column("completed_lessons", _UUID_ARRAY, nullable=False, server_default="{}"),
        sa.Column("completed_exams", _UUID_ARRAY, nullable=False, server_default="{}"),
        sa.Column("passed_exams", _UUID_ARRAY, nullable=False, server_default="{}"),
        sa.Column("progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_time_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.BigInteger(), nullable=True),
        sa.Column("last_accessed_at", sa.BigInteger(), nullable=True),
        sa.Column("payment_id", sa.String(length=128), nullable=True),
        sa.Column(
            "certificate_issued",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("certificate_id", sa.String(length=64), nullable=True, unique=True),
        sa.Column("certificate_url", sa.String(length=2048), nullable=True),
        sa.Column("certificate_issued_at", sa.BigInteger(), nullable=True),
        sa.Column("snapshot_total_lessons", sa.Integer(), nullable=True),
        sa.Column("snapshot_published_lessons", sa.Integer(), nullable=True),
        sa.Column("snapshot_completed_lessons", sa.Integer(), nullable=True),
        sa.Column("snapshot_date", sa.BigInteger(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint(
            "student_id", "course_id", name="uq_enrollments_student_course"
        ),
    )
    op.create_index("ix_enrollments_student_id", "enrollments", ["student_id"])

    op.create_table(
        "exam_attempts",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("exam_id", _UUID, sa.ForeignKey("exams.id"), nullable=False),
        sa.Column("student_id", _UUID, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("course_id", _UUID, sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="in_progress"
        ),
        sa.Column("started_at", sa.BigInteger(), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=False),
        sa.Column("submitted_at", sa.BigInteger(), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("max_score", sa.Float(), nullable=True),
        sa.Column("passed", sa.Boolean(), nullable=True),
        sa.Column("is_late", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "answers",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.UniqueConstraint(
            "exam_id", "student_id", "attempt_number", name="uq_exam_attempts_number"
        ),
    )
    op.create_index(
        "uq_exam_attempts_in_progress",
        "exam_attempts",
        ["exam_id", "student_id"],
        unique=True,
        postgresql_where=sa.text("status = 'in_progress'"),
    )
    op.create_index("ix_exam_attempts_expires_at", "exam_attempts", ["expires_at"])
    op.create_index(
        "ix_exam_attempts_student_course", "exam_attempts", ["student_id", "course_id"]
    )


def downgrade() -> None:
    op.drop_table("exam_attempts")
    op.drop_table("enrollments")
    op.drop_table("exams")
    op.drop_table("lessons")
    op.drop_table("courses")
    op.drop_table("users")
