"""PostgreSQL implementation of AttemptRepo.

The partial unique index ``uq_exam_attempts_in_progress`` backs the
one-open-attempt rule: a concurrent start that slips past the in-process
check still fails on insert and is reported as Conflict.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courseflow.core.errors import Conflict, ResourceExhausted
from courseflow.db.tables import ExamAttemptRow
from courseflow.models.exam import Answers, AttemptStatus, ExamAttempt


class PgAttemptRepo:
    """Satisfies the AttemptRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

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
        pair = (ExamAttemptRow.exam_id == exam_id, ExamAttemptRow.student_id == student_id)
        open_stmt = select(func.count()).select_from(ExamAttemptRow).where(
            *pair, ExamAttemptRow.status == "in_progress"
        )
        terminal_stmt = select(func.count()).select_from(ExamAttemptRow).where(
            *pair, ExamAttemptRow.status != "in_progress"
        )
        try:
            async with self._sessions.begin() as session:
                if (await session.execute(open_stmt)).scalar_one() > 0:
                    raise Conflict("an attempt is already in progress for this exam")
                terminal = (await session.execute(terminal_stmt)).scalar_one()
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
                session.add(_attempt_to_row(attempt))
                await session.flush()
        except IntegrityError:
            raise Conflict("an attempt is already in progress for this exam") from None
        return attempt

    async def get(self, attempt_id: UUID) -> ExamAttempt | None:
        async with self._sessions() as session:
            row = await session.get(ExamAttemptRow, attempt_id)
        return _row_to_attempt(row) if row is not None else None

    async def list_for(self, exam_id: UUID, student_id: UUID) -> list[ExamAttempt]:
        stmt = (
            select(ExamAttemptRow)
            .where(
                ExamAttemptRow.exam_id == exam_id,
                ExamAttemptRow.student_id == student_id,
            )
            .order_by(ExamAttemptRow.attempt_number)
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_attempt(r) for r in rows]

    async def list_overdue(self, now: int) -> list[ExamAttempt]:
        stmt = (
            select(ExamAttemptRow)
            .where(
                ExamAttemptRow.status == "in_progress",
                ExamAttemptRow.expires_at < now,
            )
            .order_by(ExamAttemptRow.expires_at)
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_attempt(r) for r in rows]

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
        values: dict = {
            "status": status,
            "submitted_at": submitted_at,
            "score": score,
            "max_score": max_score,
            "passed": passed,
            "is_late": is_late,
        }
        if answers is not None:
            values["answers"] = dict(answers)
        stmt = (
            update(ExamAttemptRow)
            .where(
                ExamAttemptRow.id == attempt_id,
                ExamAttemptRow.status == "in_progress",
            )
            .values(**values)
            .returning(ExamAttemptRow)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_attempt(row) if row is not None else None

    async def save_answers(
        self, attempt_id: UUID, answers: Answers
    ) -> ExamAttempt | None:
        stmt = (
            update(ExamAttemptRow)
            .where(
                ExamAttemptRow.id == attempt_id,
                ExamAttemptRow.status == "in_progress",
            )
            .values(answers=dict(answers))
            .returning(ExamAttemptRow)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_attempt(row) if row is not None else None


def _attempt_to_row(a: ExamAttempt) -> ExamAttemptRow:
    return ExamAttemptRow(
        id=a.id,
        exam_id=a.exam_id,
        student_id=a.student_id,
        course_id=a.course_id,
        attempt_number=a.attempt_number,
        status=a.status,
        started_at=a.started_at,
        expires_at=a.expires_at,
        submitted_at=a.submitted_at,
        score=a.score,
        max_score=a.max_score,
        passed=a.passed,
        is_late=a.is_late,
        answers=dict(a.answers),
    )


def _row_to_attempt(row: ExamAttemptRow) -> ExamAttempt:
    return ExamAttempt(
        id=row.id,
        exam_id=row.exam_id,
        student_id=row.student_id,
        course_id=row.course_id,
        attempt_number=row.attempt_number,
        started_at=row.started_at,
        expires_at=row.expires_at,
        status=row.status,  # type: ignore[arg-type]
        submitted_at=row.submitted_at,
        score=row.score,
        max_score=row.max_score,
        passed=row.passed,
        is_late=row.is_late,
        answers=dict(row.answers or {}),
    )
