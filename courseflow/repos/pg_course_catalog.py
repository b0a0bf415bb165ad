"""PostgreSQL implementation of CourseCatalog."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courseflow.db.tables import CourseRow, ExamRow, LessonRow
from courseflow.models.course import Course, Lesson
from courseflow.models.exam import Exam, Question


class PgCourseCatalog:
    """Satisfies the CourseCatalog Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get_course(self, course_id: UUID) -> Course | None:
        async with self._sessions() as session:
            row = await session.get(CourseRow, course_id)
        return _row_to_course(row) if row is not None else None

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        async with self._sessions() as session:
            row = await session.get(LessonRow, lesson_id)
        return _row_to_lesson(row) if row is not None else None

    async def get_exam(self, exam_id: UUID) -> Exam | None:
        async with self._sessions() as session:
            row = await session.get(ExamRow, exam_id)
        return _row_to_exam(row) if row is not None else None

    async def published_lesson_count(self, course_id: UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(LessonRow)
            .where(LessonRow.course_id == course_id, LessonRow.is_published.is_(True))
        )
        async with self._sessions() as session:
            return (await session.execute(stmt)).scalar_one()

    async def published_exam_count(self, course_id: UUID) -> int:
        return len(await self.published_exam_ids(course_id))

    async def published_exam_ids(self, course_id: UUID) -> frozenset[UUID]:
        stmt = select(ExamRow.id).where(
            ExamRow.course_id == course_id, ExamRow.status == "published"
        )
        async with self._sessions() as session:
            return frozenset((await session.execute(stmt)).scalars().all())

    async def adjust_enrollment_count(self, course_id: UUID, delta: int) -> None:
        stmt = (
            update(CourseRow)
            .where(CourseRow.id == course_id)
            .values(
                enrollment_count=func.greatest(CourseRow.enrollment_count + delta, 0)
            )
        )
        async with self._sessions.begin() as session:
            await session.execute(stmt)


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        slug=row.slug,
        title=row.title,
        instructor_id=row.instructor_id,
        status=row.status,  # type: ignore[arg-type]
        enrollment_count=row.enrollment_count,
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        course_id=row.course_id,
        title=row.title,
        position=row.position,
        is_published=row.is_published,
    )


def _question_from_json(data: dict) -> Question:
    return Question(
        id=str(data["id"]),
        type=data["type"],
        points=float(data.get("points", 0)),
        correct_options=frozenset(data.get("correct_options", ())),
        expected_answers=tuple(data.get("expected_answers", ())),
        case_sensitive=bool(data.get("case_sensitive", False)),
        negative_points=float(data.get("negative_points", 0)),
    )


def _row_to_exam(row: ExamRow) -> Exam:
    return Exam(
        id=row.id,
        course_id=row.course_id,
        title=row.title,
        duration_minutes=row.duration_minutes,
        total_points=row.total_points,
        passing_score=row.passing_score,
        status=row.status,  # type: ignore[arg-type]
        open_at=row.open_at,
        close_at=row.close_at,
        max_attempts=row.max_attempts,
        scoring_method=row.scoring_method,  # type: ignore[arg-type]
        show_correct_answers=row.show_correct_answers,  # type: ignore[arg-type]
        allow_late_submission=row.allow_late_submission,
        late_penalty_percent=row.late_penalty_percent,
        questions=tuple(_question_from_json(q) for q in row.questions or ()),
    )
