"""PostgreSQL implementation of EnrollmentRepo.

- add: INSERT ... ON CONFLICT (student_id, course_id) DO NOTHING
- update: SELECT ... FOR UPDATE, mutate, write back with version + 1
- mark_certificate_issued: UPDATE ... WHERE certificate_issued = false
- delete_cascade: one transaction that deletes the row (DELETE ... RETURNING,
  so only one caller ever sees it), its exam attempts, and its seat on the
  course counter
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from courseflow.core.errors import Conflict
from courseflow.db.tables import CourseRow, EnrollmentRow, ExamAttemptRow
from courseflow.models.enrollment import CompletionSnapshot, Enrollment
from courseflow.repos.enrollment_repo import Mutation, Removal


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def add(self, enrollment: Enrollment) -> Enrollment:
        stmt = (
            insert(EnrollmentRow)
            .values(**_enrollment_to_values(enrollment))
            .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
            .returning(EnrollmentRow.id)
        )
        async with self._sessions.begin() as session:
            inserted = (await session.execute(stmt)).scalar_one_or_none()
        if inserted is None:
            raise Conflict("student is already enrolled in this course")
        return enrollment

    async def get(self, enrollment_id: UUID) -> Enrollment | None:
        async with self._sessions() as session:
            row = await session.get(EnrollmentRow, enrollment_id)
        return _row_to_enrollment(row) if row is not None else None

    async def get_for(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.student_id == student_id,
            EnrollmentRow.course_id == course_id,
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_enrollment(row) if row is not None else None

    async def get_by_certificate_id(self, certificate_id: str) -> Enrollment | None:
        stmt = select(EnrollmentRow).where(
            EnrollmentRow.certificate_id == certificate_id
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_enrollment(row) if row is not None else None

    async def list_by_student(
        self,
        student_id: UUID,
        *,
        status: str | None = None,
        offset: int = 0,
        limit: int = 12,
    ) -> tuple[list[Enrollment], int]:
        conditions = [EnrollmentRow.student_id == student_id]
        if status is not None:
            conditions.append(EnrollmentRow.status == status)

        activity = func.coalesce(
            EnrollmentRow.last_accessed_at, EnrollmentRow.enrolled_at
        )
        page_stmt = (
            select(EnrollmentRow)
            .where(*conditions)
            .order_by(activity.desc(), EnrollmentRow.id)
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(EnrollmentRow).where(*conditions)

        async with self._sessions() as session:
            rows = (await session.execute(page_stmt)).scalars().all()
            total = (await session.execute(count_stmt)).scalar_one()
        return [_row_to_enrollment(r) for r in rows], total

    async def update(self, enrollment_id: UUID, mutate: Mutation) -> Enrollment | None:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment_id)
            .with_for_update()
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            current = _row_to_enrollment(row)
            updated = mutate(current)
            if updated == current:
                return current
            values = _enrollment_to_values(updated)
            values["version"] = current.version + 1
            for key, value in values.items():
                setattr(row, key, value)
        return _row_to_enrollment(row)

    async def mark_certificate_issued(
        self,
        enrollment_id: UUID,
        *,
        certificate_id: str,
        url: str,
        issued_at: int,
        snapshot: CompletionSnapshot,
    ) -> Enrollment | None:
        stmt = (
            update(EnrollmentRow)
            .where(
                EnrollmentRow.id == enrollment_id,
                EnrollmentRow.certificate_issued.is_(False),
                EnrollmentRow.status == "completed",
            )
            .values(
                certificate_issued=True,
                certificate_id=certificate_id,
                certificate_url=url,
                certificate_issued_at=issued_at,
                snapshot_total_lessons=snapshot.total_lessons,
                snapshot_published_lessons=snapshot.published_lessons,
                snapshot_completed_lessons=snapshot.completed_lessons,
                snapshot_date=snapshot.snapshot_date,
                version=EnrollmentRow.version + 1,
            )
            .returning(EnrollmentRow)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_enrollment(row) if row is not None else None

    async def delete_cascade(self, enrollment_id: UUID) -> Removal | None:
        stmt = (
            delete(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment_id)
            .returning(EnrollmentRow)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            removed = _row_to_enrollment(row)
            attempts = await session.execute(
                delete(ExamAttemptRow).where(
                    ExamAttemptRow.student_id == removed.student_id,
                    ExamAttemptRow.course_id == removed.course_id,
                )
            )
            await session.execute(
                update(CourseRow)
                .where(CourseRow.id == removed.course_id)
                .values(
                    enrollment_count=func.greatest(CourseRow.enrollment_count - 1, 0)
                )
            )
        return Removal(enrollment=removed, attempts_deleted=attempts.rowcount or 0)


def _enrollment_to_values(e: Enrollment) -> dict:
    snapshot = e.completion_snapshot
    return {
        "id": e.id,
        "student_id": e.student_id,
        "course_id": e.course_id,
        "enrolled_at": e.enrolled_at,
        "status": e.status,
        "total_lessons": e.total_lessons,
        "required_exams": sorted(e.required_exams),
        "completed_lessons": sorted(e.completed_lessons),
        "completed_exams": sorted(e.completed_exams),
        "passed_exams": sorted(e.passed_exams),
        "progress": e.progress,
        "total_time_spent": e.total_time_spent,
        "completed_at": e.completed_at,
        "last_accessed_at": e.last_accessed_at,
        "payment_id": e.payment_id,
        "certificate_issued": e.certificate_issued,
        "certificate_id": e.certificate_id,
        "certificate_url": e.certificate_url,
        "certificate_issued_at": e.certificate_issued_at,
        "snapshot_total_lessons": snapshot.total_lessons if snapshot else None,
        "snapshot_published_lessons": snapshot.published_lessons if snapshot else None,
        "snapshot_completed_lessons": snapshot.completed_lessons if snapshot else None,
        "snapshot_date": snapshot.snapshot_date if snapshot else None,
        "version": e.version,
    }


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    snapshot = None
    if row.snapshot_date is not None:
        snapshot = CompletionSnapshot(
            total_lessons=row.snapshot_total_lessons or 0,
            published_lessons=row.snapshot_published_lessons or 0,
            completed_lessons=row.snapshot_completed_lessons or 0,
            snapshot_date=row.snapshot_date,
        )
    return Enrollment(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        enrolled_at=row.enrolled_at,
        total_lessons=row.total_lessons,
        required_exams=frozenset(row.required_exams or ()),
        completed_lessons=frozenset(row.completed_lessons or ()),
        completed_exams=frozenset(row.completed_exams or ()),
        passed_exams=frozenset(row.passed_exams or ()),
        status=row.status,  # type: ignore[arg-type]
        progress=row.progress,
        total_time_spent=row.total_time_spent,
        completed_at=row.completed_at,
        last_accessed_at=row.last_accessed_at,
        payment_id=row.payment_id,
        certificate_issued=row.certificate_issued,
        certificate_id=row.certificate_id,
        certificate_url=row.certificate_url,
        certificate_issued_at=row.certificate_issued_at,
        completion_snapshot=snapshot,
        version=row.version,
    )
