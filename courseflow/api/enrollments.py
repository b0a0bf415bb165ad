"""Enrollment and progress endpoints.

  POST   /v1/enrollments                                     enroll self
  GET    /v1/enrollments/me                                  list own enrollments
  GET    /v1/enrollments/{id}                                read one
  DELETE /v1/enrollments/{id}                                unenroll (instructor/admin)
  POST   /v1/courses/{course_id}/students                    add a student
  POST   /v1/enrollments/{id}/lessons/{lesson_id}/complete   record lesson
  POST   /v1/enrollments/{id}/time                           record time spent
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel

from courseflow import runtime
from courseflow.api.dependencies import CurrentUser, require_any_role
from courseflow.models.enrollment import Enrollment
from courseflow.models.principal import Principal
from courseflow.services.enrollment_service import DEFAULT_PAGE_SIZE

router = APIRouter(tags=["enrollments"])


class EnrollIn(BaseModel):
    course_id: UUID
    payment_id: str | None = None


class AddStudentIn(BaseModel):
    student_id: UUID


class TimeSpentIn(BaseModel):
    minutes: int


class EnrollmentOut(BaseModel):
    id: UUID
    student_id: UUID
    course_id: UUID
    status: str
    progress: float
    total_lessons: int
    completed_lessons: list[UUID]
    required_exams: list[UUID]
    completed_exams: list[UUID]
    passed_exams: list[UUID]
    total_time_spent: int
    enrolled_at: int
    completed_at: int | None
    last_accessed_at: int | None
    certificate_issued: bool
    certificate_id: str | None

    @classmethod
    def from_domain(cls, e: Enrollment) -> EnrollmentOut:
        return cls(
            id=e.id,
            student_id=e.student_id,
            course_id=e.course_id,
            status=e.status,
            progress=e.progress,
            total_lessons=e.total_lessons,
            completed_lessons=sorted(e.completed_lessons),
            required_exams=sorted(e.required_exams),
            completed_exams=sorted(e.completed_exams),
            passed_exams=sorted(e.passed_exams),
            total_time_spent=e.total_time_spent,
            enrolled_at=e.enrolled_at,
            completed_at=e.completed_at,
            last_accessed_at=e.last_accessed_at,
            certificate_issued=e.certificate_issued,
            certificate_id=e.certificate_id,
        )


class EnrollmentPageOut(BaseModel):
    items: list[EnrollmentOut]
    total: int
    page: int
    limit: int


@router.post(
    "/v1/enrollments",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(body: EnrollIn, principal: CurrentUser) -> EnrollmentOut:
    enrollment = await runtime.enrollment_service.enroll(
        principal, body.course_id, body.payment_id
    )
    return EnrollmentOut.from_domain(enrollment)


# Declared before /{enrollment_id} so "me" is not parsed as an id.
@router.get("/v1/enrollments/me", response_model=EnrollmentPageOut)
async def list_my_enrollments(
    principal: CurrentUser,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> EnrollmentPageOut:
    result = await runtime.enrollment_service.list_my_enrollments(
        principal.user_id, status=status_filter, page=page, limit=limit
    )
    return EnrollmentPageOut(
        items=[EnrollmentOut.from_domain(e) for e in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


@router.get("/v1/enrollments/{enrollment_id}", response_model=EnrollmentOut)
async def get_enrollment(enrollment_id: UUID, principal: CurrentUser) -> EnrollmentOut:
    enrollment = await runtime.enrollment_service.get_enrollment(
        enrollment_id, principal
    )
    return EnrollmentOut.from_domain(enrollment)


@router.delete(
    "/v1/enrollments/{enrollment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def unenroll(
    enrollment_id: UUID,
    principal: Annotated[
        Principal, Depends(require_any_role({"instructor", "admin"}))
    ],
) -> Response:
    await runtime.enrollment_service.unenroll(enrollment_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/v1/courses/{course_id}/students",
    response_model=EnrollmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_student(
    course_id: UUID,
    body: AddStudentIn,
    principal: Annotated[
        Principal, Depends(require_any_role({"instructor", "admin"}))
    ],
) -> EnrollmentOut:
    enrollment = await runtime.enrollment_service.add_student(
        principal, course_id, body.student_id
    )
    return EnrollmentOut.from_domain(enrollment)


@router.post(
    "/v1/enrollments/{enrollment_id}/lessons/{lesson_id}/complete",
    response_model=EnrollmentOut,
)
async def complete_lesson(
    enrollment_id: UUID, lesson_id: UUID, principal: CurrentUser
) -> EnrollmentOut:
    enrollment = await runtime.progress_service.record_lesson_completion(
        enrollment_id, lesson_id, actor=principal
    )
    return EnrollmentOut.from_domain(enrollment)


@router.post("/v1/enrollments/{enrollment_id}/time", response_model=EnrollmentOut)
async def record_time(
    enrollment_id: UUID, body: TimeSpentIn, principal: CurrentUser
) -> EnrollmentOut:
    enrollment = await runtime.progress_service.record_time_spent(
        enrollment_id, body.minutes, actor=principal
    )
    return EnrollmentOut.from_domain(enrollment)
