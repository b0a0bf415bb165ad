"""Exam attempt endpoints."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from courseflow import runtime
from courseflow.api.dependencies import CurrentUser, require_role
from courseflow.models.exam import ExamAttempt
from courseflow.models.principal import Principal
from courseflow.services.scoring import ExamResult

router = APIRouter(tags=["exams"])


class AnswersIn(BaseModel):
    answers: dict[str, str | list[str]] = Field(default_factory=dict)


class AttemptOut(BaseModel):
    id: UUID
    exam_id: UUID
    student_id: UUID
    attempt_number: int
    status: str
    started_at: int
    expires_at: int
    submitted_at: int | None
    score: float | None
    max_score: float | None
    passed: bool | None
    is_late: bool
    answers: dict[str, str | list[str]]

    @classmethod
    def from_domain(cls, a: ExamAttempt) -> AttemptOut:
        return cls(
            id=a.id,
            exam_id=a.exam_id,
            student_id=a.student_id,
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


class ExamResultOut(BaseModel):
    final_score: float | None
    passed: bool
    attempts_counted: int

    @classmethod
    def from_domain(cls, r: ExamResult) -> ExamResultOut:
        return cls(
            final_score=r.final_score,
            passed=r.passed,
            attempts_counted=r.attempts_counted,
        )


class SubmitOut(BaseModel):
    attempt: AttemptOut
    result: ExamResultOut


class AttemptDetailOut(AttemptOut):
    answer_key: dict[str, str | list[str]] | None = None


class ExamOverviewOut(BaseModel):
    exam_id: UUID
    title: str
    duration_minutes: int
    passing_score: float
    total_points: float
    scoring_method: str
    max_attempts: int | None
    window: str
    attempts_used: int
    remaining_attempts: int | None
    can_start: bool
    in_progress: AttemptOut | None
    latest_attempt: AttemptOut | None
    result: ExamResultOut


class SweepOut(BaseModel):
    expired: int


def _maybe(attempt: ExamAttempt | None) -> AttemptOut | None:
    return AttemptOut.from_domain(attempt) if attempt is not None else None


@router.post(
    "/v1/exams/{exam_id}/attempts",
    response_model=AttemptOut,
    status_code=status.HTTP_201_CREATED,
)
async def start_attempt(exam_id: UUID, principal: CurrentUser) -> AttemptOut:
    attempt = await runtime.exam_attempt_service.start(exam_id, principal)
    return AttemptOut.from_domain(attempt)


@router.get("/v1/exams/{exam_id}/overview", response_model=ExamOverviewOut)
async def exam_overview(exam_id: UUID, principal: CurrentUser) -> ExamOverviewOut:
    o = await runtime.exam_attempt_service.overview(exam_id, principal)
    return ExamOverviewOut(
        exam_id=o.exam.id,
        title=o.exam.title,
        duration_minutes=o.exam.duration_minutes,
        passing_score=o.exam.passing_score,
        total_points=o.exam.total_points,
        scoring_method=o.exam.scoring_method,
        max_attempts=o.exam.max_attempts,
        window=o.window,
        attempts_used=o.attempts_used,
        remaining_attempts=o.remaining_attempts,
        can_start=o.can_start,
        in_progress=_maybe(o.in_progress),
        latest_attempt=_maybe(o.latest_attempt),
        result=ExamResultOut.from_domain(o.result),
    )


@router.get("/v1/exams/{exam_id}/attempts/me", response_model=list[AttemptOut])
async def my_attempts(exam_id: UUID, principal: CurrentUser) -> list[AttemptOut]:
    attempts = await runtime.exam_attempt_service.list_attempts(exam_id, principal)
    return [AttemptOut.from_domain(a) for a in attempts]


@router.get("/v1/exam-attempts/{attempt_id}", response_model=AttemptDetailOut)
async def get_attempt(attempt_id: UUID, principal: CurrentUser) -> AttemptDetailOut:
    view = await runtime.exam_attempt_service.get_attempt(attempt_id, principal)
    return AttemptDetailOut(
        **AttemptOut.from_domain(view.attempt).model_dump(),
        answer_key=view.answer_key,
    )


@router.put("/v1/exam-attempts/{attempt_id}/answers", response_model=AttemptOut)
async def save_answers(
    attempt_id: UUID, body: AnswersIn, principal: CurrentUser
) -> AttemptOut:
    attempt = await runtime.exam_attempt_service.save_answers(
        attempt_id, principal, body.answers
    )
    return AttemptOut.from_domain(attempt)


@router.post("/v1/exam-attempts/{attempt_id}/submit", response_model=SubmitOut)
async def submit_attempt(
    attempt_id: UUID, body: AnswersIn, principal: CurrentUser
) -> SubmitOut:
    outcome = await runtime.exam_attempt_service.submit(
        attempt_id, principal, body.answers
    )
    return SubmitOut(
        attempt=AttemptOut.from_domain(outcome.attempt),
        result=ExamResultOut.from_domain(outcome.result),
    )


@router.post("/v1/exam-attempts/{attempt_id}/abandon", response_model=AttemptOut)
async def abandon_attempt(attempt_id: UUID, principal: CurrentUser) -> AttemptOut:
    attempt = await runtime.exam_attempt_service.abandon(attempt_id, principal)
    return AttemptOut.from_domain(attempt)


@router.post("/v1/admin/exam-attempts/expire-overdue", response_model=SweepOut)
async def expire_overdue(
    _principal: Annotated[Principal, Depends(require_role("admin"))],
) -> SweepOut:
    return SweepOut(expired=await runtime.exam_attempt_service.expire_overdue())
