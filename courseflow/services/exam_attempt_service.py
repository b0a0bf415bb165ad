"""Timed exam attempts.

    in_progress ──submit──▶ submitted
         │ ├──deadline──▶ expired     (sweep, or a late submit)
         │ └──abandon───▶ abandoned

Every transition out of in_progress is ``AttemptRepo.finish``, a single
conditional write that only succeeds while the attempt is still
in_progress.  A submit racing the expiry sweep therefore settles the
attempt exactly once; the loser sees InvalidState.

Expired attempts are scored from the answers last autosaved through
``save_answers`` (zero when nothing was saved) and count toward the
exam result like any other scored attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from uuid import UUID

from courseflow.core.clock import Clock, utc_now
from courseflow.core.errors import Forbidden, InvalidState, NotFound
from courseflow.core.metrics import ATTEMPT_TRANSITIONS
from courseflow.models.enrollment import PROGRESSING_STATUSES
from courseflow.models.exam import (
    AnswerValue,
    Exam,
    ExamAttempt,
    WindowState,
)
from courseflow.models.principal import Principal
from courseflow.repos.attempt_repo import AttemptRepo
from courseflow.repos.course_catalog import CourseCatalog
from courseflow.repos.enrollment_repo import EnrollmentRepo
from courseflow.services import eligibility
from courseflow.services.grading import Grader, grade_answers
from courseflow.services.notifications import Notification, NotificationDispatcher
from courseflow.services.progress_service import ProgressService
from courseflow.services.scoring import ExamResult, evaluate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SubmitResult:
    attempt: ExamAttempt
    result: ExamResult


@dataclass(frozen=True, slots=True)
class AttemptView:
    attempt: ExamAttempt
    answer_key: dict[str, AnswerValue] | None


@dataclass(frozen=True, slots=True)
class ExamOverview:
    exam: Exam
    window: WindowState
    attempts_used: int
    remaining_attempts: int | None  # None = unlimited
    in_progress: ExamAttempt | None
    latest_attempt: ExamAttempt | None
    can_start: bool
    result: ExamResult


class ExamAttemptService:
    def __init__(
        self,
        *,
        attempts: AttemptRepo,
        enrollments: EnrollmentRepo,
        catalog: CourseCatalog,
        progress: ProgressService,
        notifications: NotificationDispatcher | None = None,
        grader: Grader = grade_answers,
        clock: Clock = utc_now,
    ) -> None:
        self._attempts = attempts
        self._enrollments = enrollments
        self._catalog = catalog
        self._progress = progress
        self._notifications = notifications
        self._grader = grader
        self._clock = clock

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _exam(self, exam_id: UUID) -> Exam:
        exam = await self._catalog.get_exam(exam_id)
        if exam is None:
            raise NotFound("exam not found")
        return exam

    async def _own_open_attempt(
        self, attempt_id: UUID, principal: Principal
    ) -> ExamAttempt:
        attempt = await self._attempts.get(attempt_id)
        if attempt is None:
            raise NotFound("attempt not found")
        if attempt.student_id != principal.user_id:
            logger.warning(
                "Attempt %s touched by user=%s, not its owner",
                attempt.id,
                principal.user_id,
                extra={"attempt_id": str(attempt.id)},
            )
            raise InvalidState("attempt belongs to another student")
        if attempt.status != "in_progress":
            raise InvalidState(f"attempt is {attempt.status}")
        return attempt

    def _score(
        self, exam: Exam, answers: Mapping[str, AnswerValue], *, late: bool
    ) -> tuple[float, float, bool]:
        graded = self._grader(exam, answers)
        score = graded.score
        if late:
            score *= 1 - exam.late_penalty_percent / 100
        score = round(max(score, 0.0), 2)
        return score, graded.max_score, score >= exam.passing_score

    async def _exam_result(self, exam: Exam, student_id: UUID) -> ExamResult:
        return evaluate(await self._attempts.list_for(exam.id, student_id), exam)

    async def _after_terminal(self, exam: Exam, student_id: UUID) -> ExamResult:
        result = await self._exam_result(exam, student_id)
        if result.passed:
            enrollment = await self._enrollments.get_for(student_id, exam.course_id)
            if enrollment is not None:
                await self._progress.record_exam_pass(enrollment.id, exam.id)
        return result

    async def _expire(
        self, attempt: ExamAttempt, exam: Exam | None, now: int
    ) -> ExamAttempt | None:
        if exam is None:
            score, max_score, passed = 0.0, 0.0, False
        else:
            score, max_score, passed = self._score(exam, attempt.answers, late=False)

        expired = await self._attempts.finish(
            attempt.id,
            status="expired",
            submitted_at=now,
            score=score,
            max_score=max_score,
            passed=passed,
        )
        if expired is None:
            return None

        ATTEMPT_TRANSITIONS.labels(transition="expired").inc()
        logger.info(
            "Attempt %s expired with score %.2f",
            expired.id,
            score,
            extra={"attempt_id": str(expired.id), "exam_id": str(expired.exam_id)},
        )
        if exam is not None:
            await self._after_terminal(exam, expired.student_id)
        return expired

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    async def start(self, exam_id: UUID, principal: Principal) -> ExamAttempt:
        exam = await self._exam(exam_id)
        if not exam.is_published:
            raise Forbidden("exam is not available")

        if not principal.is_admin:
            enrollment = await self._enrollments.get_for(
                principal.user_id, exam.course_id
            )
            if enrollment is None or enrollment.status not in PROGRESSING_STATUSES:
                logger.warning(
                    "Attempt start denied: user=%s not enrolled for exam %s",
                    principal.user_id,
                    exam.id,
                    extra={"exam_id": str(exam.id)},
                )
                raise Forbidden("not enrolled in this course")

        now = self._clock()
        # Settle this student's overdue attempt before the exclusive create.
        for stale in await self._attempts.list_for(exam.id, principal.user_id):
            if stale.status == "in_progress" and now > stale.expires_at:
                await self._expire(stale, exam, now)
        eligibility.ensure_exam_window(exam, now)

        attempt = await self._attempts.create_exclusive(
            exam_id=exam.id,
            student_id=principal.user_id,
            course_id=exam.course_id,
            started_at=now,
            expires_at=now + exam.duration_minutes * 60,
            max_attempts=exam.max_attempts,
        )
        ATTEMPT_TRANSITIONS.labels(transition="started").inc()
        logger.info(
            "Attempt %s #%d started on exam %s",
            attempt.id,
            attempt.attempt_number,
            exam.id,
            extra={"attempt_id": str(attempt.id), "exam_id": str(exam.id)},
        )
        return attempt

    async def submit(
        self,
        attempt_id: UUID,
        principal: Principal,
        answers: Mapping[str, AnswerValue],
    ) -> SubmitResult:
        attempt = await self._own_open_attempt(attempt_id, principal)
        exam = await self._exam(attempt.exam_id)
        now = self._clock()

        if now > attempt.expires_at:
            await self._expire(attempt, exam, now)
            raise InvalidState("attempt time limit has passed")

        late = exam.is_past_close(now)
        if late and not exam.allow_late_submission:
            raise Forbidden("exam is closed and does not accept late submissions")

        score, max_score, passed = self._score(exam, answers, late=late)
        submitted = await self._attempts.finish(
            attempt.id,
            status="submitted",
            submitted_at=now,
            score=score,
            max_score=max_score,
            passed=passed,
            is_late=late,
            answers=dict(answers),
        )
        if submitted is None:
            raise InvalidState("attempt is no longer in progress")

        ATTEMPT_TRANSITIONS.labels(transition="submitted").inc()
        logger.info(
            "Attempt %s submitted: score=%.2f/%.2f passed=%s late=%s",
            submitted.id,
            score,
            max_score,
            passed,
            late,
            extra={"attempt_id": str(submitted.id), "exam_id": str(exam.id)},
        )
        result = await self._after_terminal(exam, submitted.student_id)
        if self._notifications is not None:
            await self._notifications.send(
                Notification(
                    type="exam_graded",
                    user_id=submitted.student_id,
                    data={
                        "exam_id": exam.id,
                        "attempt_id": submitted.id,
                        "score": score,
                        "passed": passed,
                    },
                )
            )
        return SubmitResult(attempt=submitted, result=result)

    async def save_answers(
        self,
        attempt_id: UUID,
        principal: Principal,
        answers: Mapping[str, AnswerValue],
    ) -> ExamAttempt:
        attempt = await self._own_open_attempt(attempt_id, principal)
        if self._clock() > attempt.expires_at:
            raise InvalidState("attempt time limit has passed")
        saved = await self._attempts.save_answers(attempt.id, dict(answers))
        if saved is None:
            raise InvalidState("attempt is no longer in progress")
        return saved

    async def abandon(self, attempt_id: UUID, principal: Principal) -> ExamAttempt:
        attempt = await self._own_open_attempt(attempt_id, principal)
        abandoned = await self._attempts.finish(
            attempt.id, status="abandoned", submitted_at=self._clock()
        )
        if abandoned is None:
            raise InvalidState("attempt is no longer in progress")
        ATTEMPT_TRANSITIONS.labels(transition="abandoned").inc()
        logger.info(
            "Attempt %s abandoned",
            abandoned.id,
            extra={"attempt_id": str(abandoned.id)},
        )
        return abandoned

    async def expire_overdue(self) -> int:
        """Expire every in-progress attempt past its deadline.

        Returns how many attempts this sweep expired; attempts settled
        concurrently by a submit are skipped.
        """
        now = self._clock()
        expired = 0
        exams: dict[UUID, Exam | None] = {}
        for attempt in await self._attempts.list_overdue(now):
            if attempt.exam_id not in exams:
                exams[attempt.exam_id] = await self._catalog.get_exam(attempt.exam_id)
            if await self._expire(attempt, exams[attempt.exam_id], now) is not None:
                expired += 1
        if expired:
            logger.info("Expiry sweep settled %d attempt(s)", expired)
        return expired

    async def list_attempts(
        self, exam_id: UUID, principal: Principal
    ) -> list[ExamAttempt]:
        await self._exam(exam_id)
        return await self._attempts.list_for(exam_id, principal.user_id)

    async def get_attempt(self, attempt_id: UUID, principal: Principal) -> AttemptView:
        attempt = await self._attempts.get(attempt_id)
        if attempt is None:
            raise NotFound("attempt not found")
        if attempt.student_id != principal.user_id and not principal.is_admin:
            raise Forbidden("not your attempt")

        exam = await self._exam(attempt.exam_id)
        answer_key = None
        if principal.is_admin or eligibility.may_reveal_answers(
            exam, attempt, self._clock()
        ):
            answer_key = {q.id: q.answer_key() for q in exam.questions}
        return AttemptView(attempt=attempt, answer_key=answer_key)

    async def overview(self, exam_id: UUID, principal: Principal) -> ExamOverview:
        exam = await self._exam(exam_id)
        attempts = await self._attempts.list_for(exam.id, principal.user_id)
        now = self._clock()

        used = sum(1 for a in attempts if a.is_terminal)
        in_progress = next((a for a in attempts if a.status == "in_progress"), None)
        remaining = (
            None if exam.max_attempts is None else max(0, exam.max_attempts - used)
        )
        window = exam.window_state(now)
        can_start = (
            exam.is_published
            and window == "open"
            and in_progress is None
            and (remaining is None or remaining > 0)
        )
        return ExamOverview(
            exam=exam,
            window=window,
            attempts_used=used,
            remaining_attempts=remaining,
            in_progress=in_progress,
            latest_attempt=attempts[-1] if attempts else None,
            can_start=can_start,
            result=evaluate(attempts, exam),
        )
