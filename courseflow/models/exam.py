"""Exam configuration and attempt records.

Exams are authored elsewhere and read here; ``Exam.new`` is the single
place their configuration rules are checked.  Attempts are the mutable
side: one row per timed try, terminal once submitted, expired or
abandoned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal
from uuid import UUID, uuid4

from courseflow.core.errors import InvalidInput

ExamStatus = Literal["draft", "published", "archived"]
ScoringMethod = Literal["highest", "latest", "average"]
AnswerReveal = Literal["never", "after_submit", "after_close"]
QuestionType = Literal["single_choice", "multiple_choice", "short_answer"]
AttemptStatus = Literal["in_progress", "submitted", "expired", "abandoned"]
WindowState = Literal["upcoming", "open", "closed"]

SCORING_METHODS: frozenset[str] = frozenset({"highest", "latest", "average"})
ANSWER_REVEALS: frozenset[str] = frozenset({"never", "after_submit", "after_close"})
QUESTION_TYPES: frozenset[str] = frozenset(
    {"single_choice", "multiple_choice", "short_answer"}
)
TERMINAL_STATUSES: frozenset[str] = frozenset({"submitted", "expired", "abandoned"})

# question id -> selected option id(s) or free text
AnswerValue = str | list[str]
Answers = dict[str, AnswerValue]


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    type: QuestionType
    points: float
    correct_options: frozenset[str] = frozenset()
    expected_answers: tuple[str, ...] = ()
    case_sensitive: bool = False
    negative_points: float = 0.0

    def answer_key(self) -> AnswerValue:
        if self.type == "short_answer":
            return list(self.expected_answers)
        if self.type == "single_choice":
            return next(iter(self.correct_options), "")
        return sorted(self.correct_options)


@dataclass(frozen=True, slots=True)
class Exam:
    id: UUID
    course_id: UUID
    title: str
    duration_minutes: int
    total_points: float
    passing_score: float
    status: ExamStatus = "published"
    open_at: int | None = None
    close_at: int | None = None
    max_attempts: int | None = None  # None = unlimited
    scoring_method: ScoringMethod = "highest"
    show_correct_answers: AnswerReveal = "after_submit"
    allow_late_submission: bool = False
    late_penalty_percent: float = 0.0
    questions: tuple[Question, ...] = ()

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    def window_state(self, now: int) -> WindowState:
        if self.open_at is not None and now < self.open_at:
            return "upcoming"
        if self.close_at is not None and now > self.close_at:
            return "closed"
        return "open"

    def is_past_close(self, now: int) -> bool:
        return self.close_at is not None and now > self.close_at

    @staticmethod
    def new(
        *,
        course_id: UUID,
        title: str,
        duration_minutes: int,
        passing_score: float,
        total_points: float | None = None,
        status: ExamStatus = "published",
        open_at: int | None = None,
        close_at: int | None = None,
        max_attempts: int | None = None,
        scoring_method: ScoringMethod = "highest",
        show_correct_answers: AnswerReveal = "after_submit",
        allow_late_submission: bool = False,
        late_penalty_percent: float = 0.0,
        questions: tuple[Question, ...] = (),
        exam_id: UUID | None = None,
    ) -> Exam:
        """Build a validated exam.

        When ``total_points`` is omitted it is the sum of the question
        points.  Raises InvalidInput for any inconsistent configuration.
        """
        if total_points is None:
            total_points = sum(q.points for q in questions)

        if duration_minutes <= 0:
            raise InvalidInput("duration_minutes must be positive")
        if total_points <= 0:
            raise InvalidInput("total_points must be positive")
        if not 0 <= passing_score <= total_points:
            raise InvalidInput("passing_score must be between 0 and total_points")
        if open_at is not None and close_at is not None and open_at >= close_at:
            raise InvalidInput("open_at must be before close_at")
        if max_attempts is not None and max_attempts < 1:
            raise InvalidInput("max_attempts must be at least 1 when set")
        if scoring_method not in SCORING_METHODS:
            raise InvalidInput(f"unknown scoring_method {scoring_method!r}")
        if show_correct_answers not in ANSWER_REVEALS:
            raise InvalidInput(
                f"unknown show_correct_answers {show_correct_answers!r}"
            )
        if not 0 <= late_penalty_percent <= 100:
            raise InvalidInput("late_penalty_percent must be between 0 and 100")

        seen: set[str] = set()
        for q in questions:
            if q.type not in QUESTION_TYPES:
                raise InvalidInput(f"unknown question type {q.type!r}")
            if q.id in seen:
                raise InvalidInput(f"duplicate question id {q.id!r}")
            if q.points < 0 or q.negative_points < 0:
                raise InvalidInput("question points must not be negative")
            seen.add(q.id)

        return Exam(
            id=exam_id or uuid4(),
            course_id=course_id,
            title=title,
            duration_minutes=duration_minutes,
            total_points=total_points,
            passing_score=passing_score,
            status=status,
            open_at=open_at,
            close_at=close_at,
            max_attempts=max_attempts,
            scoring_method=scoring_method,
            show_correct_answers=show_correct_answers,
            allow_late_submission=allow_late_submission,
            late_penalty_percent=late_penalty_percent,
            questions=questions,
        )


@dataclass(frozen=True, slots=True)
class ExamAttempt:
    id: UUID
    exam_id: UUID
    student_id: UUID
    course_id: UUID
    attempt_number: int
    started_at: int
    expires_at: int
    status: AttemptStatus = "in_progress"
    submitted_at: int | None = None  # set on every terminal transition
    score: float | None = None
    max_score: float | None = None
    passed: bool | None = None
    is_late: bool = False
    # Autosaved while in progress, final once submitted.
    answers: Answers = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @staticmethod
    def new(
        *,
        exam_id: UUID,
        student_id: UUID,
        course_id: UUID,
        attempt_number: int,
        started_at: int,
        expires_at: int,
    ) -> ExamAttempt:
        return ExamAttempt(
            id=uuid4(),
            exam_id=exam_id,
            student_id=student_id,
            course_id=course_id,
            attempt_number=attempt_number,
            started_at=started_at,
            expires_at=expires_at,
        )
