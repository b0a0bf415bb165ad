"""Exam-level scoring policy.

An exam's authoritative result is derived from all of a student's
terminal attempts that carry a score, never from a single attempt.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from courseflow.models.exam import Exam, ExamAttempt, ScoringMethod


@dataclass(frozen=True, slots=True)
class ExamResult:
    final_score: float | None
    passed: bool
    attempts_counted: int


def _scored(attempts: Iterable[ExamAttempt]) -> list[ExamAttempt]:
    return [a for a in attempts if a.is_terminal and a.score is not None]


def final_score(
    attempts: Iterable[ExamAttempt], method: ScoringMethod
) -> float | None:
    scored = _scored(attempts)
    if not scored:
        return None

    if method == "highest":
        return max(a.score for a in scored)  # type: ignore[type-var]
    if method == "latest":
        latest = max(scored, key=lambda a: (a.submitted_at or 0, a.attempt_number))
        return latest.score
    if method == "average":
        return round(sum(a.score for a in scored) / len(scored), 2)  # type: ignore[misc]
    raise ValueError(f"unknown scoring method {method!r}")


def evaluate(attempts: Iterable[ExamAttempt], exam: Exam) -> ExamResult:
    scored = _scored(attempts)
    score = final_score(scored, exam.scoring_method)
    return ExamResult(
        final_score=score,
        passed=score is not None and score >= exam.passing_score,
        attempts_counted=len(scored),
    )
