"""Answer grading.

Pure: a grader maps an exam's questions and a student's answers to a raw
score.  Raw totals can go negative when wrong answers carry penalties;
the attempt service clamps the final score at zero.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from courseflow.models.exam import AnswerValue, Exam, Question


@dataclass(frozen=True, slots=True)
class GradeResult:
    score: float
    max_score: float


Grader = Callable[[Exam, Mapping[str, AnswerValue]], GradeResult]


def _is_empty(value: AnswerValue | None) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return not value


def _as_set(value: AnswerValue) -> frozenset[str]:
    if isinstance(value, str):
        return frozenset({value})
    return frozenset(str(v) for v in value)


def is_correct(question: Question, value: AnswerValue) -> bool:
    if question.type == "single_choice":
        selected = _as_set(value)
        return len(selected) == 1 and selected <= question.correct_options
    if question.type == "multiple_choice":
        return _as_set(value) == question.correct_options

    # short_answer
    if not isinstance(value, str):
        return False
    given = value.strip()
    for expected in question.expected_answers:
        if question.case_sensitive:
            if given == expected.strip():
                return True
        elif given.casefold() == expected.strip().casefold():
            return True
    return False


def grade_answers(exam: Exam, answers: Mapping[str, AnswerValue]) -> GradeResult:
    """Default grader.

    A correct answer earns the question's points, a wrong non-empty answer
    loses its negative points, an empty answer scores nothing.  Answers to
    unknown question ids are ignored.
    """
    score = 0.0
    for question in exam.questions:
        value = answers.get(question.id)
        if _is_empty(value):
            continue
        if is_correct(question, value):  # type: ignore[arg-type]
            score += question.points
        else:
            score -= question.negative_points
    return GradeResult(score=round(score, 2), max_score=exam.total_points)
