from __future__ import annotations

import asyncio
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from courseflow.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    ResourceExhausted,
)
from courseflow.models.principal import Principal
from tests.conftest import (
    START,
    Services,
    answers_scoring,
    principal_for,
    seed_course,
    seed_exam,
    seed_user,
)


def _setup(svc: Services, *, lessons: int = 1, **exam_config):
    instructor = seed_user(svc.users, roles=("instructor",))
    student = seed_user(svc.users)
    course, seeded = seed_course(
        svc.catalog, instructor_id=instructor.id, lessons=lessons
    )
    exam = seed_exam(svc.catalog, course, **exam_config)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    return principal_for(student), exam, enrollment, seeded


def _start(svc: Services, exam_id, who: Principal):
    return asyncio.run(svc.exams.start(exam_id, who))


def _submit(svc: Services, attempt_id, who: Principal, points: int):
    return asyncio.run(svc.exams.submit(attempt_id, who, answers_scoring(points)))


# ---- start ----


def test_start_creates_timed_attempt(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)

    assert attempt.status == "in_progress"
    assert attempt.attempt_number == 1
    assert attempt.started_at == START
    assert attempt.expires_at == START + 30 * 60


def test_start_while_in_progress_conflicts(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    _start(svc, exam.id, student)
    with pytest.raises(Conflict):
        _start(svc, exam.id, student)


def test_concurrent_start_admits_one(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)

    def attempt() -> str:
        try:
            asyncio.run(svc.exams.start(exam.id, student))
        except Conflict:
            return "conflict"
        return "started"

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(lambda _: attempt(), range(6)))

    assert outcomes.count("started") == 1
    assert outcomes.count("conflict") == 5
    attempts = asyncio.run(svc.attempt_repo.list_for(exam.id, student.user_id))
    assert len(attempts) == 1


def test_start_requires_enrollment(svc: Services) -> None:
    _, exam, _, _ = _setup(svc)
    outsider = principal_for(seed_user(svc.users))
    with pytest.raises(Forbidden):
        _start(svc, exam.id, outsider)


def test_admin_may_start_without_enrollment(svc: Services) -> None:
    _, exam, _, _ = _setup(svc)
    admin = Principal(user_id=uuid.uuid4(), roles=frozenset({"admin"}))
    assert _start(svc, exam.id, admin).status == "in_progress"


def test_start_unpublished_exam_forbidden(svc: Services) -> None:
    student, exam, _, _ = _setup(svc, status="draft")
    with pytest.raises(Forbidden):
        _start(svc, exam.id, student)


def test_start_unknown_exam(svc: Services) -> None:
    student, _, _, _ = _setup(svc)
    with pytest.raises(NotFound):
        _start(svc, uuid.uuid4(), student)


def test_start_outside_window_forbidden(svc: Services) -> None:
    student, exam, _, _ = _setup(
        svc, open_at=START + 3600, close_at=START + 7200
    )
    with pytest.raises(Forbidden):
        _start(svc, exam.id, student)

    svc.clock.advance(seconds=7201)
    with pytest.raises(Forbidden):
        _start(svc, exam.id, student)

    svc.clock.now = START + 3600
    assert _start(svc, exam.id, student).status == "in_progress"


# ---- attempt quota and scoring ----


def test_max_attempts_with_highest_scoring(svc: Services) -> None:
    student, exam, enrollment, _ = _setup(
        svc, max_attempts=2, scoring_method="highest", passing_score=60
    )

    first = _start(svc, exam.id, student)
    r1 = _submit(svc, first.id, student, 40)
    assert r1.attempt.score == 40
    assert r1.attempt.passed is False
    assert r1.result.passed is False

    svc.clock.advance(minutes=1)
    second = _start(svc, exam.id, student)
    assert second.attempt_number == 2
    r2 = _submit(svc, second.id, student, 70)
    assert r2.result.final_score == 70
    assert r2.result.passed is True

    with pytest.raises(ResourceExhausted):
        _start(svc, exam.id, student)

    stored = asyncio.run(svc.enrollment_repo.get(enrollment.id))
    assert exam.id in stored.passed_exams
    assert exam.id in stored.completed_exams


@pytest.mark.parametrize(
    ("method", "expected", "passed"),
    [("highest", 70, True), ("latest", 50, False), ("average", 60, True)],
)
def test_scoring_methods(
    svc: Services, method: str, expected: float, passed: bool
) -> None:
    student, exam, _, _ = _setup(svc, scoring_method=method, passing_score=60)
    for points in (70, 50):
        attempt = _start(svc, exam.id, student)
        outcome = _submit(svc, attempt.id, student, points)
        svc.clock.advance(minutes=1)

    assert outcome.result.final_score == expected
    assert outcome.result.passed is passed
    assert outcome.result.attempts_counted == 2


def test_passing_required_exam_completes_course(svc: Services) -> None:
    student, exam, enrollment, lessons = _setup(svc)
    asyncio.run(svc.progress.record_lesson_completion(enrollment.id, lessons[0].id))
    assert asyncio.run(svc.enrollment_repo.get(enrollment.id)).status == "active"

    attempt = _start(svc, exam.id, student)
    _submit(svc, attempt.id, student, 80)

    stored = asyncio.run(svc.enrollment_repo.get(enrollment.id))
    assert stored.status == "completed"
    assert stored.certificate_issued is True


# ---- deadlines ----


def test_expiry_sweep_then_late_submit(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)

    svc.clock.advance(minutes=31)
    assert asyncio.run(svc.exams.expire_overdue()) == 1

    stored = asyncio.run(svc.attempt_repo.get(attempt.id))
    assert stored.status == "expired"
    assert stored.submitted_at == svc.clock()
    assert stored.score == 0

    with pytest.raises(InvalidState):
        _submit(svc, attempt.id, student, 100)


def test_expired_attempt_is_scored_from_saved_answers(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    asyncio.run(svc.exams.save_answers(attempt.id, student, answers_scoring(80)))

    svc.clock.advance(minutes=31)
    asyncio.run(svc.exams.expire_overdue())

    stored = asyncio.run(svc.attempt_repo.get(attempt.id))
    assert stored.score == 80
    assert stored.passed is True


def test_sweep_is_idempotent(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    _start(svc, exam.id, student)
    svc.clock.advance(minutes=31)
    assert asyncio.run(svc.exams.expire_overdue()) == 1
    assert asyncio.run(svc.exams.expire_overdue()) == 0


def test_sweep_leaves_attempts_within_limit(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    svc.clock.advance(minutes=29)
    assert asyncio.run(svc.exams.expire_overdue()) == 0
    assert asyncio.run(svc.attempt_repo.get(attempt.id)).status == "in_progress"


def test_submit_past_deadline_expires_attempt(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    svc.clock.advance(minutes=45)

    with pytest.raises(InvalidState):
        _submit(svc, attempt.id, student, 100)
    assert asyncio.run(svc.attempt_repo.get(attempt.id)).status == "expired"


def test_expired_attempt_counts_toward_quota(svc: Services) -> None:
    student, exam, _, _ = _setup(svc, max_attempts=1)
    _start(svc, exam.id, student)
    svc.clock.advance(minutes=31)
    asyncio.run(svc.exams.expire_overdue())
    with pytest.raises(ResourceExhausted):
        _start(svc, exam.id, student)


def test_late_submission_after_close_is_rejected(svc: Services) -> None:
    student, exam, _, _ = _setup(svc, close_at=START + 10 * 60)
    attempt = _start(svc, exam.id, student)
    svc.clock.advance(minutes=15)
    with pytest.raises(Forbidden):
        _submit(svc, attempt.id, student, 100)


def test_late_submission_is_penalised_when_allowed(svc: Services) -> None:
    student, exam, _, _ = _setup(
        svc,
        close_at=START + 10 * 60,
        allow_late_submission=True,
        late_penalty_percent=25,
    )
    attempt = _start(svc, exam.id, student)
    svc.clock.advance(minutes=15)

    outcome = _submit(svc, attempt.id, student, 80)
    assert outcome.attempt.is_late is True
    assert outcome.attempt.score == 60
    assert outcome.attempt.passed is True


# ---- ownership and other transitions ----


def test_submit_by_another_student_is_invalid(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    intruder = principal_for(seed_user(svc.users))
    with pytest.raises(InvalidState):
        _submit(svc, attempt.id, intruder, 100)


def test_submit_twice_is_invalid(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    _submit(svc, attempt.id, student, 70)
    with pytest.raises(InvalidState):
        _submit(svc, attempt.id, student, 100)


def test_abandon_frees_the_slot(svc: Services) -> None:
    student, exam, _, _ = _setup(svc, max_attempts=2)
    attempt = _start(svc, exam.id, student)
    abandoned = asyncio.run(svc.exams.abandon(attempt.id, student))
    assert abandoned.status == "abandoned"
    assert abandoned.score is None

    second = _start(svc, exam.id, student)
    assert second.attempt_number == 2


def test_save_answers_after_deadline_rejected(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    svc.clock.advance(minutes=31)
    with pytest.raises(InvalidState):
        asyncio.run(svc.exams.save_answers(attempt.id, student, {"q1": "a"}))


# ---- reads ----


def test_get_attempt_reveals_key_after_submit(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)

    open_view = asyncio.run(svc.exams.get_attempt(attempt.id, student))
    assert open_view.answer_key is None

    _submit(svc, attempt.id, student, 50)
    view = asyncio.run(svc.exams.get_attempt(attempt.id, student))
    assert view.answer_key == {f"q{i}": "a" for i in range(1, 11)}


def test_get_attempt_never_reveals(svc: Services) -> None:
    student, exam, _, _ = _setup(svc, show_correct_answers="never")
    attempt = _start(svc, exam.id, student)
    _submit(svc, attempt.id, student, 50)
    assert asyncio.run(svc.exams.get_attempt(attempt.id, student)).answer_key is None


def test_get_attempt_after_close(svc: Services) -> None:
    student, exam, _, _ = _setup(
        svc, show_correct_answers="after_close", close_at=START + 60 * 60
    )
    attempt = _start(svc, exam.id, student)
    _submit(svc, attempt.id, student, 50)
    assert asyncio.run(svc.exams.get_attempt(attempt.id, student)).answer_key is None

    svc.clock.advance(minutes=61)
    assert asyncio.run(svc.exams.get_attempt(attempt.id, student)).answer_key is not None


def test_get_attempt_of_another_student_forbidden(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    with pytest.raises(Forbidden):
        asyncio.run(
            svc.exams.get_attempt(attempt.id, principal_for(seed_user(svc.users)))
        )


def test_overview_reports_quota_and_result(svc: Services) -> None:
    student, exam, _, _ = _setup(svc, max_attempts=3)
    first = _start(svc, exam.id, student)
    _submit(svc, first.id, student, 70)
    second = _start(svc, exam.id, student)

    overview = asyncio.run(svc.exams.overview(exam.id, student))
    assert overview.window == "open"
    assert overview.attempts_used == 1
    assert overview.remaining_attempts == 2
    assert overview.in_progress.id == second.id
    assert overview.latest_attempt.id == second.id
    assert overview.can_start is False
    assert overview.result.final_score == 70


def test_start_settles_own_overdue_attempt(svc: Services) -> None:
    student, exam, _, _ = _setup(svc, max_attempts=2)
    stale = _start(svc, exam.id, student)
    asyncio.run(svc.exams.save_answers(stale.id, student, answers_scoring(30)))
    svc.clock.advance(minutes=31)

    fresh = _start(svc, exam.id, student)

    assert fresh.attempt_number == 2
    expired = asyncio.run(svc.attempt_repo.get(stale.id))
    assert expired.status == "expired"
    assert expired.score == 30


def test_start_leaves_running_attempt_within_limit(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    running = _start(svc, exam.id, student)
    svc.clock.advance(minutes=29)

    with pytest.raises(Conflict):
        _start(svc, exam.id, student)
    assert asyncio.run(svc.attempt_repo.get(running.id)).status == "in_progress"


def test_submit_queues_exam_graded_notification(svc: Services) -> None:
    student, exam, _, _ = _setup(svc)
    attempt = _start(svc, exam.id, student)
    _submit(svc, attempt.id, student, 70)

    events = []
    while (task := asyncio.run(svc.queue.dequeue("notifications"))) is not None:
        events.append(task.payload)
    graded = [e for e in events if e["type"] == "exam_graded"]
    assert len(graded) == 1
    assert graded[0]["user_id"] == str(student.user_id)
    assert graded[0]["data"]["exam_id"] == str(exam.id)
    assert graded[0]["data"]["attempt_id"] == str(attempt.id)
    assert graded[0]["data"]["score"] == 70
    assert graded[0]["data"]["passed"] is True
