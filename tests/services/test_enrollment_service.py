from __future__ import annotations

import asyncio
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from courseflow.core.errors import (
    Conflict,
    Forbidden,
    InvalidInput,
    InvalidState,
    NotFound,
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


def _setup(svc: Services, *, lessons: int = 3, status: str = "published"):
    instructor = seed_user(svc.users, name="Grace Instructor", roles=("instructor",))
    student = seed_user(svc.users)
    course, seeded = seed_course(
        svc.catalog, instructor_id=instructor.id, lessons=lessons, status=status
    )
    return instructor, student, course, seeded


# ---- enroll ----


def test_enroll_creates_active_enrollment(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))

    assert enrollment.status == "active"
    assert enrollment.progress == 0
    assert enrollment.total_lessons == 3
    assert enrollment.enrolled_at == START
    assert enrollment.last_accessed_at == START
    assert asyncio.run(svc.catalog.get_course(course.id)).enrollment_count == 1


def test_enroll_snapshots_required_exams(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    exam = seed_exam(svc.catalog, course)
    seed_exam(svc.catalog, course, status="draft")

    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    assert enrollment.required_exams == frozenset({exam.id})


def test_enroll_queues_notification(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))

    task = asyncio.run(svc.queue.dequeue("notifications"))
    assert task is not None
    assert task.payload["type"] == "enrollment_created"
    assert task.payload["user_id"] == str(student.id)
    assert task.payload["data"]["course_id"] == str(course.id)


def test_enroll_twice_conflicts(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    with pytest.raises(Conflict):
        asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    assert asyncio.run(svc.catalog.get_course(course.id)).enrollment_count == 1


def test_enroll_unknown_course(svc: Services) -> None:
    student = seed_user(svc.users)
    with pytest.raises(NotFound):
        asyncio.run(svc.enrollments.enroll(principal_for(student), uuid.uuid4()))


def test_enroll_draft_course_rejected(svc: Services) -> None:
    _, student, course, _ = _setup(svc, status="draft")
    with pytest.raises(InvalidState):
        asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))


def test_enroll_requires_student_role(svc: Services) -> None:
    _, _, course, _ = _setup(svc)
    admin = Principal(user_id=uuid.uuid4(), roles=frozenset({"admin"}))
    with pytest.raises(Forbidden):
        asyncio.run(svc.enrollments.enroll(admin, course.id))


def test_instructor_cannot_enroll_in_own_course(svc: Services) -> None:
    instructor, _, course, _ = _setup(svc)
    dual = Principal(user_id=instructor.id, roles=frozenset({"student", "instructor"}))
    with pytest.raises(InvalidState):
        asyncio.run(svc.enrollments.enroll(dual, course.id))


def test_enroll_with_unknown_payment_reference(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    with pytest.raises(InvalidInput):
        asyncio.run(
            svc.enrollments.enroll(principal_for(student), course.id, "pay_missing")
        )


def test_enroll_with_known_payment_reference(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    svc.payments.register("pay_123")
    enrollment = asyncio.run(
        svc.enrollments.enroll(principal_for(student), course.id, "pay_123")
    )
    assert enrollment.payment_id == "pay_123"


def test_concurrent_enroll_creates_exactly_one(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    principal = principal_for(student)

    def attempt() -> str:
        try:
            asyncio.run(svc.enrollments.enroll(principal, course.id))
        except Conflict:
            return "conflict"
        return "created"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda _: attempt(), range(8)))

    assert outcomes.count("created") == 1
    assert outcomes.count("conflict") == 7
    assert asyncio.run(svc.catalog.get_course(course.id)).enrollment_count == 1


def test_concurrent_enroll_in_one_event_loop(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    principal = principal_for(student)

    async def race():
        return await asyncio.gather(
            *(svc.enrollments.enroll(principal, course.id) for _ in range(5)),
            return_exceptions=True,
        )

    results = asyncio.run(race())
    assert sum(1 for r in results if isinstance(r, Conflict)) == 4
    items, total = asyncio.run(svc.enrollment_repo.list_by_student(student.id))
    assert total == 1


# ---- add_student ----


def test_instructor_adds_student(svc: Services) -> None:
    instructor, student, course, _ = _setup(svc)
    enrollment = asyncio.run(
        svc.enrollments.add_student(principal_for(instructor), course.id, student.id)
    )
    assert enrollment.student_id == student.id
    assert enrollment.payment_id is None


def test_other_instructor_cannot_add_student(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    stranger = seed_user(svc.users, roles=("instructor",))
    with pytest.raises(Forbidden):
        asyncio.run(
            svc.enrollments.add_student(principal_for(stranger), course.id, student.id)
        )


def test_add_student_unknown_user(svc: Services) -> None:
    instructor, _, course, _ = _setup(svc)
    with pytest.raises(NotFound):
        asyncio.run(
            svc.enrollments.add_student(
                principal_for(instructor), course.id, uuid.uuid4()
            )
        )


def test_add_student_rejects_non_student(svc: Services) -> None:
    instructor, _, course, _ = _setup(svc)
    other = seed_user(svc.users, roles=("instructor",))
    with pytest.raises(InvalidInput):
        asyncio.run(
            svc.enrollments.add_student(principal_for(instructor), course.id, other.id)
        )


# ---- unenroll ----


def test_unenroll_cascades(svc: Services) -> None:
    instructor, student, course, _ = _setup(svc)
    exam = seed_exam(svc.catalog, course)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    attempt = asyncio.run(svc.exams.start(exam.id, principal_for(student)))
    asyncio.run(
        svc.exams.submit(attempt.id, principal_for(student), answers_scoring(30))
    )

    asyncio.run(svc.enrollments.unenroll(enrollment.id, principal_for(instructor)))

    assert asyncio.run(svc.enrollment_repo.get(enrollment.id)) is None
    assert asyncio.run(svc.attempt_repo.list_for(exam.id, student.id)) == []
    assert asyncio.run(svc.catalog.get_course(course.id)).enrollment_count == 0


def test_unenroll_retry_does_not_double_decrement(svc: Services) -> None:
    instructor, student, course, _ = _setup(svc)
    other = seed_user(svc.users)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    asyncio.run(svc.enrollments.enroll(principal_for(other), course.id))

    asyncio.run(svc.enrollments.unenroll(enrollment.id, principal_for(instructor)))
    with pytest.raises(NotFound):
        asyncio.run(svc.enrollments.unenroll(enrollment.id, principal_for(instructor)))

    assert asyncio.run(svc.catalog.get_course(course.id)).enrollment_count == 1


def _fail_once(original, calls: list[str]):
    async def wrapper(*args, **kwargs):
        if not calls:
            calls.append("failed")
            raise RuntimeError("storage unavailable")
        return await original(*args, **kwargs)

    return wrapper


@pytest.mark.parametrize(
    ("store", "method"),
    [
        ("attempt_repo", "delete_for_enrollment"),
        ("catalog", "adjust_enrollment_count"),
    ],
)
def test_unenroll_retry_after_partial_failure_decrements_once(
    svc: Services, monkeypatch: pytest.MonkeyPatch, store: str, method: str
) -> None:
    instructor, student, course, _ = _setup(svc)
    exam = seed_exam(svc.catalog, course)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    asyncio.run(svc.exams.start(exam.id, principal_for(student)))

    target = getattr(svc, store)
    calls: list[str] = []
    monkeypatch.setattr(target, method, _fail_once(getattr(target, method), calls))

    with pytest.raises(RuntimeError):
        asyncio.run(svc.enrollments.unenroll(enrollment.id, principal_for(instructor)))
    assert asyncio.run(svc.enrollment_repo.get(enrollment.id)) is not None

    asyncio.run(svc.enrollments.unenroll(enrollment.id, principal_for(instructor)))

    assert calls == ["failed"]
    assert asyncio.run(svc.enrollment_repo.get(enrollment.id)) is None
    assert asyncio.run(svc.attempt_repo.list_for(exam.id, student.id)) == []
    assert asyncio.run(svc.catalog.get_course(course.id)).enrollment_count == 0


def test_student_cannot_unenroll(svc: Services) -> None:
    _, student, course, _ = _setup(svc)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    with pytest.raises(Forbidden):
        asyncio.run(svc.enrollments.unenroll(enrollment.id, principal_for(student)))


def test_unenroll_then_reenroll(svc: Services) -> None:
    instructor, student, course, _ = _setup(svc)
    first = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    asyncio.run(svc.enrollments.unenroll(first.id, principal_for(instructor)))

    second = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    assert second.id != first.id
    assert second.progress == 0


# ---- list and get ----


def test_list_my_enrollments_orders_by_recent_activity(svc: Services) -> None:
    instructor = seed_user(svc.users, roles=("instructor",))
    student = seed_user(svc.users)
    ids = []
    for _ in range(3):
        course, _ = seed_course(svc.catalog, instructor_id=instructor.id)
        ids.append(
            asyncio.run(svc.enrollments.enroll(principal_for(student), course.id)).id
        )
        svc.clock.advance(minutes=1)

    page = asyncio.run(svc.enrollments.list_my_enrollments(student.id, limit=2))
    assert page.total == 3
    assert [e.id for e in page.items] == [ids[2], ids[1]]

    page2 = asyncio.run(svc.enrollments.list_my_enrollments(student.id, page=2, limit=2))
    assert [e.id for e in page2.items] == [ids[0]]


def test_list_my_enrollments_filters_by_status(svc: Services) -> None:
    _, student, course, lessons = _setup(svc, lessons=1)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))
    asyncio.run(svc.progress.record_lesson_completion(enrollment.id, lessons[0].id))

    assert asyncio.run(
        svc.enrollments.list_my_enrollments(student.id, status="completed")
    ).total == 1
    assert asyncio.run(
        svc.enrollments.list_my_enrollments(student.id, status="active")
    ).total == 0


@pytest.mark.parametrize(
    "kwargs",
    [{"page": 0}, {"limit": 0}, {"limit": 51}, {"status": "graduated"}],
)
def test_list_my_enrollments_validates_paging(svc: Services, kwargs: dict) -> None:
    with pytest.raises(InvalidInput):
        asyncio.run(svc.enrollments.list_my_enrollments(uuid.uuid4(), **kwargs))


def test_get_enrollment_visibility(svc: Services) -> None:
    instructor, student, course, _ = _setup(svc)
    enrollment = asyncio.run(svc.enrollments.enroll(principal_for(student), course.id))

    assert asyncio.run(
        svc.enrollments.get_enrollment(enrollment.id, principal_for(student))
    ).id == enrollment.id
    assert asyncio.run(
        svc.enrollments.get_enrollment(enrollment.id, principal_for(instructor))
    ).id == enrollment.id

    stranger = seed_user(svc.users)
    with pytest.raises(Forbidden):
        asyncio.run(svc.enrollments.get_enrollment(enrollment.id, principal_for(stranger)))
