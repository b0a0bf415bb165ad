from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from courseflow import runtime
from courseflow.main import app
from courseflow.models.course import Course, Lesson
from courseflow.models.exam import Exam, Question
from courseflow.models.principal import Principal
from courseflow.models.user import User
from courseflow.repos.attempt_repo import InMemoryAttemptRepo
from courseflow.repos.course_catalog import InMemoryCourseCatalog
from courseflow.repos.enrollment_repo import InMemoryEnrollmentRepo
from courseflow.repos.payment_lookup import InMemoryPaymentLookup
from courseflow.repos.user_repo import InMemoryUserRepo
from courseflow.services import token_service
from courseflow.services.cache import InMemoryCacheService, cache_service
from courseflow.services.certificate_renderer import (
    CertificateRenderer,
    LocalCertificateRenderer,
)
from courseflow.services.certificate_service import CertificateService
from courseflow.services.enrollment_service import EnrollmentService
from courseflow.services.exam_attempt_service import ExamAttemptService
from courseflow.services.notifications import NotificationDispatcher
from courseflow.services.progress_service import ProgressService
from courseflow.services.task_queue import InMemoryTaskQueue, task_queue

START = 1_760_000_000  # fixed epoch seconds for service tests


# ---------------------------------------------------------------------------
# Shared in-memory state (API tests go through the runtime singletons)
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_runtime_state() -> None:
    """Clear repositories between tests so state doesn't bleed."""
    for store in (
        runtime.catalog,
        runtime.enrollment_repo,
        runtime.attempt_repo,
        runtime.user_repo,
    ):
        if hasattr(store, "clear"):
            store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    if hasattr(cache_service, "clear"):
        cache_service.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    if hasattr(task_queue, "clear"):
        task_queue.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    user_id: UUID | None = None,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=str(user_id or uuid.uuid4()), roles=roles
    )


def auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user.id, list(user.roles))}"}


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------


def seed_user(
    users: InMemoryUserRepo | None = None,
    *,
    name: str = "Ada Learner",
    roles: tuple[str, ...] = ("student",),
) -> User:
    repo = users if users is not None else runtime.user_repo
    user = User.new(email=f"{uuid.uuid4().hex[:10]}@example.com", name=name, roles=roles)
    asyncio.run(repo.add(user))
    return user


def seed_course(
    catalog: InMemoryCourseCatalog | None = None,
    *,
    instructor_id: UUID,
    lessons: int = 3,
    status: str = "published",
    title: str = "Practical Python",
) -> tuple[Course, list[Lesson]]:
    cat = catalog if catalog is not None else runtime.catalog
    course = cat.add_course(  # type: ignore[union-attr]
        Course.new(
            slug=f"course-{uuid.uuid4().hex[:8]}",
            title=title,
            instructor_id=instructor_id,
            status=status,  # type: ignore[arg-type]
        )
    )
    seeded = [
        cat.add_lesson(  # type: ignore[union-attr]
            Lesson.new(course_id=course.id, title=f"Lesson {i + 1}", position=i + 1)
        )
        for i in range(lessons)
    ]
    return course, seeded


def add_lesson(
    catalog: InMemoryCourseCatalog | None, course: Course, position: int
) -> Lesson:
    cat = catalog if catalog is not None else runtime.catalog
    return cat.add_lesson(  # type: ignore[union-attr]
        Lesson.new(course_id=course.id, title=f"Lesson {position}", position=position)
    )


def quiz_questions() -> tuple[Question, ...]:
    """Ten single-choice questions worth 10 points each; option "a" is right."""
    return tuple(
        Question(
            id=f"q{i}",
            type="single_choice",
            points=10,
            correct_options=frozenset({"a"}),
        )
        for i in range(1, 11)
    )


def answers_scoring(points: int) -> dict[str, str]:
    """Answers to ``quiz_questions`` that earn exactly ``points``."""
    correct = points // 10
    return {f"q{i}": ("a" if i <= correct else "b") for i in range(1, 11)}


def seed_exam(
    catalog: InMemoryCourseCatalog | None, course: Course, **overrides
) -> Exam:
    cat = catalog if catalog is not None else runtime.catalog
    config = {
        "course_id": course.id,
        "title": "Final exam",
        "duration_minutes": 30,
        "passing_score": 60,
        "questions": quiz_questions(),
    }
    config.update(overrides)
    return cat.add_exam(Exam.new(**config))  # type: ignore[union-attr]


def principal_for(user: User) -> Principal:
    return Principal(user_id=user.id, roles=frozenset(user.roles))


# ---------------------------------------------------------------------------
# Fresh service graph for service-level tests
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: int = START) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, *, minutes: int = 0, seconds: int = 0) -> None:
        self.now += minutes * 60 + seconds


@dataclass
class Services:
    clock: FakeClock
    catalog: InMemoryCourseCatalog
    enrollment_repo: InMemoryEnrollmentRepo
    attempt_repo: InMemoryAttemptRepo
    users: InMemoryUserRepo
    payments: InMemoryPaymentLookup
    cache: InMemoryCacheService
    queue: InMemoryTaskQueue
    certificates: CertificateService
    progress: ProgressService
    enrollments: EnrollmentService
    exams: ExamAttemptService


def build_services(
    *,
    renderer: CertificateRenderer | None = None,
    auto_issue: bool = True,
) -> Services:
    clock = FakeClock()
    catalog = InMemoryCourseCatalog()
    attempt_repo = InMemoryAttemptRepo()
    enrollment_repo = InMemoryEnrollmentRepo(attempts=attempt_repo, catalog=catalog)
    users = InMemoryUserRepo()
    payments = InMemoryPaymentLookup()
    cache = InMemoryCacheService()
    queue = InMemoryTaskQueue()
    notifications = NotificationDispatcher(queue)

    certificates = CertificateService(
        enrollments=enrollment_repo,
        catalog=catalog,
        users=users,
        renderer=renderer or LocalCertificateRenderer("https://certs.example.com"),
        cache=cache,
        notifications=notifications,
        clock=clock,
    )
    progress = ProgressService(
        enrollments=enrollment_repo,
        catalog=catalog,
        notifications=notifications,
        certificates=certificates if auto_issue else None,
        clock=clock,
    )
    enrollments = EnrollmentService(
        enrollments=enrollment_repo,
        catalog=catalog,
        users=users,
        payments=payments,
        certificates=certificates,
        notifications=notifications,
        clock=clock,
    )
    exams = ExamAttemptService(
        attempts=attempt_repo,
        enrollments=enrollment_repo,
        catalog=catalog,
        progress=progress,
        notifications=notifications,
        clock=clock,
    )
    return Services(
        clock=clock,
        catalog=catalog,
        enrollment_repo=enrollment_repo,
        attempt_repo=attempt_repo,
        users=users,
        payments=payments,
        cache=cache,
        queue=queue,
        certificates=certificates,
        progress=progress,
        enrollments=enrollments,
        exams=exams,
    )


@pytest.fixture
def svc() -> Services:
    return build_services()
