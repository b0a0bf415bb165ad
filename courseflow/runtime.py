"""Process-wide service wiring.

Repositories are chosen the same way engine.py and redis.py choose their
clients: PostgreSQL when DATABASE_URL is set, in-memory otherwise.
Routers and the worker import the service singletons from here.
"""

from __future__ import annotations

import logging

from courseflow.core.config import SETTINGS
from courseflow.db.engine import async_session_factory
from courseflow.repos.attempt_repo import AttemptRepo, InMemoryAttemptRepo
from courseflow.repos.course_catalog import CourseCatalog, InMemoryCourseCatalog
from courseflow.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from courseflow.repos.payment_lookup import FormatCheckingPaymentLookup
from courseflow.repos.user_repo import InMemoryUserRepo, UserRepo
from courseflow.services.cache import cache_service
from courseflow.services.certificate_renderer import (
    CertificateRenderer,
    HttpCertificateRenderer,
    LocalCertificateRenderer,
)
from courseflow.services.certificate_service import CertificateService
from courseflow.services.enrollment_service import EnrollmentService
from courseflow.services.exam_attempt_service import ExamAttemptService
from courseflow.services.notifications import NotificationDispatcher
from courseflow.services.progress_service import ProgressService
from courseflow.services.task_queue import task_queue

logger = logging.getLogger(__name__)

# --- Repositories ---

catalog: CourseCatalog
enrollment_repo: EnrollmentRepo
attempt_repo: AttemptRepo
user_repo: UserRepo

if async_session_factory is not None:
    from courseflow.repos.pg_attempt_repo import PgAttemptRepo
    from courseflow.repos.pg_course_catalog import PgCourseCatalog
    from courseflow.repos.pg_enrollment_repo import PgEnrollmentRepo
    from courseflow.repos.pg_user_repo import PgUserRepo

    catalog = PgCourseCatalog(async_session_factory)
    enrollment_repo = PgEnrollmentRepo(async_session_factory)
    attempt_repo = PgAttemptRepo(async_session_factory)
    user_repo = PgUserRepo(async_session_factory)
else:
    memory_catalog = InMemoryCourseCatalog()
    memory_attempts = InMemoryAttemptRepo()
    catalog = memory_catalog
    attempt_repo = memory_attempts
    enrollment_repo = InMemoryEnrollmentRepo(
        attempts=memory_attempts, catalog=memory_catalog
    )
    user_repo = InMemoryUserRepo()

payment_lookup = FormatCheckingPaymentLookup()

# --- Collaborators ---

renderer: CertificateRenderer
if SETTINGS.certificate_renderer_url:
    renderer = HttpCertificateRenderer(SETTINGS.certificate_renderer_url)
else:
    renderer = LocalCertificateRenderer(SETTINGS.certificate_base_url)

notifications = NotificationDispatcher(task_queue)

# --- Services ---

certificate_service = CertificateService(
    enrollments=enrollment_repo,
    catalog=catalog,
    users=user_repo,
    renderer=renderer,
    cache=cache_service,
    notifications=notifications,
)
progress_service = ProgressService(
    enrollments=enrollment_repo,
    catalog=catalog,
    notifications=notifications,
    certificates=certificate_service,
)
enrollment_service = EnrollmentService(
    enrollments=enrollment_repo,
    catalog=catalog,
    users=user_repo,
    payments=payment_lookup,
    certificates=certificate_service,
    notifications=notifications,
)
exam_attempt_service = ExamAttemptService(
    attempts=attempt_repo,
    enrollments=enrollment_repo,
    catalog=catalog,
    progress=progress_service,
    notifications=notifications,
)

logger.debug(
    "Runtime wired: storage=%s renderer=%s",
    "postgres" if async_session_factory is not None else "memory",
    type(renderer).__name__,
)
