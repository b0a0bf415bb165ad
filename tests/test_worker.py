from __future__ import annotations

import asyncio
import uuid

import pytest
from prometheus_client import REGISTRY

from courseflow import runtime, worker
from courseflow.core.clock import utc_now
from courseflow.services.notifications import NOTIFICATION_QUEUE
from courseflow.services.task_queue import task_queue


def _delivered() -> float:
    value = REGISTRY.get_sample_value("notifications_total", {"result": "delivered"})
    return value if value is not None else 0.0


def test_notification_queue_has_a_handler() -> None:
    assert NOTIFICATION_QUEUE in worker.HANDLERS


def test_process_one_delivers_notification() -> None:
    asyncio.run(
        task_queue.enqueue(
            NOTIFICATION_QUEUE,
            {"type": "enrollment_created", "user_id": str(uuid.uuid4()), "data": {}},
        )
    )
    before = _delivered()

    assert asyncio.run(worker.process_one(NOTIFICATION_QUEUE)) is True
    assert _delivered() - before == 1
    assert asyncio.run(worker.process_one(NOTIFICATION_QUEUE)) is False


def test_failing_handler_is_logged_not_raised(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    async def explode(payload: dict) -> None:
        raise RuntimeError("smtp down")

    monkeypatch.setitem(worker.HANDLERS, NOTIFICATION_QUEUE, explode)
    asyncio.run(task_queue.enqueue(NOTIFICATION_QUEUE, {"type": "x"}))

    assert asyncio.run(worker.process_one(NOTIFICATION_QUEUE)) is True
    assert "failed" in caplog.text


def test_sweep_expires_overdue_attempts() -> None:
    now = utc_now()
    attempt = asyncio.run(
        runtime.attempt_repo.create_exclusive(
            exam_id=uuid.uuid4(),
            student_id=uuid.uuid4(),
            course_id=uuid.uuid4(),
            started_at=now - 3600,
            expires_at=now - 1800,
            max_attempts=None,
        )
    )

    assert asyncio.run(worker.sweep_expired_attempts()) == 1
    stored = asyncio.run(runtime.attempt_repo.get(attempt.id))
    assert stored.status == "expired"
    assert stored.score == 0


def test_sweep_failure_is_contained(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    async def broken() -> int:
        raise ConnectionError("database unavailable")

    monkeypatch.setattr(runtime.exam_attempt_service, "expire_overdue", broken)
    assert asyncio.run(worker.sweep_expired_attempts()) == 0
    assert "sweep failed" in caplog.text
