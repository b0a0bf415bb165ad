"""Background worker process.

RUN:  python -m courseflow.worker

Same image as the API, different command:
  api:    uvicorn courseflow.main:app --host 0.0.0.0 --port 8000
  worker: python -m courseflow.worker

The loop does two jobs:
  1. Drains the registered task queues (round-robin, one task at a time)
     and dispatches each task to its handler.
  2. Every EXPIRE_SWEEP_SECONDS, moves in-progress exam attempts whose
     deadline has passed to ``expired`` and scores them.

Delivery is at-most-once; a failed task is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from courseflow import runtime
from courseflow.core.config import SETTINGS
from courseflow.core.logging import setup_logging
from courseflow.core.metrics import NOTIFICATIONS
from courseflow.middleware.request_context import install_request_context_filter
from courseflow.services.notifications import NOTIFICATION_QUEUE
from courseflow.services.task_queue import InMemoryTaskQueue, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("courseflow.worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(NOTIFICATION_QUEUE)
async def handle_notification(payload: dict) -> None:
    """Deliver a lifecycle notification.

    Delivery is a log line for now; an email or push transport plugs in
    here without touching the producers.
    """
    logger.info(
        "Delivering %s to user=%s data=%s",
        payload.get("type"),
        payload.get("user_id"),
        payload.get("data", {}),
    )
    NOTIFICATIONS.labels(result="delivered").inc()


# ---------------------------------------------------------------------------
# Units of work
# ---------------------------------------------------------------------------


async def process_one(queue_name: str, timeout: int = 1) -> bool:
    """Dequeue and handle at most one task.  Returns True if a task ran."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def sweep_expired_attempts() -> int:
    """Expire overdue exam attempts; errors are logged, never raised."""
    try:
        expired = await runtime.exam_attempt_service.expire_overdue()
    except Exception:
        logger.exception("Attempt expiry sweep failed")
        return 0
    if expired:
        logger.info("Expiry sweep closed %d attempt(s)", expired)
    return expired


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def run_worker() -> None:
    queues = list(HANDLERS.keys())
    interval = SETTINGS.expire_sweep_seconds
    logger.info(
        "Worker started, queues=%s sweep_interval=%ds", queues, interval
    )

    next_sweep = time.monotonic()
    while True:
        if time.monotonic() >= next_sweep:
            await sweep_expired_attempts()
            next_sweep = time.monotonic() + interval

        ran = False
        for queue_name in queues:
            ran = await process_one(queue_name) or ran
        if not ran and isinstance(task_queue, InMemoryTaskQueue):
            # The in-memory dequeue never blocks.
            await asyncio.sleep(1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    install_request_context_filter()
    asyncio.run(run_worker())
