"""Fire-and-forget notification dispatch.

Events are pushed onto the ``notifications`` task queue and delivered by
the worker.  Dispatch is best-effort and at-most-once: a failure here is
logged and counted, and never undoes the state change that produced the
event.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from courseflow.core.metrics import NOTIFICATIONS
from courseflow.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

NOTIFICATION_QUEUE = "notifications"


@dataclass(frozen=True, slots=True)
class Notification:
    type: str  # enrollment_created|course_completed|certificate_issued|exam_graded
    user_id: UUID
    data: dict = field(default_factory=dict)


class NotificationDispatcher:
    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    async def send(self, event: Notification) -> None:
        payload = {
            "type": event.type,
            "user_id": str(event.user_id),
            "data": {k: str(v) if isinstance(v, UUID) else v for k, v in event.data.items()},
        }
        try:
            await self._queue.enqueue(NOTIFICATION_QUEUE, payload)
        except Exception:
            NOTIFICATIONS.labels(result="dropped").inc()
            logger.exception(
                "Notification %s for user=%s dropped", event.type, event.user_id
            )
            return
        NOTIFICATIONS.labels(result="queued").inc()
        logger.debug("Notification %s queued for user=%s", event.type, event.user_id)
