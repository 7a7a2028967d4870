"""Notification emitter.

Notifications are fire-and-forget: they go out after every document of
the apply cycle is saved, and a failure to hand one to the queue is
logged and counted but never undoes the progress that triggered it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol

from progress_engine.core.metrics import NOTIFICATIONS_FAILED
from progress_engine.models.achievement import UnlockedAchievement
from progress_engine.models.notification import Notification
from progress_engine.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

NOTIFICATIONS_QUEUE = "notifications"


class NotificationEmitter(Protocol):
    async def notify(self, user_id: str, notification: Notification) -> None: ...


class QueueNotificationEmitter:
    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    async def notify(self, user_id: str, notification: Notification) -> None:
        await self._queue.enqueue(NOTIFICATIONS_QUEUE, notification.to_payload())


async def deliver(emitter: NotificationEmitter, notifications: Iterable[Notification]) -> int:
    """Send each notification, returning how many could not be sent."""
    failed = 0
    for n in notifications:
        try:
            await emitter.notify(n.user_id, n)
        except Exception:
            failed += 1
            NOTIFICATIONS_FAILED.inc()
            logger.exception("Failed to emit %s notification", n.type, extra={"user_id": n.user_id})
    return failed


def achievement_unlocked(unlock: UnlockedAchievement) -> Notification:
    if unlock.step is not None:
        message = f"You reached step {unlock.step}: {unlock.title}"
    else:
        message = f"You unlocked {unlock.title}"
    data = {"achievement_id": unlock.achievement_id}
    if unlock.step is not None:
        data["step"] = str(unlock.step)
    if unlock.reward.experience_points:
        data["experience_points"] = str(unlock.reward.experience_points)
    return Notification(
        user_id=unlock.user_id,
        type="achievement",
        title="Achievement unlocked",
        message=message,
        data=data,
        priority="high",
    )


def concept_completed(user_id: str, course_id: str, concept_id: str, title: str) -> Notification:
    return Notification(
        user_id=user_id,
        type="course_update",
        title="Concept completed",
        message=f"You completed {title or concept_id}",
        data={"course_id": course_id, "concept_id": concept_id},
    )


def course_completed(user_id: str, course_id: str, title: str) -> Notification:
    return Notification(
        user_id=user_id,
        type="course_update",
        title="Course completed",
        message=f"You completed {title or course_id}",
        data={"course_id": course_id},
        priority="high",
    )


def path_completed(user_id: str, path_id: str, title: str) -> Notification:
    return Notification(
        user_id=user_id,
        type="course_update",
        title="Learning path completed",
        message=f"You finished the {title or path_id} path",
        data={"path_id": path_id},
        priority="high",
    )
