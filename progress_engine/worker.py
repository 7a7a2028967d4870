"""Background worker process.

RUN:  python -m progress_engine.worker

Same image as the API, different command:
  api:    uvicorn progress_engine.main:app --host 0.0.0.0 --port 8000
  worker: python -m progress_engine.worker

The loop polls every registered queue round-robin, pops one task at a
time and dispatches it to the queue's handler.  A failing handler is
logged and the loop moves on; the task is not retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from progress_engine.core.config import SETTINGS
from progress_engine.core.logging import setup_logging
from progress_engine.services.notifications import NOTIFICATIONS_QUEUE
from progress_engine.services.task_queue import task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("progress_engine.worker")


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


@register_handler(NOTIFICATIONS_QUEUE)
async def handle_notification(payload: dict) -> None:
    """Deliver one learner notification.

    Delivery channels (in-app inbox, email, push) sit outside this
    service; the worker records the hand-off.
    """
    if not payload.get("user_id") or not payload.get("type"):
        raise ValueError(f"malformed notification payload: {sorted(payload)}")
    logger.info(
        "Notify user=%s type=%s priority=%s: %s",
        payload["user_id"],
        payload["type"],
        payload.get("priority", "normal"),
        payload.get("message", ""),
        extra={"user_id": payload["user_id"]},
    )


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def process_one(queue_name: str, timeout: int = 1) -> bool:
    """Pop and handle one task.  Returns False when the queue was empty."""
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


async def run_worker() -> None:
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        handled = [await process_one(queue_name) for queue_name in queues]
        if not any(handled):
            # the in-memory queue returns at once when empty
            await asyncio.sleep(1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
