"""Background task queue for learner notifications.

  Producer  LearningEngine → QueueNotificationEmitter
            pushes onto ``tasks:notifications`` after an apply cycle has
            saved everything, and returns at once.
  Consumer  progress_engine.worker
            pops from the other end and hands the payload to the
            queue's registered handler.

Push at the head, pop at the tail: FIFO.  On Redis the pop is BRPOP,
which blocks server-side until a task arrives, so an idle worker sends
no traffic.

Delivery is at-most-once.  A task popped by a worker that then dies is
lost, which the emitter's fire-and-forget contract already allows.
"""

from __future__ import annotations

import json
import uuid
from collections import deque
from dataclasses import asdict, dataclass
from typing import Protocol, runtime_checkable

from progress_engine.core.metrics import QUEUE_DEPTH
from progress_engine.db.redis import redis_pool


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    queue: str
    payload: dict

    @classmethod
    def new(cls, queue: str, payload: dict) -> Task:
        return cls(id=str(uuid.uuid4()), queue=queue, payload=payload)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> Task:
        return cls(**json.loads(raw))


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """Process-local queue for dev and tests.  ``dequeue`` never blocks."""

    def __init__(self) -> None:
        self._queues: dict[str, deque[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task.new(queue, payload)
        pending = self._queues.setdefault(queue, deque())
        pending.append(task)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        pending = self._queues.get(queue)
        if not pending:
            return None
        task = pending.popleft()
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, ()))

    def clear(self) -> None:
        self._queues.clear()


class RedisTaskQueue:
    """Redis lists, one per queue name, under the ``tasks:`` prefix."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _key(self, queue: str) -> str:
        return f"{self._PREFIX}{queue}"

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task.new(queue, payload)
        depth = await self._redis.lpush(self._key(queue), task.to_json())
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        popped = await self._redis.brpop(self._key(queue), timeout=timeout)
        if popped is None:
            return None
        _, raw = popped
        return Task.from_json(raw)

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(self._key(queue))


task_queue: TaskQueue = (
    RedisTaskQueue(redis_pool) if redis_pool is not None else InMemoryTaskQueue()
)
