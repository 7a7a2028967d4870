"""Notification queue and worker tests.

Verifies:
1. Completing a concept enqueues a course_update notification
2. The worker drains the queue through the registered handler
3. A malformed payload is logged, not raised
"""

from __future__ import annotations

import asyncio
import logging

import pytest
from fastapi.testclient import TestClient

from progress_engine import worker
from progress_engine.services.notifications import NOTIFICATIONS_QUEUE
from progress_engine.services.task_queue import task_queue

VARIABLES_TOPICS = [
    "variables-video-1",
    "variables-video-2",
    "variables-video-3",
    "variables-article-4",
    "variables-article-5",
    "variables-quiz-6",
]


def _complete_variables(client: TestClient) -> None:
    for topic_id in VARIABLES_TOPICS:
        _, kind, _ = topic_id.rsplit("-", 2)
        resp = client.post(
            "/v1/progress/events",
            json={
                "user_id": "learner-1",
                "course_id": "python-basics",
                "concept_id": "variables",
                "topic_id": topic_id,
                "type": kind,
                "completed": True,
                "time_spent_seconds": 60,
            },
        )
        assert resp.status_code == 202


def test_concept_completion_enqueues_notification(client: TestClient) -> None:
    _complete_variables(client)

    payloads = []
    while (task := asyncio.run(_dequeue(NOTIFICATIONS_QUEUE))) is not None:
        payloads.append(task.payload)

    concept = [p for p in payloads if p["data"].get("concept_id") == "variables"]
    assert len(concept) == 1
    assert concept[0]["type"] == "course_update"
    assert concept[0]["user_id"] == "learner-1"


def test_no_notification_before_concept_completes(client: TestClient) -> None:
    client.post(
        "/v1/progress/events",
        json={
            "user_id": "learner-1",
            "course_id": "python-basics",
            "concept_id": "variables",
            "topic_id": "variables-video-1",
            "type": "video",
            "completed": True,
            "time_spent_seconds": 60,
        },
    )
    assert asyncio.run(_queue_length(NOTIFICATIONS_QUEUE)) == 0


def test_worker_processes_queued_notification(client: TestClient) -> None:
    _complete_variables(client)
    before = asyncio.run(_queue_length(NOTIFICATIONS_QUEUE))
    assert before >= 1

    assert asyncio.run(worker.process_one(NOTIFICATIONS_QUEUE)) is True
    assert asyncio.run(_queue_length(NOTIFICATIONS_QUEUE)) == before - 1


def test_worker_reports_empty_queue() -> None:
    assert asyncio.run(worker.process_one(NOTIFICATIONS_QUEUE)) is False


def test_malformed_payload_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    asyncio.run(task_queue.enqueue(NOTIFICATIONS_QUEUE, {"message": "no recipient"}))

    with caplog.at_level(logging.ERROR, logger="progress_engine.worker"):
        assert asyncio.run(worker.process_one(NOTIFICATIONS_QUEUE)) is True

    [record] = [r for r in caplog.records if r.name == "progress_engine.worker"]
    assert "failed" in record.getMessage()
    assert record.exc_info is not None


async def _dequeue(queue: str):
    return await task_queue.dequeue(queue)


async def _queue_length(queue: str):
    return await task_queue.queue_length(queue)
