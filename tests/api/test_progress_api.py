"""Tests for progress event ingestion and progress reads."""

from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from progress_engine.api.dependencies import get_engine
from progress_engine.main import app
from progress_engine.models.course import CourseStructure
from progress_engine.repos.achievement_repo import SAMPLE_ACHIEVEMENTS, AchievementCatalog
from progress_engine.repos.document_store import InMemoryDocumentStore
from progress_engine.services.cache import cache_service, progress_key
from progress_engine.services.engine import LearningEngine
from progress_engine.services.notifications import QueueNotificationEmitter
from progress_engine.services.task_queue import task_queue
from tests.conftest import make_settings


def _event(topic_id: str = "variables-video-1", **overrides) -> dict:
    concept_id, kind, _ = topic_id.rsplit("-", 2)
    body = {
        "user_id": "learner-1",
        "course_id": "python-basics",
        "concept_id": concept_id,
        "topic_id": topic_id,
        "type": kind,
        "completed": True,
        "time_spent_seconds": 120,
    }
    body.update(overrides)
    return body


# ---- 202: accepted ----


def test_event_accepted(client: TestClient) -> None:
    resp = client.post("/v1/progress/events", json=_event(event_id="evt-1"))
    assert resp.status_code == 202
    body = resp.json()
    assert body["event_id"] == "evt-1"
    assert body["duplicate"] is False
    assert body["concept_id"] == "variables"
    assert round(body["concept_progress"], 2) == 16.67
    assert body["streak"]["current_streak"] == 1
    assert body["mastery"]["label"] == "Started"


def test_quiz_event_reports_mastery(client: TestClient) -> None:
    for n in (1, 2, 3):
        client.post("/v1/progress/events", json=_event(f"variables-video-{n}"))
    for n in (4, 5):
        client.post("/v1/progress/events", json=_event(f"variables-article-{n}"))
    resp = client.post(
        "/v1/progress/events",
        json=_event("variables-quiz-6", details={"score": 90, "questions_answered": 10}),
    )
    body = resp.json()
    assert body["concept_completed"] is True
    assert body["mastery"] == {
        "score": 96,
        "label": "Mastered",
        "color": "green",
        "completion_ratio": 1.0,
        "average_quiz_score": 90.0,
        "problem_solve_ratio": None,
    }


def test_duplicate_event_returns_202_and_flag(client: TestClient) -> None:
    first = client.post("/v1/progress/events", json=_event(event_id="evt-1"))
    second = client.post("/v1/progress/events", json=_event(event_id="evt-1"))
    assert first.status_code == second.status_code == 202
    assert second.json()["duplicate"] is True
    assert second.json()["overall_progress"] == first.json()["overall_progress"]


# ---- 4xx ----


def test_invalid_type_is_422(client: TestClient) -> None:
    resp = client.post("/v1/progress/events", json=_event(type="podcast"))
    assert resp.status_code == 422
    assert "type must be one of" in resp.json()["detail"]


def test_unknown_topic_is_422(client: TestClient) -> None:
    resp = client.post("/v1/progress/events", json=_event("variables-video-42"))
    assert resp.status_code == 422


def test_naive_timestamp_is_422(client: TestClient) -> None:
    resp = client.post(
        "/v1/progress/events", json=_event(occurred_at="2026-03-02T09:00:00")
    )
    assert resp.status_code == 422
    assert "timezone" in resp.json()["detail"]


def test_event_id_reuse_is_409(client: TestClient) -> None:
    client.post("/v1/progress/events", json=_event(event_id="evt-1"))
    resp = client.post(
        "/v1/progress/events", json=_event("variables-video-2", event_id="evt-1")
    )
    assert resp.status_code == 409


def test_missing_progress_is_404(client: TestClient) -> None:
    resp = client.get("/v1/progress/learner-1/courses/python-basics")
    assert resp.status_code == 404


# ---- 503: transient ----


class _SlowCatalog:
    async def get_structure(self, course_id: str) -> CourseStructure | None:
        await asyncio.sleep(1)
        return None

    async def get_path(self, path_id: str):
        return None

    async def get_mock_test(self, test_id: str):
        return None


def test_structure_timeout_is_503_with_retry_after() -> None:
    engine = LearningEngine(
        store=InMemoryDocumentStore(),
        catalog=_SlowCatalog(),
        achievements=AchievementCatalog(SAMPLE_ACHIEVEMENTS),
        emitter=QueueNotificationEmitter(task_queue),
        cache=cache_service,
        settings=make_settings(structure_lookup_timeout_seconds=0.01),
    )
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        resp = TestClient(app).post("/v1/progress/events", json=_event())
    finally:
        app.dependency_overrides.clear()
    assert resp.status_code == 503
    assert resp.headers["retry-after"] == "1"


# ---- reads ----


def test_course_progress_read(client: TestClient) -> None:
    client.post("/v1/progress/events", json=_event())
    resp = client.get("/v1/progress/learner-1/courses/python-basics")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "in_progress"
    assert [c["concept_id"] for c in body["concepts_progress"]] == ["variables"]
    topics = body["concepts_progress"][0]["topics_progress"]
    assert topics[0]["topic_id"] == "variables-video-1"
    assert topics[0]["completed"] is True


def test_course_progress_served_from_cache_until_next_event(client: TestClient) -> None:
    client.post("/v1/progress/events", json=_event())
    client.get("/v1/progress/learner-1/courses/python-basics")
    key = progress_key("learner-1", "python-basics")
    assert asyncio.run(cache_service.get(key)) is not None

    client.post("/v1/progress/events", json=_event("variables-video-2"))
    assert asyncio.run(cache_service.get(key)) is None
    resp = client.get("/v1/progress/learner-1/courses/python-basics")
    assert resp.json()["concepts_progress"][0]["progress"] > 30


def test_mastery_endpoint(client: TestClient) -> None:
    client.post("/v1/progress/events", json=_event())
    resp = client.get(
        "/v1/progress/learner-1/courses/python-basics/concepts/variables/mastery"
    )
    assert resp.status_code == 200
    # completion only: 1/6 topics → 17
    assert resp.json()["score"] == 17


def test_mastery_unknown_concept_is_404(client: TestClient) -> None:
    resp = client.get(
        "/v1/progress/learner-1/courses/python-basics/concepts/recursion/mastery"
    )
    assert resp.status_code == 404


def test_path_progress_after_enroll(client: TestClient) -> None:
    enroll = client.post("/v1/paths/python-developer/enroll", json={"user_id": "learner-1"})
    assert enroll.status_code == 201
    client.post("/v1/progress/events", json=_event())
    resp = client.get("/v1/progress/learner-1/paths/python-developer")
    assert resp.status_code == 200
    body = resp.json()
    assert body["current_step"] == "step-1"
    assert body["step_progress"]["step-2"] == 0.0
    assert body["step_status"] == {"step-1": "in_progress", "step-2": "locked"}
    assert body["status"] == "active"


def test_course_enroll_is_idempotent(client: TestClient) -> None:
    first = client.post("/v1/courses/python-basics/enroll", json={"user_id": "learner-1"})
    second = client.post("/v1/courses/python-basics/enroll", json={"user_id": "learner-1"})
    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["status"] == "not_started"


def test_enroll_unknown_course_is_404(client: TestClient) -> None:
    resp = client.post("/v1/courses/cooking-101/enroll", json={"user_id": "learner-1"})
    assert resp.status_code == 404
