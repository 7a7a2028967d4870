"""End-to-end tests for the LearningEngine apply cycle.

These run the real pipeline against the in-memory document store:
ingest → progress → history → streak → rollup → paths → achievements →
cache → notifications.
"""

from __future__ import annotations

import asyncio
import datetime

import pytest
from prometheus_client import REGISTRY

from progress_engine.models.assessment import QuestionResponse, TestCaseResult
from progress_engine.models.mastery import MasteryLabel
from progress_engine.models.notification import Notification
from progress_engine.repos.achievement_repo import SAMPLE_ACHIEVEMENTS, AchievementCatalog
from progress_engine.repos.catalog_repo import InMemoryCourseCatalog
from progress_engine.repos.document_store import InMemoryDocumentStore
from progress_engine.services.cache import cache_service, progress_key
from progress_engine.services.engine import LearningEngine
from progress_engine.services.errors import (
    CollaboratorTimeoutError,
    ConcurrencyError,
    IdempotencyConflictError,
    NotFoundError,
    ValidationError,
    VersionConflict,
)
from progress_engine.services.notifications import NOTIFICATIONS_QUEUE, QueueNotificationEmitter
from progress_engine.services.task_queue import task_queue
from tests.conftest import Clock, make_event, make_settings

VARIABLES = [
    "variables-video-1",
    "variables-video-2",
    "variables-video-3",
    "variables-article-4",
    "variables-article-5",
]
PYTHON_BASICS = VARIABLES + [
    "variables-quiz-6",
    "loops-video-1",
    "loops-coding-2",
    "loops-coding-3",
    "loops-quiz-4",
    "functions-article-1",
    "functions-coding-2",
]
ARRAYS = ["arrays-video-1", "arrays-article-2", "arrays-coding-3", "arrays-coding-4"]


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def _make_engine(
    catalog: InMemoryCourseCatalog,
    clock: Clock,
    *,
    store=None,
    emitter=None,
    settings=None,
) -> LearningEngine:
    return LearningEngine(
        store=store or InMemoryDocumentStore(),
        catalog=catalog,
        achievements=AchievementCatalog(SAMPLE_ACHIEVEMENTS),
        emitter=emitter or QueueNotificationEmitter(task_queue),
        cache=cache_service,
        settings=settings or make_settings(),
        clock=clock,
    )


async def _ingest_all(engine: LearningEngine, topics: list[str], **kwargs):
    result = None
    for topic_id in topics:
        course_id = "data-structures" if topic_id.startswith("arrays") else "python-basics"
        result = await engine.ingest(make_event(topic_id, course_id=course_id, **kwargs))
    return result


async def _drain(queue: str) -> list[dict]:
    payloads = []
    while (task := await task_queue.dequeue(queue)) is not None:
        payloads.append(task.payload)
    return payloads


# ---- mastery through the full cycle ----


@pytest.mark.parametrize(
    "quiz_score,expected_score,expected_label",
    [(90, 96, MasteryLabel.MASTERED), (50, 79, MasteryLabel.COMPLETED)],
)
def test_concept_mastery_after_completion(
    engine: LearningEngine, quiz_score: int, expected_score: int, expected_label: MasteryLabel
) -> None:
    async def scenario():
        await _ingest_all(engine, VARIABLES)
        return await engine.ingest(
            make_event("variables-quiz-6", details={"score": quiz_score})
        )

    result = asyncio.run(scenario())
    assert result.concept_completed is True
    assert result.progress.concept("variables").progress == 100.0
    assert result.mastery.score == expected_score
    assert result.mastery.label == expected_label


def test_mastery_read_matches_ingest(engine: LearningEngine) -> None:
    async def scenario():
        await _ingest_all(engine, VARIABLES)
        await engine.ingest(make_event("variables-quiz-6", details={"score": 90}))
        return await engine.concept_mastery("learner-1", "python-basics", "variables")

    assert asyncio.run(scenario()).score == 96


def test_mastery_unknown_concept(engine: LearningEngine) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(engine.concept_mastery("learner-1", "python-basics", "recursion"))


# ---- idempotency ----


def test_duplicate_event_id_changes_nothing(engine: LearningEngine) -> None:
    async def scenario():
        first = await engine.ingest(make_event("variables-video-1", event_id="evt-1"))
        second = await engine.ingest(make_event("variables-video-1", event_id="evt-1"))
        summary = await engine.analytics("learner-1", "week")
        return first, second, summary

    first, second, summary = asyncio.run(scenario())
    assert first.duplicate is False
    assert second.duplicate is True
    assert second.progress.concept("variables").time_spent_seconds == 60
    assert summary.time_spent_seconds == 60
    assert summary.videos_watched == 1


def test_event_id_reuse_with_other_payload_conflicts(engine: LearningEngine) -> None:
    async def scenario():
        await engine.ingest(make_event("variables-video-1", event_id="evt-1"))
        await engine.ingest(make_event("variables-video-2", event_id="evt-1"))

    with pytest.raises(IdempotencyConflictError):
        asyncio.run(scenario())


def test_rejected_event_writes_nothing(engine: LearningEngine) -> None:
    async def scenario():
        with pytest.raises(ValidationError):
            await engine.ingest(make_event("variables-video-1", time_spent_seconds=-1))
        return await engine.progress.load("learner-1", "python-basics")

    assert asyncio.run(scenario()) is None


def test_event_id_reused_for_another_course_conflicts(engine: LearningEngine) -> None:
    async def scenario():
        await engine.ingest(make_event("variables-video-1", event_id="evt-1"))
        before = await engine.analytics("learner-1", "week")
        with pytest.raises(IdempotencyConflictError):
            await engine.ingest(
                make_event("arrays-video-1", course_id="data-structures", event_id="evt-1")
            )
        after = await engine.analytics("learner-1", "week")
        arrays = await engine.progress.load("learner-1", "data-structures")
        replay = await engine.ingest(make_event("variables-video-1", event_id="evt-1"))
        return before, after, arrays, replay

    before, after, arrays, replay = asyncio.run(scenario())
    assert arrays is None
    assert after == before
    assert after.videos_watched == 1
    assert replay.duplicate is True


def test_event_ids_expire_after_retention(engine: LearningEngine, clock: Clock) -> None:
    async def scenario():
        await engine.ingest(make_event("variables-video-1", event_id="old"))
        clock.advance(days=31)
        await engine.ingest(make_event("variables-video-2", event_id="new"))
        ledger = await engine.ledger.load("learner-1")
        progress = await engine.progress.load("learner-1", "python-basics")
        return ledger.value, progress.value

    ledger, progress = asyncio.run(scenario())
    assert set(ledger.entries) == {"new"}
    assert set(progress.applied_events) == {"new"}


class _StallingCatalog:
    """Sample catalog whose structure lookups hang for the ``stalled`` courses."""

    def __init__(self, inner: InMemoryCourseCatalog) -> None:
        self._inner = inner
        self.stalled: set[str] = set()

    async def get_structure(self, course_id: str):
        if course_id in self.stalled:
            await asyncio.sleep(5)
        return await self._inner.get_structure(course_id)

    async def get_path(self, path_id: str):
        return await self._inner.get_path(path_id)

    async def get_mock_test(self, test_id: str):
        return await self._inner.get_mock_test(test_id)


def test_path_lookup_timeout_writes_nothing(
    catalog: InMemoryCourseCatalog, clock: Clock
) -> None:
    stalling = _StallingCatalog(catalog)
    engine = _make_engine(
        stalling, clock, settings=make_settings(structure_lookup_timeout_seconds=0.05)
    )

    async def scenario():
        await engine.enroll_path("learner-1", "python-developer")
        await engine.ingest(make_event("variables-video-1", event_id="evt-1"))
        before = await engine.course_progress("learner-1", "python-basics")
        history = await engine.history.get("learner-1")
        streak = await engine.streaks.get("learner-1")

        stalling.stalled.add("data-structures")
        clock.advance(days=1)
        with pytest.raises(CollaboratorTimeoutError):
            await engine.ingest(make_event("variables-video-2", event_id="evt-2"))
        stored = await engine.progress.load("learner-1", "python-basics")
        cached = await engine.course_progress("learner-1", "python-basics")
        state = (
            await engine.history.get("learner-1"),
            await engine.streaks.get("learner-1"),
            await engine.ledger.load("learner-1"),
        )

        stalling.stalled.clear()
        retried = await engine.ingest(make_event("variables-video-2", event_id="evt-2"))
        return before, history, streak, stored.value, cached, state, retried

    before, history, streak, stored, cached, state, retried = asyncio.run(scenario())
    history_after, streak_after, ledger = state
    assert stored == before
    assert cached == before
    assert history_after == history
    assert streak_after == streak
    assert set(ledger.value.entries) == {"evt-1"}
    assert retried.duplicate is False
    assert retried.progress.concept("variables").time_spent_seconds == 120
    assert retried.streak.current_streak == 2


# ---- notifications ----


class _FailingEmitter:
    async def notify(self, user_id: str, notification: Notification) -> None:
        raise ConnectionError("queue unavailable")


def test_notification_failure_keeps_progress(
    catalog: InMemoryCourseCatalog, clock: Clock
) -> None:
    engine = _make_engine(catalog, clock, emitter=_FailingEmitter())
    before = _get_sample("notifications_failed_total")

    async def scenario():
        result = await _ingest_all(engine, VARIABLES + ["variables-quiz-6"])
        stored = await engine.progress.load("learner-1", "python-basics")
        return result, stored

    result, stored = asyncio.run(scenario())
    assert result.concept_completed is True
    assert stored.value.concept("variables").completed is True
    assert _get_sample("notifications_failed_total") - before >= 1


def test_concept_completion_notifies(engine: LearningEngine) -> None:
    async def scenario():
        await _ingest_all(engine, VARIABLES + ["variables-quiz-6"])
        return await _drain(NOTIFICATIONS_QUEUE)

    payloads = asyncio.run(scenario())
    assert any(
        p["title"] == "Concept completed" and p["data"]["concept_id"] == "variables"
        for p in payloads
    )


# ---- concurrency ----


class _ConflictingStore(InMemoryDocumentStore):
    """Loses the compare-and-swap on course progress ``conflicts`` times."""

    def __init__(self, conflicts: int) -> None:
        super().__init__()
        self.conflicts = conflicts

    async def put(self, kind: str, key: str, body: dict, expected_version: int) -> int:
        if kind == "course_progress" and self.conflicts > 0:
            self.conflicts -= 1
            raise VersionConflict(kind, key, expected_version, expected_version + 1)
        return await super().put(kind, key, body, expected_version)


def test_version_conflict_is_retried(catalog: InMemoryCourseCatalog, clock: Clock) -> None:
    store = _ConflictingStore(conflicts=2)
    engine = _make_engine(catalog, clock, store=store)
    labels = {"document": "course_progress"}
    before = _get_sample("progress_version_conflicts_total", labels)

    result = asyncio.run(engine.ingest(make_event("variables-video-1")))

    assert result.progress.concept("variables").completed_topics == 1
    assert _get_sample("progress_version_conflicts_total", labels) - before == 2


def test_exhausted_retries_raise_concurrency_error(
    catalog: InMemoryCourseCatalog, clock: Clock
) -> None:
    store = _ConflictingStore(conflicts=100)
    engine = _make_engine(catalog, clock, store=store)

    async def scenario():
        with pytest.raises(ConcurrencyError):
            await engine.ingest(make_event("variables-video-1"))
        return await engine.progress.load("learner-1", "python-basics")

    assert asyncio.run(scenario()) is None
    # 1 try + 3 retries
    assert store.conflicts == 96


def test_concurrent_events_for_same_course_all_apply(engine: LearningEngine) -> None:
    async def scenario():
        await asyncio.gather(
            *(engine.ingest(make_event(t, time_spent_seconds=10)) for t in VARIABLES)
        )
        return await engine.progress.load("learner-1", "python-basics")

    stored = asyncio.run(scenario()).value
    assert stored.concept("variables").completed_topics == 5
    assert stored.concept("variables").time_spent_seconds == 50


# ---- course, path, achievements ----


def test_course_completion_unlocks_first_course(engine: LearningEngine) -> None:
    result = asyncio.run(_ingest_all(engine, PYTHON_BASICS))
    assert result.course_completed is True
    assert result.progress.status == "completed"
    assert "first-course-completed" in [u.achievement_id for u in result.unlocked]


def test_path_completion(engine: LearningEngine) -> None:
    async def scenario():
        _, created = await engine.enroll_path("learner-1", "python-developer")
        await _ingest_all(engine, PYTHON_BASICS)
        midway = await engine.path_progress("learner-1", "python-developer")
        last = await _ingest_all(engine, ARRAYS)
        done = await engine.path_progress("learner-1", "python-developer")
        return created, midway, last, done, await _drain(NOTIFICATIONS_QUEUE)

    created, midway, last, done, payloads = asyncio.run(scenario())
    assert created is True
    assert midway.current_step == "step-2"
    assert midway.completed_steps == frozenset({"step-1"})
    assert last.completed_paths == ("python-developer",)
    assert done.status == "completed"
    assert done.overall_progress == 100.0
    assert any(p["data"].get("path_id") == "python-developer" for p in payloads)


def test_path_enroll_is_idempotent(engine: LearningEngine) -> None:
    async def scenario():
        first = await engine.enroll_path("learner-1", "python-developer")
        second = await engine.enroll_path("learner-1", "python-developer")
        return first, second

    (_, created_first), (_, created_second) = asyncio.run(scenario())
    assert (created_first, created_second) == (True, False)


def test_unknown_path_is_not_found(engine: LearningEngine) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(engine.enroll_path("learner-1", "rust-developer"))


def test_week_of_activity_unlocks_week_warrior(engine: LearningEngine, clock: Clock) -> None:
    async def scenario():
        results = []
        for _ in range(7):
            results.append(
                await engine.ingest(make_event("variables-video-1", completed=False))
            )
            clock.advance(days=1)
        return results

    results = asyncio.run(scenario())
    assert [r.streak.current_streak for r in results] == [1, 2, 3, 4, 5, 6, 7]
    assert [u.achievement_id for u in results[-1].unlocked] == ["week-warrior"]
    assert all(not r.unlocked for r in results[:-1])


def test_perfect_quiz_unlocks_quiz_ace(engine: LearningEngine) -> None:
    result = asyncio.run(engine.ingest(make_event("variables-quiz-6", details={"score": 100})))
    assert "quiz-ace" in [u.achievement_id for u in result.unlocked]


def test_low_quiz_after_perfect_mock_test_is_not_an_ace(engine: LearningEngine) -> None:
    perfect = [
        QuestionResponse("q1", selected_answers=frozenset({2})),
        QuestionResponse(
            "q2", test_case_results=(TestCaseResult("t1", True), TestCaseResult("t2", True))
        ),
    ]

    async def scenario():
        await engine.submit_attempt("learner-1", "python-mock-1", perfect)
        result = await engine.ingest(make_event("variables-quiz-6", details={"score": 10}))
        listed = {
            definition.achievement_id: earned
            for definition, earned in await engine.user_achievements("learner-1")
        }
        return result, listed["quiz-ace"]

    result, quiz_ace = asyncio.run(scenario())
    assert "quiz-ace" not in [u.achievement_id for u in result.unlocked]
    assert quiz_ace is None or not quiz_ace.completed


def test_daily_time_unlocks_power_hour(engine: LearningEngine) -> None:
    async def scenario():
        first = await engine.ingest(make_event("loops-video-1", time_spent_seconds=1800))
        second = await engine.ingest(make_event("loops-video-1", time_spent_seconds=1800))
        return first, second

    first, second = asyncio.run(scenario())
    assert "daily-hour" not in [u.achievement_id for u in first.unlocked]
    assert "daily-hour" in [u.achievement_id for u in second.unlocked]


# ---- assessments ----


def test_submit_attempt_records_best_score(engine: LearningEngine) -> None:
    perfect = [
        QuestionResponse("q1", selected_answers=frozenset({2})),
        QuestionResponse(
            "q2", test_case_results=(TestCaseResult("t1", True), TestCaseResult("t2", True))
        ),
    ]

    async def scenario():
        low = await engine.submit_attempt("learner-1", "python-mock-1", perfect[:1])
        high = await engine.submit_attempt("learner-1", "python-mock-1", perfect)
        history = await engine.history.get("learner-1")
        return low, high, history

    low, high, history = asyncio.run(scenario())
    assert low.attempt.total_score == 25.0
    assert low.attempt.passed is False
    assert high.attempt.attempt_number == 2
    assert high.attempt.total_score == 100.0
    assert history.mock_test_best == {"python-mock-1": 100.0}
    # quiz-ace only counts quiz activities
    assert high.unlocked == ()


# ---- reads ----


def test_course_progress_read_through_cache(engine: LearningEngine) -> None:
    async def scenario():
        await engine.ingest(make_event("variables-video-1"))
        fresh = await engine.course_progress("learner-1", "python-basics")
        cached = await cache_service.get(progress_key("learner-1", "python-basics"))
        again = await engine.course_progress("learner-1", "python-basics")
        await engine.ingest(make_event("variables-video-2"))
        after_write = await cache_service.get(progress_key("learner-1", "python-basics"))
        return fresh, cached, again, after_write

    fresh, cached, again, after_write = asyncio.run(scenario())
    assert cached is not None
    assert again == fresh
    assert after_write is None


def test_course_progress_without_record_is_not_found(engine: LearningEngine) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(engine.course_progress("nobody", "python-basics"))


def test_enroll_is_idempotent(engine: LearningEngine) -> None:
    async def scenario():
        return (
            await engine.enroll("learner-1", "python-basics"),
            await engine.enroll("learner-1", "python-basics"),
        )

    (progress, created), (_, created_again) = asyncio.run(scenario())
    assert created is True
    assert created_again is False
    assert progress.status == "not_started"


def test_profile_timezone_sets_streak_day(engine: LearningEngine, clock: Clock) -> None:
    # 23:00 UTC on Monday is already Tuesday in Tokyo
    clock.now = datetime.datetime(2026, 3, 2, 23, 0, tzinfo=datetime.UTC)

    async def scenario():
        profile = await engine.set_timezone("learner-1", "Asia/Tokyo")
        result = await engine.ingest(make_event("variables-video-1"))
        return profile, result, await engine.profiles.get_timezone("learner-1")

    profile, result, stored = asyncio.run(scenario())
    assert profile.timezone == "Asia/Tokyo"
    assert stored == "Asia/Tokyo"
    assert result.streak.last_active_date == datetime.date(2026, 3, 3)


def test_unknown_timezone_is_rejected(engine: LearningEngine) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(engine.set_timezone("learner-1", "Mars/Olympus"))
