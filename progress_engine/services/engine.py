"""LearningEngine: runs one activity event through every projection.

    ingest ──▶ event_id claim ──▶ course progress ──▶ cache invalidation
           ──▶ learning history ──▶ streak ──▶ daily rollup
           ──▶ path progress ──▶ achievements ──▶ notifications

Every course structure the cycle needs (the event's course and the
courses of each enrolled path that includes it) is looked up before the
first write, so a catalog timeout leaves nothing half-applied.

Each arrow that writes a document does its own load → compute → save
under the document's key mutex with compare-and-swap retries
(SerializedWriter).  Every stage is idempotent for a given event, so a
client that retries after a transient failure (ConcurrencyError,
CollaboratorTimeoutError) finishes the stages that did not run without
repeating the ones that did.  A duplicate event_id is replayed through
the same stages for that reason; they all turn it into a no-op.

Notifications go out last.  Their failure is logged and counted and
never rolls anything back.
"""

from __future__ import annotations

import datetime
import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import TypeAdapter

from progress_engine.core.config import SETTINGS, Settings
from progress_engine.core.metrics import APPLY_DURATION, EVENTS_APPLIED
from progress_engine.models.achievement import (
    Achievement,
    CriteriaType,
    Timeframe,
    UnlockedAchievement,
    UserAchievement,
)
from progress_engine.models.activity import ActivityEvent
from progress_engine.models.analytics import PeriodSummary
from progress_engine.models.assessment import MockTestAttempt, MockTestStats, QuestionResponse
from progress_engine.models.course import CourseStructure, LearningPath
from progress_engine.models.history import LearningHistory
from progress_engine.models.ledger import EventLedger
from progress_engine.models.mastery import MasteryScore
from progress_engine.models.profile import UserProfile
from progress_engine.models.progress import CourseProgress, PathProgress, UpdatedProgressSnapshot
from progress_engine.models.streak import StreakState
from progress_engine.repos.achievement_repo import AchievementCatalog, UserAchievementRepo
from progress_engine.repos.activity_repo import DailyActivityRepo
from progress_engine.repos.attempt_repo import AttemptRepo
from progress_engine.repos.catalog_repo import CourseCatalog
from progress_engine.repos.document_store import DocumentStore
from progress_engine.repos.history_repo import LearningHistoryRepo
from progress_engine.repos.ledger_repo import EventLedgerRepo
from progress_engine.repos.profile_repo import ProfileRepo
from progress_engine.repos.progress_repo import PathProgressRepo, ProgressRepo
from progress_engine.repos.streak_repo import StreakRepo
from progress_engine.services import notifications
from progress_engine.services.achievements import (
    AchievementEvaluator,
    StatSnapshot,
    all_time_counters,
)
from progress_engine.services.assessment_scorer import AssessmentService
from progress_engine.services.cache import CacheService, progress_key
from progress_engine.services.concurrency import SerializedWriter
from progress_engine.services.errors import (
    CollaboratorTimeoutError,
    ConcurrencyError,
    IdempotencyConflictError,
    NotFoundError,
    ValidationError,
)
from progress_engine.services.event_ledger import claim
from progress_engine.services.ingest import EventCandidate, EventIngest
from progress_engine.services.learning_history import record_event, record_mock_score
from progress_engine.services.mastery import compute_mastery
from progress_engine.services.notifications import NotificationEmitter
from progress_engine.services.progress_aggregator import apply_event, compute_path_progress
from progress_engine.services.rollups import ActivityFacts, ActivityRollups
from progress_engine.services.streaks import StreakTracker

logger = logging.getLogger(__name__)

_PROGRESS_JSON = TypeAdapter(CourseProgress)

# an enrolled path with the structure of every course it spans
_PathPlan = tuple[LearningPath, dict[str, CourseStructure]]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True, slots=True)
class IngestResult:
    event: ActivityEvent
    progress: CourseProgress
    duplicate: bool
    mastery: MasteryScore
    streak: StreakState
    unlocked: tuple[UnlockedAchievement, ...] = ()
    concept_completed: bool = False
    course_completed: bool = False
    completed_paths: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AttemptResult:
    attempt: MockTestAttempt
    unlocked: tuple[UnlockedAchievement, ...] = field(default_factory=tuple)


class LearningEngine:
    def __init__(
        self,
        *,
        store: DocumentStore,
        catalog: CourseCatalog,
        achievements: AchievementCatalog,
        emitter: NotificationEmitter,
        cache: CacheService,
        settings: Settings = SETTINGS,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._catalog = catalog
        self._emitter = emitter
        self._cache = cache
        self._settings = settings
        self._clock = clock
        self._writer = SerializedWriter(max_retries=settings.max_apply_retries)

        self.progress = ProgressRepo(store)
        self.paths = PathProgressRepo(store)
        self.history = LearningHistoryRepo(store)
        self.ledger = EventLedgerRepo(store)
        self.profiles = ProfileRepo(store)
        self._ingest = EventIngest(
            catalog, timeout_seconds=settings.structure_lookup_timeout_seconds
        )
        self.streaks = StreakTracker(
            StreakRepo(store),
            self.profiles,
            self._writer,
            default_timezone=settings.default_timezone,
        )
        self.rollups = ActivityRollups(
            DailyActivityRepo(store), self._writer, quiz_pass_score=settings.quiz_pass_score
        )
        self.achievements = AchievementEvaluator(
            achievements, UserAchievementRepo(store), self._writer
        )
        self.assessments = AssessmentService(catalog, AttemptRepo(store), self._writer)

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    async def enroll(self, user_id: str, course_id: str) -> tuple[CourseProgress, bool]:
        """Create an empty CourseProgress.  Returns (progress, created)."""
        structure = await self._require_structure(course_id)
        now = self._clock()

        async def attempt() -> tuple[CourseProgress, bool]:
            found = await self.progress.load(user_id, course_id)
            if found is not None:
                return found.value, False
            progress = CourseProgress.new(
                user_id=user_id, course_id=structure.course_id, enrolled_at=now
            )
            await self.progress.save(progress, 0)
            return progress, True

        progress, created = await self._writer.run(
            f"progress:{user_id}:{course_id}", "course_progress", attempt
        )
        if created:
            await self._cache.delete(progress_key(user_id, course_id))
            logger.info("Enrolled", extra={"user_id": user_id, "course_id": course_id})
        return progress, created

    async def enroll_path(self, user_id: str, path_id: str) -> tuple[PathProgress, bool]:
        path = await self._catalog.get_path(path_id)
        if path is None:
            raise NotFoundError(f"learning path {path_id!r} not found")
        structures = {cid: await self._require_structure(cid) for cid in path.course_ids}
        history = await self.history.get(user_id)
        now = self._clock()

        async def attempt() -> tuple[PathProgress, bool]:
            found = await self.paths.load(user_id, path_id)
            if found is not None:
                return found.value, False
            courses = await self._course_progresses(user_id, path.course_ids)
            fresh = PathProgress(user_id=user_id, path_id=path_id, enrolled_at=now)
            computed = compute_path_progress(path, fresh, courses, structures, now, history)
            await self.paths.save(computed, 0)
            return computed, True

        return await self._writer.run(f"path:{user_id}:{path_id}", "path_progress", attempt)

    async def set_timezone(self, user_id: str, timezone: str) -> UserProfile:
        """Store the learner's IANA zone.  Later events use it for streak days."""
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"unknown timezone {timezone!r}") from None
        profile = await self._writer.run(
            f"profile:{user_id}",
            "user_profile",
            lambda: self.profiles.set_timezone(user_id, timezone),
        )
        logger.info("Timezone set to %s", timezone, extra={"user_id": user_id})
        return profile

    # ------------------------------------------------------------------
    # Event application
    # ------------------------------------------------------------------

    async def ingest(self, candidate: EventCandidate) -> IngestResult:
        start = time.perf_counter()
        now = self._clock()
        try:
            event, structure = await self._ingest.resolve(candidate, now=now)
        except ValidationError as exc:
            EVENTS_APPLIED.labels(result="rejected").inc()
            logger.info(
                "Rejected event: %s",
                exc,
                extra={"user_id": candidate.user_id, "course_id": candidate.course_id},
            )
            raise
        except CollaboratorTimeoutError:
            EVENTS_APPLIED.labels(result="failed").inc()
            logger.warning(
                "Structure lookup timed out",
                extra={"user_id": candidate.user_id, "course_id": candidate.course_id},
            )
            raise

        try:
            plans = await self._paths_including(event.user_id, event.course_id)
            result = await self._apply(event, structure, plans, now)
        except CollaboratorTimeoutError:
            EVENTS_APPLIED.labels(result="failed").inc()
            logger.warning("Path structure lookup timed out", extra=self._extra(event))
            raise
        except IdempotencyConflictError:
            EVENTS_APPLIED.labels(result="rejected").inc()
            raise
        except NotFoundError:
            EVENTS_APPLIED.labels(result="failed").inc()
            logger.error(
                "Event references entities missing from the structure",
                extra=self._extra(event),
            )
            raise
        except ConcurrencyError:
            EVENTS_APPLIED.labels(result="failed").inc()
            raise

        EVENTS_APPLIED.labels(result="duplicate" if result.duplicate else "applied").inc()
        APPLY_DURATION.observe(time.perf_counter() - start)
        return result

    async def _apply(
        self,
        event: ActivityEvent,
        structure: CourseStructure,
        plans: list[_PathPlan],
        now: datetime.datetime,
    ) -> IngestResult:
        user_id = event.user_id
        await self._claim_event_id(event, now)
        snapshot = await self._apply_progress(event, structure, now)
        # also on a duplicate: an earlier try may have saved and then failed here
        await self._cache.delete(progress_key(user_id, event.course_id))
        if snapshot.duplicate:
            logger.info("Duplicate event %s replayed", event.event_id, extra=self._extra(event))

        history, problem_newly_solved = await self._record_history(event)
        local_date = await self.streaks.local_date(user_id, event.occurred_at)
        streak = await self.streaks.record_day(user_id, local_date)
        event_key = event.event_id or f"anon:{uuid.uuid4()}"
        await self.rollups.record(
            user_id,
            local_date,
            event_key,
            event,
            ActivityFacts(
                topic_newly_completed=snapshot.topic_newly_completed,
                concept_newly_completed=snapshot.concept_newly_completed,
                course_newly_completed=snapshot.course_newly_completed,
                problem_newly_solved=problem_newly_solved,
                current_streak=streak.current_streak,
            ),
        )
        completed_paths = await self._refresh_paths(user_id, plans, history, now)

        stats = await self._stat_snapshot(
            user_id, history, streak, local_date, facts=self._event_facts(event, structure)
        )
        unlocked = await self.achievements.evaluate(user_id, stats, now)

        concept = structure.concept(event.concept_id)
        outgoing = [notifications.achievement_unlocked(u) for u in unlocked]
        if snapshot.concept_newly_completed:
            outgoing.append(
                notifications.concept_completed(
                    user_id, event.course_id, event.concept_id, concept.title if concept else ""
                )
            )
        if snapshot.course_newly_completed:
            outgoing.append(notifications.course_completed(user_id, event.course_id, structure.title))
        for path_id, title in completed_paths:
            outgoing.append(notifications.path_completed(user_id, path_id, title))
        await notifications.deliver(self._emitter, outgoing)

        concept_history = history.concept(event.concept_id)
        mastery = compute_mastery(
            snapshot.progress.concept(event.concept_id),
            concept_history.latest_quiz_scores(),
            concept_history.problem_stats(),
        )
        if not snapshot.duplicate:
            logger.info(
                "Applied %s on %s/%s: concept=%.1f%% course=%.1f%% mastery=%d",
                event.type.value,
                event.concept_id,
                event.topic_id,
                snapshot.progress.concept(event.concept_id).progress,
                snapshot.progress.overall_progress,
                mastery.score,
                extra=self._extra(event),
            )
        return IngestResult(
            event=event,
            progress=snapshot.progress,
            duplicate=snapshot.duplicate,
            mastery=mastery,
            streak=streak,
            unlocked=tuple(unlocked),
            concept_completed=snapshot.concept_newly_completed,
            course_completed=snapshot.course_newly_completed,
            completed_paths=tuple(pid for pid, _ in completed_paths),
        )

    def _retain_since(self, now: datetime.datetime) -> datetime.datetime:
        return now - datetime.timedelta(days=self._settings.event_id_retention_days)

    async def _claim_event_id(self, event: ActivityEvent, now: datetime.datetime) -> None:
        """Reserve the event_id for this payload before any projection changes.

        Raises IdempotencyConflictError when the learner already used the
        id for a different event, in this course or any other.
        """
        if event.event_id is None:
            return
        user_id = event.user_id

        async def attempt() -> None:
            found = await self.ledger.load(user_id)
            ledger = found.value if found else EventLedger(user_id=user_id)
            updated = claim(ledger, event, now, self._retain_since(now))
            if updated is not ledger:
                await self.ledger.save(updated, found.version if found else 0)

        await self._writer.run(f"ledger:{user_id}", "event_ledger", attempt)

    async def _apply_progress(
        self, event: ActivityEvent, structure: CourseStructure, now: datetime.datetime
    ) -> UpdatedProgressSnapshot:
        retain_since = self._retain_since(now)

        async def attempt() -> UpdatedProgressSnapshot:
            found = await self.progress.load(event.user_id, event.course_id)
            snapshot = apply_event(
                found.value if found else None, structure, event, now, retain_since=retain_since
            )
            if not snapshot.duplicate:
                await self.progress.save(snapshot.progress, found.version if found else 0)
            return snapshot

        return await self._writer.run(
            f"progress:{event.user_id}:{event.course_id}", "course_progress", attempt
        )

    async def _record_history(self, event: ActivityEvent) -> tuple[LearningHistory, bool]:
        async def attempt() -> tuple[LearningHistory, bool]:
            found = await self.history.load(event.user_id)
            history = found.value if found else LearningHistory(user_id=event.user_id)
            updated, newly_solved = record_event(history, event)
            if updated is not history:
                await self.history.save(updated, found.version if found else 0)
            return updated, newly_solved

        return await self._writer.run(f"history:{event.user_id}", "learning_history", attempt)

    async def _paths_including(self, user_id: str, course_id: str) -> list[_PathPlan]:
        """Enrolled paths that include the course, with their structures resolved."""
        plans: list[_PathPlan] = []
        for enrolled in await self.paths.list_for_user(user_id):
            path = await self._catalog.get_path(enrolled.path_id)
            if path is None or course_id not in path.course_ids:
                continue
            structures = {cid: await self._require_structure(cid) for cid in path.course_ids}
            plans.append((path, structures))
        return plans

    async def _refresh_paths(
        self,
        user_id: str,
        plans: list[_PathPlan],
        history: LearningHistory,
        now: datetime.datetime,
    ) -> list[tuple[str, str]]:
        """Recompute each planned path.

        Returns (path_id, title) for each path this call completed.
        """
        completed: list[tuple[str, str]] = []
        for path, structures in plans:

            async def attempt(path=path, structures=structures) -> bool:
                found = await self.paths.load(user_id, path.path_id)
                if found is None:
                    return False
                courses = await self._course_progresses(user_id, path.course_ids)
                updated = compute_path_progress(
                    path, found.value, courses, structures, now, history
                )
                await self.paths.save(updated, found.version)
                return updated.status == "completed" and found.value.status != "completed"

            if await self._writer.run(f"path:{user_id}:{path.path_id}", "path_progress", attempt):
                completed.append((path.path_id, path.title))
        return completed

    # ------------------------------------------------------------------
    # Achievement inputs
    # ------------------------------------------------------------------

    @staticmethod
    def _event_facts(event: ActivityEvent, structure: CourseStructure) -> dict[str, object]:
        facts: dict[str, object] = {
            "course.id": event.course_id,
            "course.category": structure.category,
            "concept.id": event.concept_id,
            "activity.type": event.type.value,
            "activity.completed": event.completed,
        }
        if event.quiz_score is not None:
            facts["quiz.score"] = event.quiz_score
        return facts

    async def _stat_snapshot(
        self,
        user_id: str,
        history: LearningHistory,
        streak: StreakState,
        today: datetime.date,
        *,
        facts: dict[str, object],
    ) -> StatSnapshot:
        counters = all_time_counters(
            await self.progress.list_for_user(user_id),
            history,
            streak,
            quiz_pass_score=self._settings.quiz_pass_score,
        )
        windows = await self.rollups.windows(
            user_id, self.achievements.timeframes_in_use() - {Timeframe.ALL_TIME}, today
        )
        for timeframe, window in windows.items():
            counters.update({(t, timeframe): v for t, v in window.items()})
        return StatSnapshot(counters=counters, facts=facts)

    # ------------------------------------------------------------------
    # Assessments
    # ------------------------------------------------------------------

    async def submit_attempt(
        self,
        user_id: str,
        test_id: str,
        responses: Sequence[QuestionResponse],
        *,
        time_spent_seconds: int = 0,
    ) -> AttemptResult:
        now = self._clock()
        graded = await self.assessments.submit(
            user_id, test_id, responses, submitted_at=now, time_spent_seconds=time_spent_seconds
        )

        async def attempt() -> LearningHistory:
            found = await self.history.load(user_id)
            history = found.value if found else LearningHistory(user_id=user_id)
            updated = record_mock_score(history, test_id, graded.total_score)
            if updated is not history:
                await self.history.save(updated, found.version if found else 0)
            return updated

        history = await self._writer.run(f"history:{user_id}", "learning_history", attempt)
        stats = StatSnapshot(
            counters={(CriteriaType.SCORE, Timeframe.ALL_TIME): history.best_score},
            facts={"mock_test.id": test_id, "quiz.score": graded.total_score},
        )
        unlocked = await self.achievements.evaluate(user_id, stats, now)
        await notifications.deliver(
            self._emitter, [notifications.achievement_unlocked(u) for u in unlocked]
        )
        return AttemptResult(attempt=graded, unlocked=tuple(unlocked))

    async def mock_test_stats(self, test_id: str) -> MockTestStats:
        return await self.assessments.stats(test_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def course_progress(self, user_id: str, course_id: str) -> CourseProgress:
        """Read-through cached CourseProgress."""
        key = progress_key(user_id, course_id)
        cached = await self._cache.get(key)
        if cached is not None:
            return _PROGRESS_JSON.validate_json(cached)

        found = await self.progress.load(user_id, course_id)
        if found is None:
            raise NotFoundError(f"no progress for user {user_id!r} in course {course_id!r}")
        await self._cache.set(
            key,
            _PROGRESS_JSON.dump_json(found.value).decode(),
            self._settings.progress_cache_ttl,
        )
        return found.value

    async def concept_mastery(self, user_id: str, course_id: str, concept_id: str) -> MasteryScore:
        structure = await self._require_structure(course_id)
        if structure.concept(concept_id) is None:
            raise NotFoundError(f"concept {concept_id!r} not in course {course_id!r}")
        found = await self.progress.load(user_id, course_id)
        concept = found.value.concept(concept_id) if found is not None else None
        concept_history = (await self.history.get(user_id)).concept(concept_id)
        return compute_mastery(
            concept, concept_history.latest_quiz_scores(), concept_history.problem_stats()
        )

    async def path_progress(self, user_id: str, path_id: str) -> PathProgress:
        found = await self.paths.load(user_id, path_id)
        if found is None:
            raise NotFoundError(f"user {user_id!r} is not enrolled in path {path_id!r}")
        return found.value

    async def user_achievements(
        self, user_id: str
    ) -> list[tuple[Achievement, UserAchievement | None]]:
        return await self.achievements.list_for_user(user_id)

    async def analytics(
        self, user_id: str, period: str, anchor: datetime.date | None = None
    ) -> PeriodSummary:
        if anchor is None:
            anchor = await self.streaks.local_date(user_id, self._clock())
        return await self.rollups.summarize(user_id, period, anchor)

    # ------------------------------------------------------------------

    async def _require_structure(self, course_id: str) -> CourseStructure:
        structure = await self._ingest.structure_for(course_id)
        if structure is None:
            raise NotFoundError(f"course {course_id!r} not found")
        return structure

    async def _course_progresses(
        self, user_id: str, course_ids: frozenset[str]
    ) -> dict[str, CourseProgress]:
        courses: dict[str, CourseProgress] = {}
        for cid in course_ids:
            found = await self.progress.load(user_id, cid)
            if found is not None:
                courses[cid] = found.value
        return courses

    @staticmethod
    def _extra(event: ActivityEvent) -> dict[str, str | None]:
        return {
            "user_id": event.user_id,
            "course_id": event.course_id,
            "event_id": event.event_id,
        }

