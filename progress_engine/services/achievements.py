"""Achievement evaluation.

evaluate() walks the active definitions whose criteria type appears in
the stat snapshot:

  1. conditions are checked against the triggering event's facts; an
     ineligible achievement is skipped before any progress comparison
  2. progress is read from the counter for (criteria type, timeframe)
  3. a plain achievement completes when progress >= target
  4. a progressive one completes every uncrossed step whose target is
     <= progress, in ascending order, and completes as a whole when the
     final step is crossed

Completed achievements and completed steps are never emitted again, so
calling evaluate twice with the same snapshot emits nothing the second
time.  Status only moves forward: locked → in_progress → completed.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace

from progress_engine.core.metrics import ACHIEVEMENTS_UNLOCKED
from progress_engine.models.achievement import (
    Achievement,
    AchievementStatus,
    CriteriaType,
    Timeframe,
    UnlockedAchievement,
    UserAchievement,
)
from progress_engine.models.history import LearningHistory
from progress_engine.models.progress import CourseProgress
from progress_engine.models.streak import StreakState
from progress_engine.repos.achievement_repo import AchievementCatalog, UserAchievementRepo
from progress_engine.services.concurrency import SerializedWriter

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StatSnapshot:
    counters: Mapping[tuple[CriteriaType, Timeframe], float] = field(default_factory=dict)
    facts: Mapping[str, object] = field(default_factory=dict)

    def has(self, criteria_type: CriteriaType) -> bool:
        return any(t == criteria_type for t, _ in self.counters)

    def value(self, criteria_type: CriteriaType, timeframe: Timeframe) -> float | None:
        return self.counters.get((criteria_type, timeframe))


def all_time_counters(
    progresses: Iterable[CourseProgress],
    history: LearningHistory,
    streak: StreakState,
    *,
    quiz_pass_score: float,
) -> dict[tuple[CriteriaType, Timeframe], float]:
    progresses = list(progresses)
    counters = {
        CriteriaType.COURSE_COMPLETION: float(sum(1 for p in progresses if p.completed)),
        CriteriaType.CONCEPT_COMPLETION: float(
            sum(len(p.completed_concept_ids) for p in progresses)
        ),
        CriteriaType.PROBLEMS_SOLVED: float(history.problems_solved),
        CriteriaType.QUIZZES_PASSED: float(history.quizzes_passed(quiz_pass_score)),
        CriteriaType.STREAK: float(streak.current_streak),
        CriteriaType.SCORE: history.best_score,
        CriteriaType.TIME_SPENT: sum(p.time_spent_seconds for p in progresses) / 60.0,
    }
    return {(t, Timeframe.ALL_TIME): v for t, v in counters.items()}


def advance(
    definition: Achievement,
    current: UserAchievement,
    progress: float,
    now: datetime.datetime,
) -> tuple[UserAchievement, list[UnlockedAchievement]]:
    """Apply one progress reading to one user achievement.  Pure."""
    unlocked: list[UnlockedAchievement] = []
    updated = replace(current, current_progress=progress)
    if progress > 0:
        updated = replace(
            updated,
            first_progress_at=current.first_progress_at or now,
            last_progress_at=now if progress != current.current_progress else current.last_progress_at,
        )
        if updated.status == AchievementStatus.LOCKED:
            updated = replace(updated, status=AchievementStatus.IN_PROGRESS)

    if definition.is_progressive:
        completed_steps = set(current.completed_steps)
        for step in definition.progress_steps:
            if step.step in completed_steps or step.target > progress:
                continue
            completed_steps.add(step.step)
            unlocked.append(
                UnlockedAchievement(
                    user_id=current.user_id,
                    achievement_id=definition.achievement_id,
                    title=step.title or definition.title,
                    reward=step.reward,
                    unlocked_at=now,
                    step=step.step,
                )
            )
        updated = replace(updated, completed_steps=frozenset(completed_steps))
        if definition.final_step in completed_steps:
            updated = replace(updated, status=AchievementStatus.COMPLETED, unlocked_at=now)
    elif progress >= definition.criteria.target:
        updated = replace(updated, status=AchievementStatus.COMPLETED, unlocked_at=now)
        unlocked.append(
            UnlockedAchievement(
                user_id=current.user_id,
                achievement_id=definition.achievement_id,
                title=definition.title,
                reward=definition.rewards,
                unlocked_at=now,
            )
        )
    return updated, unlocked


class AchievementEvaluator:
    def __init__(
        self,
        catalog: AchievementCatalog,
        repo: UserAchievementRepo,
        writer: SerializedWriter,
    ) -> None:
        self._catalog = catalog
        self._repo = repo
        self._writer = writer

    @property
    def catalog(self) -> AchievementCatalog:
        return self._catalog

    def timeframes_in_use(self) -> frozenset[Timeframe]:
        return frozenset(d.criteria.timeframe for d in self._catalog.active())

    async def evaluate(
        self, user_id: str, snapshot: StatSnapshot, now: datetime.datetime
    ) -> list[UnlockedAchievement]:
        unlocked: list[UnlockedAchievement] = []
        for definition in self._catalog.active():
            criteria = definition.criteria
            if not snapshot.has(criteria.type):
                continue
            if not criteria.eligible(snapshot.facts):
                continue
            progress = snapshot.value(criteria.type, criteria.timeframe)
            if progress is None:
                continue
            unlocked.extend(await self._evaluate_one(user_id, definition, progress, now))
        return unlocked

    async def _evaluate_one(
        self,
        user_id: str,
        definition: Achievement,
        progress: float,
        now: datetime.datetime,
    ) -> list[UnlockedAchievement]:
        async def attempt() -> list[UnlockedAchievement]:
            found = await self._repo.load(user_id, definition.achievement_id)
            if found is not None and found.value.completed:
                return []
            current = (
                found.value
                if found is not None
                else UserAchievement(user_id=user_id, achievement_id=definition.achievement_id)
            )
            if found is None and progress <= 0:
                return []
            updated, unlocked = advance(definition, current, progress, now)
            if updated != current or found is None:
                await self._repo.save(updated, found.version if found is not None else 0)
            return unlocked

        unlocked = await self._writer.run(
            f"achievement:{user_id}:{definition.achievement_id}", "user_achievement", attempt
        )
        for u in unlocked:
            ACHIEVEMENTS_UNLOCKED.labels(kind="step" if u.step is not None else "achievement").inc()
            logger.info(
                "Unlocked %s%s",
                u.achievement_id,
                f" step {u.step}" if u.step is not None else "",
                extra={"user_id": user_id},
            )
        return unlocked

    async def list_for_user(
        self, user_id: str
    ) -> list[tuple[Achievement, UserAchievement | None]]:
        """Definitions with the user's progress; secret ones only once earned."""
        mine = {v.value.achievement_id: v.value for v in await self._repo.list_for_user(user_id)}
        listed = []
        for definition in self._catalog.active():
            ua = mine.get(definition.achievement_id)
            if definition.is_secret and (ua is None or not ua.completed):
                continue
            listed.append((definition, ua))
        return listed
