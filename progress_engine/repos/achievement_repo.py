"""Achievement definitions and per-user achievement progress.

Definitions are shared reference data, validated once when the catalog
is built.  A malformed definition (bad step sequence, operator/value
mismatch, non-positive target) fails the load with
InvalidAchievementDefinition and never reaches the evaluator.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from progress_engine.models.achievement import (
    Achievement,
    Condition,
    Criteria,
    CriteriaType,
    InvalidAchievementDefinition,
    Operator,
    ProgressStep,
    Reward,
    Timeframe,
    UserAchievement,
)
from progress_engine.repos.document_store import (
    DocumentStore,
    TypedCollection,
    Versioned,
    doc_key,
)

_DEFINITIONS = TypeAdapter(list[Achievement])


class AchievementCatalog:
    def __init__(self, definitions: Iterable[Achievement] = ()) -> None:
        self._by_id: dict[str, Achievement] = {}
        for d in definitions:
            if d.achievement_id in self._by_id:
                raise InvalidAchievementDefinition(
                    f"duplicate achievement id {d.achievement_id!r}"
                )
            self._by_id[d.achievement_id] = d

    @classmethod
    def from_documents(cls, raw: list[dict]) -> AchievementCatalog:
        """Build a catalog from JSON-shaped definitions."""
        try:
            definitions = _DEFINITIONS.validate_python(raw)
        except PydanticValidationError as exc:
            raise InvalidAchievementDefinition(str(exc)) from exc
        return cls(definitions)

    def get(self, achievement_id: str) -> Achievement | None:
        return self._by_id.get(achievement_id)

    def active(self) -> list[Achievement]:
        return sorted(
            (d for d in self._by_id.values() if d.is_active),
            key=lambda d: (d.display_order, d.achievement_id),
        )


class UserAchievementRepo:
    KIND = "user_achievement"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, UserAchievement)

    async def load(self, user_id: str, achievement_id: str) -> Versioned[UserAchievement] | None:
        return await self._docs.load(doc_key(user_id, achievement_id))

    async def save(self, ua: UserAchievement, expected_version: int) -> int:
        return await self._docs.save(
            doc_key(ua.user_id, ua.achievement_id), ua, expected_version
        )

    async def list_for_user(self, user_id: str) -> list[Versioned[UserAchievement]]:
        return [
            v for v in await self._docs.list(doc_key(user_id) + ":") if v.value.user_id == user_id
        ]


SAMPLE_ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement(
        achievement_id="first-course-completed",
        title="First Course Completed",
        description="Finish every topic of a course.",
        category="completion",
        criteria=Criteria(CriteriaType.COURSE_COMPLETION, target=1),
        rewards=Reward(experience_points=100, badge="graduate"),
        display_order=1,
    ),
    Achievement(
        achievement_id="problem-solving-master",
        title="Problem Solving Master",
        description="Solve coding problems across every course.",
        category="skill",
        rarity="epic",
        criteria=Criteria(CriteriaType.PROBLEMS_SOLVED, target=500),
        rewards=Reward(experience_points=1000, badge="problem-solver", title="Master Solver"),
        progress_steps=(
            ProgressStep(1, 10, "Problem Solver I", Reward(experience_points=50)),
            ProgressStep(2, 50, "Problem Solver II", Reward(experience_points=150)),
            ProgressStep(3, 150, "Problem Solver III", Reward(experience_points=400)),
            ProgressStep(4, 500, "Problem Solving Master", Reward(experience_points=1000)),
        ),
        display_order=2,
    ),
    Achievement(
        achievement_id="week-warrior",
        title="Week Warrior",
        description="Learn seven days in a row.",
        category="streak",
        rarity="uncommon",
        criteria=Criteria(CriteriaType.STREAK, target=7),
        rewards=Reward(experience_points=200, badge="flame"),
        display_order=3,
    ),
    Achievement(
        achievement_id="quiz-ace",
        title="Quiz Ace",
        description="Score 100 on a quiz.",
        category="skill",
        rarity="rare",
        criteria=Criteria(
            CriteriaType.SCORE,
            target=100,
            conditions=(
                Condition("activity.type", Operator.EQUALS, "quiz"),
                Condition("quiz.score", Operator.EQUALS, 100),
            ),
        ),
        rewards=Reward(experience_points=150),
        display_order=4,
    ),
    Achievement(
        achievement_id="daily-hour",
        title="Power Hour",
        description="Spend an hour learning in a single day.",
        category="learning",
        criteria=Criteria(CriteriaType.TIME_SPENT, target=60, timeframe=Timeframe.DAILY),
        rewards=Reward(experience_points=75),
        display_order=5,
    ),
    Achievement(
        achievement_id="concept-explorer",
        title="Concept Explorer",
        description="Complete five concepts.",
        category="learning",
        criteria=Criteria(CriteriaType.CONCEPT_COMPLETION, target=5),
        rewards=Reward(experience_points=120),
        display_order=6,
    ),
)
