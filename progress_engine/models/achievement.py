from __future__ import annotations

import datetime
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum


class CriteriaType(StrEnum):
    COURSE_COMPLETION = "course_completion"
    CONCEPT_COMPLETION = "concept_completion"
    PROBLEMS_SOLVED = "problems_solved"
    QUIZZES_PASSED = "quizzes_passed"
    STREAK = "streak"
    SCORE = "score"
    TIME_SPENT = "time_spent"  # minutes


class Timeframe(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


class Operator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


class AchievementStatus(StrEnum):
    LOCKED = "locked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class InvalidAchievementDefinition(ValueError):
    pass


Scalar = str | int | float | bool


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class Condition:
    """A field/operator/value filter over the facts of the triggering event.

    Comparison operators take a number, ``in`` takes a tuple, equality
    takes a scalar.  The pairing is checked when the condition is built.
    """

    field: str
    operator: Operator
    value: Scalar | tuple[Scalar, ...]

    def __post_init__(self) -> None:
        if self.operator in (Operator.GREATER_THAN, Operator.LESS_THAN):
            if not _is_number(self.value):
                raise InvalidAchievementDefinition(
                    f"condition on {self.field!r}: {self.operator} needs a number"
                )
        elif self.operator == Operator.IN:
            if not isinstance(self.value, tuple) or not self.value:
                raise InvalidAchievementDefinition(
                    f"condition on {self.field!r}: 'in' needs a non-empty tuple"
                )
        elif isinstance(self.value, tuple):
            raise InvalidAchievementDefinition(
                f"condition on {self.field!r}: {self.operator} needs a scalar"
            )

    def matches(self, facts: Mapping[str, object]) -> bool:
        if self.field not in facts:
            return False
        actual = facts[self.field]
        match self.operator:
            case Operator.EQUALS:
                return actual == self.value
            case Operator.NOT_EQUALS:
                return actual != self.value
            case Operator.GREATER_THAN:
                return _is_number(actual) and actual > self.value  # type: ignore[operator]
            case Operator.LESS_THAN:
                return _is_number(actual) and actual < self.value  # type: ignore[operator]
            case Operator.IN:
                return actual in self.value  # type: ignore[operator]
        return False


@dataclass(frozen=True, slots=True)
class Criteria:
    type: CriteriaType
    target: float
    timeframe: Timeframe = Timeframe.ALL_TIME
    conditions: tuple[Condition, ...] = ()

    def eligible(self, facts: Mapping[str, object]) -> bool:
        return all(c.matches(facts) for c in self.conditions)


@dataclass(frozen=True, slots=True)
class Reward:
    experience_points: int = 0
    badge: str | None = None
    title: str | None = None
    unlocks: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ProgressStep:
    step: int
    target: float
    title: str = ""
    reward: Reward = Reward()


@dataclass(frozen=True, slots=True)
class Achievement:
    """Immutable achievement definition.

    Progressive achievements carry ``progress_steps``: numbered 1..n with
    no gaps, targets strictly increasing.  A definition that breaks this
    is rejected here, at load time, so the evaluator can walk the steps
    without re-checking them.
    """

    achievement_id: str
    title: str
    criteria: Criteria
    rewards: Reward = Reward()
    description: str = ""
    category: str = "learning"  # learning|streak|completion|social|skill
    rarity: str = "common"  # common|uncommon|rare|epic|legendary
    progress_steps: tuple[ProgressStep, ...] = ()
    is_active: bool = True
    is_secret: bool = False
    display_order: int = 0

    def __post_init__(self) -> None:
        if self.criteria.target <= 0:
            raise InvalidAchievementDefinition(
                f"{self.achievement_id}: criteria target must be positive"
            )
        previous_target: float | None = None
        for expected, step in enumerate(self.progress_steps, start=1):
            if step.step != expected:
                raise InvalidAchievementDefinition(
                    f"{self.achievement_id}: step numbers must run 1..n without gaps "
                    f"(expected {expected}, got {step.step})"
                )
            if step.target <= 0:
                raise InvalidAchievementDefinition(
                    f"{self.achievement_id}: step {step.step} target must be positive"
                )
            if previous_target is not None and step.target <= previous_target:
                raise InvalidAchievementDefinition(
                    f"{self.achievement_id}: step targets must strictly increase "
                    f"(step {step.step} has {step.target} after {previous_target})"
                )
            previous_target = step.target

    @property
    def is_progressive(self) -> bool:
        return bool(self.progress_steps)

    @property
    def final_step(self) -> int | None:
        return self.progress_steps[-1].step if self.progress_steps else None


@dataclass(frozen=True, slots=True)
class UserAchievement:
    user_id: str
    achievement_id: str
    current_progress: float = 0.0
    status: AchievementStatus = AchievementStatus.LOCKED
    completed_steps: frozenset[int] = frozenset()
    first_progress_at: datetime.datetime | None = None
    last_progress_at: datetime.datetime | None = None
    unlocked_at: datetime.datetime | None = None

    @property
    def completed(self) -> bool:
        return self.status == AchievementStatus.COMPLETED


@dataclass(frozen=True, slots=True)
class UnlockedAchievement:
    user_id: str
    achievement_id: str
    title: str
    reward: Reward
    unlocked_at: datetime.datetime
    step: int | None = None  # None for a whole-achievement unlock
