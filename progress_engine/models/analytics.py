from __future__ import annotations

import datetime
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class DailyActivity:
    """One learner's activity on one local calendar day.

    ``counted_events`` holds the event ids already folded in, so a
    retried event does not bump the counters twice.
    """

    user_id: str
    date: datetime.date
    time_spent_seconds: int = 0
    videos_watched: int = 0
    articles_read: int = 0
    problems_solved: int = 0
    problems_attempted: int = 0
    quizzes_taken: int = 0
    concepts_completed: int = 0
    courses_completed: int = 0
    quiz_scores: tuple[float, ...] = ()
    courses_accessed: frozenset[str] = frozenset()
    is_streak_day: bool = False
    current_streak: int = 0
    counted_events: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class PeriodSummary:
    user_id: str
    period: str  # week|month
    start_date: datetime.date
    end_date: datetime.date
    time_spent_seconds: int = 0
    active_days: int = 0
    videos_watched: int = 0
    articles_read: int = 0
    problems_solved: int = 0
    quizzes_taken: int = 0
    concepts_completed: int = 0
    courses_completed: int = 0
    average_quiz_score: float | None = None
    problem_solve_rate: float | None = None  # percentage
    most_active_day: str | None = None  # weekday name
    # % change of average_quiz_score against the period before
    improvement_rate: float | None = None
    daily: tuple[DailyActivity, ...] = field(default_factory=tuple)
