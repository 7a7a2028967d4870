"""Per-user profile setting and reads: streak, achievements, activity analytics."""

from __future__ import annotations

import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from progress_engine.api.dependencies import engine_errors
from progress_engine.api.progress import Engine, FromAttrs, StreakOut

router = APIRouter(prefix="/v1/users", tags=["users"])


class TimezoneIn(BaseModel):
    timezone: str


class ProfileOut(FromAttrs):
    user_id: str
    timezone: str | None


class AchievementOut(BaseModel):
    achievement_id: str
    title: str
    description: str
    category: str
    rarity: str
    criteria_type: str
    timeframe: str
    target: float
    status: str
    current_progress: float
    completed_steps: list[int]
    total_steps: int
    unlocked_at: datetime.datetime | None


class DailyActivityOut(FromAttrs):
    date: datetime.date
    time_spent_seconds: int
    videos_watched: int
    articles_read: int
    problems_solved: int
    problems_attempted: int
    quizzes_taken: int
    concepts_completed: int
    courses_completed: int
    current_streak: int


class PeriodSummaryOut(FromAttrs):
    user_id: str
    period: str
    start_date: datetime.date
    end_date: datetime.date
    time_spent_seconds: int
    active_days: int
    videos_watched: int
    articles_read: int
    problems_solved: int
    quizzes_taken: int
    concepts_completed: int
    courses_completed: int
    average_quiz_score: float | None
    problem_solve_rate: float | None
    most_active_day: str | None
    improvement_rate: float | None
    daily: list[DailyActivityOut]


@router.put("/{user_id}/timezone", response_model=ProfileOut)
async def put_timezone(user_id: str, body: TimezoneIn, engine: Engine) -> ProfileOut:
    with engine_errors():
        profile = await engine.set_timezone(user_id, body.timezone)
    return ProfileOut.model_validate(profile)


@router.get("/{user_id}/streak", response_model=StreakOut)
async def get_streak(user_id: str, engine: Engine) -> StreakOut:
    return StreakOut.model_validate(await engine.streaks.get(user_id))


@router.get("/{user_id}/achievements", response_model=list[AchievementOut])
async def list_achievements(user_id: str, engine: Engine) -> list[AchievementOut]:
    out = []
    for definition, ua in await engine.user_achievements(user_id):
        out.append(
            AchievementOut(
                achievement_id=definition.achievement_id,
                title=definition.title,
                description=definition.description,
                category=definition.category,
                rarity=definition.rarity,
                criteria_type=definition.criteria.type.value,
                timeframe=definition.criteria.timeframe.value,
                target=definition.criteria.target,
                status=ua.status.value if ua is not None else "locked",
                current_progress=ua.current_progress if ua is not None else 0.0,
                completed_steps=sorted(ua.completed_steps) if ua is not None else [],
                total_steps=len(definition.progress_steps),
                unlocked_at=ua.unlocked_at if ua is not None else None,
            )
        )
    return out


@router.get("/{user_id}/analytics/{period}", response_model=PeriodSummaryOut)
async def get_analytics(
    user_id: str,
    period: str,
    engine: Engine,
    anchor: datetime.date | None = None,
) -> PeriodSummaryOut:
    """Weekly or monthly summary.  ``anchor`` picks the week/month (default: today)."""
    with engine_errors():
        summary = await engine.analytics(user_id, period, anchor)
    return PeriodSummaryOut.model_validate(summary)
