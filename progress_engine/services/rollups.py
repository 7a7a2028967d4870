"""Daily activity records and the weekly / monthly summaries built on them.

One DailyActivity document per (user, local date).  Each event is folded
in at most once: its key is remembered in ``counted_events``.  Weeks are
ISO weeks (Monday to Sunday), months are calendar months.

A summary's improvement_rate compares its average quiz score with the
previous week or month:

    improvement_rate = 100 × (current − previous) / previous

and is None when either period has no quiz score or the previous
average is 0.
"""

from __future__ import annotations

import calendar
import datetime
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from progress_engine.models.achievement import CriteriaType, Timeframe
from progress_engine.models.activity import ActivityEvent, ActivityType
from progress_engine.models.analytics import DailyActivity, PeriodSummary
from progress_engine.repos.activity_repo import DailyActivityRepo
from progress_engine.services.concurrency import SerializedWriter
from progress_engine.services.errors import ValidationError

PERIODS = ("week", "month")


@dataclass(frozen=True, slots=True)
class ActivityFacts:
    """What applying the event changed, as seen by the rollup."""

    topic_newly_completed: bool = False
    concept_newly_completed: bool = False
    course_newly_completed: bool = False
    problem_newly_solved: bool = False
    current_streak: int = 0


def period_bounds(period: str, anchor: datetime.date) -> tuple[datetime.date, datetime.date]:
    if period == "day":
        return anchor, anchor
    if period == "week":
        start = anchor - datetime.timedelta(days=anchor.isoweekday() - 1)
        return start, start + datetime.timedelta(days=6)
    if period == "month":
        last = calendar.monthrange(anchor.year, anchor.month)[1]
        return anchor.replace(day=1), anchor.replace(day=last)
    raise ValidationError(f"period must be one of {', '.join(PERIODS)} (got {period!r})")


def previous_period_bounds(
    period: str, anchor: datetime.date
) -> tuple[datetime.date, datetime.date]:
    start, _ = period_bounds(period, anchor)
    return period_bounds(period, start - datetime.timedelta(days=1))


_TIMEFRAME_PERIOD = {
    Timeframe.DAILY: "day",
    Timeframe.WEEKLY: "week",
    Timeframe.MONTHLY: "month",
}


def fold_event(
    day: DailyActivity, event_key: str, event: ActivityEvent, facts: ActivityFacts
) -> DailyActivity:
    if event_key in day.counted_events:
        return day

    completed = facts.topic_newly_completed
    quiz_score = event.quiz_score
    return replace(
        day,
        time_spent_seconds=day.time_spent_seconds + event.time_spent_seconds,
        videos_watched=day.videos_watched + (completed and event.type == ActivityType.VIDEO),
        articles_read=day.articles_read + (completed and event.type == ActivityType.ARTICLE),
        problems_attempted=day.problems_attempted + (event.type == ActivityType.CODING),
        problems_solved=day.problems_solved + facts.problem_newly_solved,
        quizzes_taken=day.quizzes_taken + (quiz_score is not None),
        quiz_scores=day.quiz_scores + ((quiz_score,) if quiz_score is not None else ()),
        concepts_completed=day.concepts_completed + facts.concept_newly_completed,
        courses_completed=day.courses_completed + facts.course_newly_completed,
        courses_accessed=day.courses_accessed | {event.course_id},
        is_streak_day=True,
        current_streak=max(day.current_streak, facts.current_streak),
        counted_events=day.counted_events | {event_key},
    )


def summarize_days(
    user_id: str,
    period: str,
    start: datetime.date,
    end: datetime.date,
    days: list[DailyActivity],
    previous_days: Sequence[DailyActivity] = (),
) -> PeriodSummary:
    scores = [s for d in days for s in d.quiz_scores]
    average = sum(scores) / len(scores) if scores else None
    previous_scores = [s for d in previous_days for s in d.quiz_scores]
    previous = sum(previous_scores) / len(previous_scores) if previous_scores else None
    improvement = (
        100.0 * (average - previous) / previous
        if average is not None and previous
        else None
    )
    attempted = sum(d.problems_attempted for d in days)
    solved = sum(d.problems_solved for d in days)
    busiest = max(days, key=lambda d: (d.time_spent_seconds, d.date), default=None)
    return PeriodSummary(
        user_id=user_id,
        period=period,
        start_date=start,
        end_date=end,
        time_spent_seconds=sum(d.time_spent_seconds for d in days),
        active_days=len(days),
        videos_watched=sum(d.videos_watched for d in days),
        articles_read=sum(d.articles_read for d in days),
        problems_solved=solved,
        quizzes_taken=sum(d.quizzes_taken for d in days),
        concepts_completed=sum(d.concepts_completed for d in days),
        courses_completed=sum(d.courses_completed for d in days),
        average_quiz_score=average,
        problem_solve_rate=100.0 * solved / attempted if attempted else None,
        most_active_day=busiest.date.strftime("%A") if busiest is not None else None,
        improvement_rate=improvement,
        daily=tuple(sorted(days, key=lambda d: d.date)),
    )


class ActivityRollups:
    def __init__(
        self, repo: DailyActivityRepo, writer: SerializedWriter, *, quiz_pass_score: float
    ) -> None:
        self._repo = repo
        self._writer = writer
        self._quiz_pass_score = quiz_pass_score

    async def record(
        self,
        user_id: str,
        local_date: datetime.date,
        event_key: str,
        event: ActivityEvent,
        facts: ActivityFacts,
    ) -> DailyActivity:
        async def attempt() -> DailyActivity:
            found = await self._repo.load(user_id, local_date)
            day = found.value if found is not None else DailyActivity(user_id=user_id, date=local_date)
            updated = fold_event(day, event_key, event, facts)
            if updated is not day:
                await self._repo.save(updated, found.version if found is not None else 0)
            return updated

        return await self._writer.run(
            f"daily:{user_id}:{local_date.isoformat()}", "daily_activity", attempt
        )

    async def summarize(
        self, user_id: str, period: str, anchor: datetime.date
    ) -> PeriodSummary:
        start, end = period_bounds(period, anchor)
        previous_start, previous_end = previous_period_bounds(period, anchor)
        days = await self._repo.list_range(user_id, previous_start, end)
        return summarize_days(
            user_id,
            period,
            start,
            end,
            [d for d in days if d.date >= start],
            [d for d in days if d.date <= previous_end],
        )

    async def window_totals(
        self, user_id: str, timeframe: Timeframe, today: datetime.date
    ) -> dict[CriteriaType, float]:
        """Achievement counters restricted to the window containing ``today``."""
        return (await self.windows(user_id, [timeframe], today))[timeframe]

    async def windows(
        self, user_id: str, timeframes: Iterable[Timeframe], today: datetime.date
    ) -> dict[Timeframe, dict[CriteriaType, float]]:
        """window_totals for several timeframes from a single range read."""
        bounds = {tf: period_bounds(_TIMEFRAME_PERIOD[tf], today) for tf in timeframes}
        if not bounds:
            return {}
        days = await self._repo.list_range(
            user_id,
            min(start for start, _ in bounds.values()),
            max(end for _, end in bounds.values()),
        )
        return {
            tf: self._totals([d for d in days if start <= d.date <= end])
            for tf, (start, end) in bounds.items()
        }

    def _totals(self, days: list[DailyActivity]) -> dict[CriteriaType, float]:
        scores = [s for d in days for s in d.quiz_scores]
        return {
            CriteriaType.COURSE_COMPLETION: float(sum(d.courses_completed for d in days)),
            CriteriaType.CONCEPT_COMPLETION: float(sum(d.concepts_completed for d in days)),
            CriteriaType.PROBLEMS_SOLVED: float(sum(d.problems_solved for d in days)),
            CriteriaType.QUIZZES_PASSED: float(
                sum(1 for s in scores if s >= self._quiz_pass_score)
            ),
            CriteriaType.STREAK: float(max((d.current_streak for d in days), default=0)),
            CriteriaType.SCORE: max(scores, default=0.0),
            CriteriaType.TIME_SPENT: sum(d.time_spent_seconds for d in days) / 60.0,
        }
