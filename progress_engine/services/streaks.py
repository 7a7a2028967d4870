"""Daily-activity streaks.

The rule works on local calendar dates, so "consecutive" means
consecutive in the learner's own timezone: a learner in Tokyo who studies
at 08:00 local time every day keeps the streak even though the UTC date
of some of those sessions is the day before.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import replace
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from progress_engine.models.streak import StreakState
from progress_engine.repos.profile_repo import TimezoneLookup
from progress_engine.repos.streak_repo import StreakRepo
from progress_engine.services.concurrency import SerializedWriter

logger = logging.getLogger(__name__)


def record_activity(state: StreakState, activity_date: datetime.date) -> StreakState:
    last = state.last_active_date
    if last is None:
        current = 1
    elif activity_date <= last:
        # same day, or a late event for a day already past
        return state
    elif activity_date - last == datetime.timedelta(days=1):
        current = state.current_streak + 1
    else:
        current = 1
    return replace(
        state,
        current_streak=current,
        longest_streak=max(state.longest_streak, current),
        last_active_date=activity_date,
    )


def local_activity_date(occurred_at: datetime.datetime, timezone: str) -> datetime.date:
    return occurred_at.astimezone(ZoneInfo(timezone)).date()


class StreakTracker:
    def __init__(
        self,
        repo: StreakRepo,
        timezones: TimezoneLookup,
        writer: SerializedWriter,
        *,
        default_timezone: str,
    ) -> None:
        self._repo = repo
        self._timezones = timezones
        self._writer = writer
        self._default_timezone = default_timezone

    async def timezone_for(self, user_id: str) -> str:
        tz = await self._timezones.get_timezone(user_id)
        if not tz:
            return self._default_timezone
        try:
            ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Unknown timezone %r on profile, using %s",
                tz,
                self._default_timezone,
                extra={"user_id": user_id},
            )
            return self._default_timezone
        return tz

    async def local_date(self, user_id: str, occurred_at: datetime.datetime) -> datetime.date:
        return local_activity_date(occurred_at, await self.timezone_for(user_id))

    async def get(self, user_id: str) -> StreakState:
        found = await self._repo.load(user_id)
        return found.value if found is not None else StreakState(user_id=user_id)

    async def record(self, user_id: str, occurred_at: datetime.datetime) -> StreakState:
        day = await self.local_date(user_id, occurred_at)
        return await self.record_day(user_id, day)

    async def record_day(self, user_id: str, day: datetime.date) -> StreakState:
        async def attempt() -> StreakState:
            found = await self._repo.load(user_id)
            state = found.value if found is not None else StreakState(user_id=user_id)
            updated = record_activity(state, day)
            if updated != state:
                await self._repo.save(updated, found.version if found is not None else 0)
            return updated

        return await self._writer.run(f"streak:{user_id}", "streak", attempt)
