from __future__ import annotations

import datetime
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StreakState:
    user_id: str
    current_streak: int = 0
    longest_streak: int = 0
    last_active_date: datetime.date | None = None  # in the user's timezone
