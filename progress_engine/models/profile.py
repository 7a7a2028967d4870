from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class UserProfile:
    """The slice of a learner's profile the engine needs."""

    user_id: str
    timezone: str | None = None  # IANA zone name
