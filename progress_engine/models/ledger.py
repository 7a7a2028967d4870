from __future__ import annotations

import datetime
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class AppliedEvent:
    fingerprint: str
    applied_at: datetime.datetime


@dataclass(frozen=True, slots=True)
class EventLedger:
    """Every event_id a learner has used, across all of their courses.

    An event_id is claimed here before any projection sees the event, so
    reusing one id for a different payload is refused even when the two
    payloads name different courses.  Entries older than the retention
    window are dropped on the next write.
    """

    user_id: str
    entries: dict[str, AppliedEvent] = field(default_factory=dict)
