"""Per-learner event_id claims.

An id maps to the fingerprint of the payload it first arrived with.
Seeing the same id with the same fingerprint again is a retry; seeing
it with any other fingerprint is a conflict, whichever course either
payload names.
"""

from __future__ import annotations

import datetime
from collections.abc import Mapping
from dataclasses import replace

from progress_engine.models.activity import ActivityEvent
from progress_engine.models.ledger import AppliedEvent, EventLedger
from progress_engine.services.errors import IdempotencyConflictError


def prune(
    entries: Mapping[str, AppliedEvent], retain_since: datetime.datetime | None
) -> dict[str, AppliedEvent]:
    if retain_since is None:
        return dict(entries)
    return {eid: seen for eid, seen in entries.items() if seen.applied_at >= retain_since}


def check_reuse(seen: AppliedEvent | None, event: ActivityEvent) -> bool:
    """True when ``event`` is a retry of ``seen``.

    Raises IdempotencyConflictError when the id was used for another payload.
    """
    if seen is None:
        return False
    if seen.fingerprint != event.fingerprint():
        raise IdempotencyConflictError(
            f"event_id {event.event_id!r} was already used for a different event"
        )
    return True


def claim(
    ledger: EventLedger,
    event: ActivityEvent,
    now: datetime.datetime,
    retain_since: datetime.datetime | None = None,
) -> EventLedger:
    """Record ``event.event_id`` for this learner.

    Returns ``ledger`` itself when the id is already held by the same
    payload and nothing expired, so the caller can skip the write.
    """
    if event.event_id is None:
        return ledger
    seen = ledger.entries.get(event.event_id)
    if check_reuse(seen, event):
        kept = prune(ledger.entries, retain_since)
        kept[event.event_id] = seen
        if len(kept) == len(ledger.entries):
            return ledger
        return replace(ledger, entries=kept)
    entries = prune(ledger.entries, retain_since)
    entries[event.event_id] = AppliedEvent(event.fingerprint(), now)
    return replace(ledger, entries=entries)
