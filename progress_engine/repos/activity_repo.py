from __future__ import annotations

import datetime

from progress_engine.models.analytics import DailyActivity
from progress_engine.repos.document_store import (
    DocumentStore,
    TypedCollection,
    Versioned,
    doc_key,
)


class DailyActivityRepo:
    """DailyActivity documents keyed by user and ISO local date.

    ISO dates sort lexically, so a date range is a key range and comes
    back in chronological order without reading the user's other days.
    """

    KIND = "daily_activity"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, DailyActivity)

    async def load(self, user_id: str, day: datetime.date) -> Versioned[DailyActivity] | None:
        return await self._docs.load(doc_key(user_id, day.isoformat()))

    async def save(self, activity: DailyActivity, expected_version: int) -> int:
        return await self._docs.save(
            doc_key(activity.user_id, activity.date.isoformat()), activity, expected_version
        )

    async def list_range(
        self, user_id: str, start: datetime.date, end: datetime.date
    ) -> list[DailyActivity]:
        """Records with ``start <= date <= end``."""
        found = await self._docs.list(
            doc_key(user_id) + ":",
            start=doc_key(user_id, start.isoformat()),
            end=doc_key(user_id, end.isoformat()),
        )
        return [v.value for v in found if v.value.user_id == user_id]
