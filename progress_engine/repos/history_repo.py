from __future__ import annotations

from progress_engine.models.history import LearningHistory
from progress_engine.repos.document_store import (
    DocumentStore,
    TypedCollection,
    Versioned,
    doc_key,
)


class LearningHistoryRepo:
    """Per-user quiz and problem outcomes.  Read by the mastery scorer."""

    KIND = "learning_history"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, LearningHistory)

    async def load(self, user_id: str) -> Versioned[LearningHistory] | None:
        return await self._docs.load(doc_key(user_id))

    async def get(self, user_id: str) -> LearningHistory:
        found = await self.load(user_id)
        return found.value if found is not None else LearningHistory(user_id=user_id)

    async def save(self, history: LearningHistory, expected_version: int) -> int:
        return await self._docs.save(doc_key(history.user_id), history, expected_version)
