from __future__ import annotations

from progress_engine.models.streak import StreakState
from progress_engine.repos.document_store import (
    DocumentStore,
    TypedCollection,
    Versioned,
    doc_key,
)


class StreakRepo:
    KIND = "streak"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, StreakState)

    async def load(self, user_id: str) -> Versioned[StreakState] | None:
        return await self._docs.load(doc_key(user_id))

    async def save(self, state: StreakState, expected_version: int) -> int:
        return await self._docs.save(doc_key(state.user_id), state, expected_version)
