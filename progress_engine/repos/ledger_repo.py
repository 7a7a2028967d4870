from __future__ import annotations

from progress_engine.models.ledger import EventLedger
from progress_engine.repos.document_store import (
    DocumentStore,
    TypedCollection,
    Versioned,
    doc_key,
)


class EventLedgerRepo:
    KIND = "event_ledger"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, EventLedger)

    async def load(self, user_id: str) -> Versioned[EventLedger] | None:
        return await self._docs.load(doc_key(user_id))

    async def save(self, ledger: EventLedger, expected_version: int) -> int:
        return await self._docs.save(doc_key(ledger.user_id), ledger, expected_version)
