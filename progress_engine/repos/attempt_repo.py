from __future__ import annotations

from progress_engine.models.assessment import MockTestAttempt
from progress_engine.repos.document_store import DocumentStore, TypedCollection, doc_key


class AttemptRepo:
    """Graded mock test attempts.  Create-only: an attempt never changes.

    Keys are ``{test_id}:{user_id}:{attempt_number:06d}`` (each part
    escaped by doc_key) so a listing of one user's attempts on one test
    comes back in attempt order.  Two submissions racing for the same
    attempt number collide on the create and one of them retries with
    the next number.
    """

    KIND = "mock_test_attempt"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, MockTestAttempt)

    async def add(self, attempt: MockTestAttempt) -> None:
        key = doc_key(attempt.mock_test_id, attempt.user_id, f"{attempt.attempt_number:06d}")
        await self._docs.save(key, attempt, expected_version=0)

    async def list_for_test(self, test_id: str) -> list[MockTestAttempt]:
        return [
            v.value
            for v in await self._docs.list(doc_key(test_id) + ":")
            if v.value.mock_test_id == test_id
        ]

    async def list_for_user(self, test_id: str, user_id: str) -> list[MockTestAttempt]:
        return [
            v.value
            for v in await self._docs.list(doc_key(test_id, user_id) + ":")
            if v.value.mock_test_id == test_id and v.value.user_id == user_id
        ]
