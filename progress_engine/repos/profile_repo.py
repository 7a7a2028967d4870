from __future__ import annotations

from dataclasses import replace
from typing import Protocol

from progress_engine.models.profile import UserProfile
from progress_engine.repos.document_store import (
    DocumentStore,
    TypedCollection,
    Versioned,
    doc_key,
)


class TimezoneLookup(Protocol):
    async def get_timezone(self, user_id: str) -> str | None:
        """IANA zone name from the user's profile, or None if unset."""
        ...


class ProfileRepo:
    """UserProfile documents, one per learner.  Satisfies TimezoneLookup."""

    KIND = "user_profile"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, UserProfile)

    async def load(self, user_id: str) -> Versioned[UserProfile] | None:
        return await self._docs.load(doc_key(user_id))

    async def save(self, profile: UserProfile, expected_version: int) -> int:
        return await self._docs.save(doc_key(profile.user_id), profile, expected_version)

    async def get_timezone(self, user_id: str) -> str | None:
        found = await self.load(user_id)
        return found.value.timezone if found is not None else None

    async def set_timezone(self, user_id: str, timezone: str) -> UserProfile:
        """One load-and-save; raises VersionConflict if the profile moved."""
        found = await self.load(user_id)
        current = found.value if found is not None else UserProfile(user_id=user_id)
        updated = replace(current, timezone=timezone)
        await self.save(updated, found.version if found is not None else 0)
        return updated
