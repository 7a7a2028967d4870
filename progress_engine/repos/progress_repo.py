from __future__ import annotations

from progress_engine.models.progress import CourseProgress, PathProgress
from progress_engine.repos.document_store import (
    DocumentStore,
    TypedCollection,
    Versioned,
    doc_key,
)


class ProgressRepo:
    """CourseProgress documents, one per (user, course)."""

    KIND = "course_progress"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, CourseProgress)

    async def load(self, user_id: str, course_id: str) -> Versioned[CourseProgress] | None:
        return await self._docs.load(doc_key(user_id, course_id))

    async def save(self, progress: CourseProgress, expected_version: int) -> int:
        return await self._docs.save(
            doc_key(progress.user_id, progress.course_id), progress, expected_version
        )

    async def list_for_user(self, user_id: str) -> list[CourseProgress]:
        return [
            v.value
            for v in await self._docs.list(doc_key(user_id) + ":")
            if v.value.user_id == user_id
        ]


class PathProgressRepo:
    KIND = "path_progress"

    def __init__(self, store: DocumentStore) -> None:
        self._docs = TypedCollection(store, self.KIND, PathProgress)

    async def load(self, user_id: str, path_id: str) -> Versioned[PathProgress] | None:
        return await self._docs.load(doc_key(user_id, path_id))

    async def save(self, progress: PathProgress, expected_version: int) -> int:
        return await self._docs.save(
            doc_key(progress.user_id, progress.path_id), progress, expected_version
        )

    async def list_for_user(self, user_id: str) -> list[PathProgress]:
        return [
            v.value
            for v in await self._docs.list(doc_key(user_id) + ":")
            if v.value.user_id == user_id
        ]
