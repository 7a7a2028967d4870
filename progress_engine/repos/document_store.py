"""Versioned document store: the engine's only persistence seam.

Every mutable projection is one JSON document addressed by (kind, key)
and carrying an integer version.  Writes are compare-and-swap:

    put(kind, key, body, expected_version)

succeeds only when the stored version still equals ``expected_version``
(0 means "must not exist yet") and returns the new version.  Otherwise
it raises VersionConflict and the caller reloads and recomputes.

Keys are built with doc_key(), which percent-escapes each part before
joining them with ':'.  An id that itself contains ':' then cannot make
two different (user, course) pairs share a key, and a
``doc_key(user) + ":"`` prefix only matches that user's documents.

Same Protocol pattern as the other repos: InMemoryDocumentStore for dev
and tests, PgDocumentStore (pg_document_store.py) when DATABASE_URL is
set.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar, runtime_checkable
from urllib.parse import quote

from pydantic import TypeAdapter

from progress_engine.services.errors import VersionConflict

T = TypeVar("T")


def doc_key(*parts: str) -> str:
    return ":".join(quote(part, safe="") for part in parts)


@dataclass(frozen=True, slots=True)
class StoredDocument:
    kind: str
    key: str
    version: int
    body: dict


@runtime_checkable
class DocumentStore(Protocol):
    async def get(self, kind: str, key: str) -> StoredDocument | None: ...
    async def put(
        self, kind: str, key: str, body: dict, expected_version: int
    ) -> int: ...
    async def list(
        self,
        kind: str,
        prefix: str = "",
        *,
        start: str | None = None,
        end: str | None = None,
    ) -> list[StoredDocument]:
        """Documents whose key starts with ``prefix`` and lies in [start, end]."""
        ...


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._docs: dict[tuple[str, str], StoredDocument] = {}

    async def get(self, kind: str, key: str) -> StoredDocument | None:
        doc = self._docs.get((kind, key))
        if doc is None:
            return None
        return StoredDocument(kind, key, doc.version, copy.deepcopy(doc.body))

    async def put(self, kind: str, key: str, body: dict, expected_version: int) -> int:
        current = self._docs.get((kind, key))
        actual = current.version if current is not None else 0
        if actual != expected_version:
            raise VersionConflict(kind, key, expected_version, actual or None)
        new_version = actual + 1
        self._docs[(kind, key)] = StoredDocument(
            kind, key, new_version, copy.deepcopy(body)
        )
        return new_version

    async def list(
        self,
        kind: str,
        prefix: str = "",
        *,
        start: str | None = None,
        end: str | None = None,
    ) -> list[StoredDocument]:
        return [
            StoredDocument(k, key, doc.version, copy.deepcopy(doc.body))
            for (k, key), doc in sorted(self._docs.items())
            if k == kind
            and key.startswith(prefix)
            and (start is None or key >= start)
            and (end is None or key <= end)
        ]


@dataclass(frozen=True, slots=True)
class Versioned(Generic[T]):
    value: T
    version: int


class TypedCollection(Generic[T]):
    """One document kind, encoded and decoded through a pydantic TypeAdapter."""

    def __init__(self, store: DocumentStore, kind: str, model: type[T]) -> None:
        self._store = store
        self._kind = kind
        self._adapter: TypeAdapter[T] = TypeAdapter(model)

    @property
    def kind(self) -> str:
        return self._kind

    async def load(self, key: str) -> Versioned[T] | None:
        doc = await self._store.get(self._kind, key)
        if doc is None:
            return None
        return Versioned(self._adapter.validate_python(doc.body), doc.version)

    async def save(self, key: str, value: T, expected_version: int) -> int:
        body = self._adapter.dump_python(value, mode="json")
        return await self._store.put(self._kind, key, body, expected_version)

    async def list(
        self, prefix: str = "", *, start: str | None = None, end: str | None = None
    ) -> list[Versioned[T]]:
        docs = await self._store.list(self._kind, prefix, start=start, end=end)
        return [Versioned(self._adapter.validate_python(d.body), d.version) for d in docs]
