"""Per-key serialization and compare-and-swap retries.

Every document write in the engine goes through SerializedWriter.run():

    async with <mutex for key>:            # same-process writers queue up
        for each try in 1 .. 1 + max_retries:
            load → compute → put(expected_version)
            VersionConflict → count it, reload, recompute

The mutex makes conflicts rare inside one process; the version check
catches writers in other processes (a second API replica, the worker).
Different keys never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from progress_engine.core.metrics import VERSION_CONFLICTS
from progress_engine.services.errors import ConcurrencyError, VersionConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedLock:
    """One asyncio.Lock per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class SerializedWriter:
    def __init__(self, *, max_retries: int, locks: KeyedLock | None = None) -> None:
        self._max_retries = max_retries
        self._locks = locks or KeyedLock()

    async def run(
        self, key: str, document: str, attempt: Callable[[], Awaitable[T]]
    ) -> T:
        """Run ``attempt`` under the key's mutex, retrying on VersionConflict.

        ``attempt`` must do the whole load-compute-save cycle so a retry
        recomputes from fresh state.  Raises ConcurrencyError once
        ``max_retries`` retries have also conflicted.
        """
        async with self._locks.hold(key):
            for n in range(self._max_retries + 1):
                try:
                    return await attempt()
                except VersionConflict as exc:
                    VERSION_CONFLICTS.labels(document=document).inc()
                    logger.info(
                        "Version conflict on %s (try %d of %d): %s",
                        document,
                        n + 1,
                        self._max_retries + 1,
                        exc,
                    )
        logger.warning("Giving up on %s key=%s after %d retries", document, key, self._max_retries)
        raise ConcurrencyError(
            f"{document} {key}: still conflicting after {self._max_retries} retries"
        )
