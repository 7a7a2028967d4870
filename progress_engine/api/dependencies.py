"""Shared FastAPI dependencies: the engine singleton and error translation."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from progress_engine.core.config import SETTINGS, Settings
from progress_engine.db.engine import async_session_factory
from progress_engine.repos.achievement_repo import SAMPLE_ACHIEVEMENTS, AchievementCatalog
from progress_engine.repos.catalog_repo import InMemoryCourseCatalog, seed_sample_catalog
from progress_engine.repos.document_store import DocumentStore, InMemoryDocumentStore
from progress_engine.repos.pg_document_store import PgDocumentStore
from progress_engine.services.cache import cache_service
from progress_engine.services.engine import LearningEngine
from progress_engine.services.errors import (
    CollaboratorTimeoutError,
    ConcurrencyError,
    IdempotencyConflictError,
    NotFoundError,
    ValidationError,
)
from progress_engine.services.notifications import QueueNotificationEmitter
from progress_engine.services.task_queue import task_queue

logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying a transient failure.
RETRY_AFTER_SECONDS = 1


def build_engine(settings: Settings = SETTINGS) -> LearningEngine:
    """Wire the engine from settings: Postgres when DATABASE_URL is set."""
    store: DocumentStore
    if async_session_factory is not None:
        store = PgDocumentStore(async_session_factory)
    else:
        store = InMemoryDocumentStore()

    catalog = InMemoryCourseCatalog()
    seed_sample_catalog(catalog)

    return LearningEngine(
        store=store,
        catalog=catalog,
        achievements=AchievementCatalog(SAMPLE_ACHIEVEMENTS),
        emitter=QueueNotificationEmitter(task_queue),
        cache=cache_service,
        settings=settings,
    )


_engine: LearningEngine | None = None


def get_engine() -> LearningEngine:
    """FastAPI dependency.  Tests override it with a fresh engine."""
    global _engine
    if _engine is None:
        _engine = build_engine()
        logger.info(
            "Learning engine ready  store=%s",
            "postgres" if async_session_factory is not None else "memory",
        )
    return _engine


@contextmanager
def engine_errors() -> Iterator[None]:
    """Translate engine errors into HTTP responses.

    ValidationError → 422, NotFoundError → 404, IdempotencyConflictError →
    409.  ConcurrencyError and CollaboratorTimeoutError are transient:
    503 with Retry-After so the client resends the same event.
    """
    try:
        yield
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    except IdempotencyConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except (ConcurrencyError, CollaboratorTimeoutError) as e:
        logger.warning("Transient failure: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        ) from None
