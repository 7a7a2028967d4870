"""Async SQLAlchemy engine and session factory.

When DATABASE_URL is set, progress documents live in PostgreSQL (see
repos/pg_document_store.py and the ``documents`` table in db/tables.py).
When it is unset every export here is None and the service runs on the
in-memory document store; nothing persists across restarts.

Every apply cycle is a handful of short compare-and-swap writes, so the
pool stays small and connections are pinged on checkout.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from progress_engine.core.config import SETTINGS

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


engine: AsyncEngine | None = None
async_session_factory: async_sessionmaker[AsyncSession] | None = None

if SETTINGS.database_url:
    engine = create_async_engine(
        SETTINGS.database_url,
        echo=SETTINGS.is_dev,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )
    async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def lifespan_db():
    """Check the document store on startup, dispose the pool on shutdown.

    An unreachable database does not stop startup; /ready reports 503
    until it answers.
    """
    if engine is None:
        logger.info("No DATABASE_URL configured, progress is kept in memory only")
        yield
        return

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Document store reachable: %s", engine.url.render_as_string(hide_password=True))
    except Exception:
        logger.exception("Document store unreachable on startup")

    yield

    await engine.dispose()
    logger.info("Database engine disposed")
