"""SQLAlchemy table definitions.

The engine persists every mutable projection (course progress, path
progress, streaks, user achievements, learning history, daily activity,
mock test attempts) as a versioned JSON document.  One table holds all
of them, partitioned by ``kind``.  ``version`` is the compare-and-swap
token the repositories hand back to the engine.
"""

from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from progress_engine.db.engine import Base


class DocumentRow(Base):
    __tablename__ = "documents"

    kind: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    body: Mapped[dict] = mapped_column(JSONB, nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
