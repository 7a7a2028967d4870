"""PostgreSQL implementation of DocumentStore."""

from __future__ import annotations

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from progress_engine.db.tables import DocumentRow
from progress_engine.repos.document_store import StoredDocument
from progress_engine.services.errors import VersionConflict


class PgDocumentStore:
    """Satisfies the DocumentStore Protocol using the ``documents`` table.

    Each call runs in its own short transaction: the engine's apply cycle
    is load → compute → put, and the version check in the UPDATE's WHERE
    clause is what makes the put atomic, not a long-held transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, kind: str, key: str) -> StoredDocument | None:
        async with self._session_factory() as session:
            stmt = select(DocumentRow).where(
                DocumentRow.kind == kind, DocumentRow.key == key
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            if row is None:
                return None
            return _row_to_document(row)

    async def put(self, kind: str, key: str, body: dict, expected_version: int) -> int:
        async with self._session_factory() as session:
            if expected_version == 0:
                try:
                    await session.execute(
                        insert(DocumentRow).values(
                            kind=kind, key=key, version=1, body=body
                        )
                    )
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    actual = await self._current_version(session, kind, key)
                    raise VersionConflict(kind, key, expected_version, actual) from None
                return 1

            stmt = (
                update(DocumentRow)
                .where(
                    DocumentRow.kind == kind,
                    DocumentRow.key == key,
                    DocumentRow.version == expected_version,
                )
                .values(body=body, version=DocumentRow.version + 1)
                .returning(DocumentRow.version)
            )
            new_version = (await session.execute(stmt)).scalar_one_or_none()
            if new_version is None:
                await session.rollback()
                actual = await self._current_version(session, kind, key)
                raise VersionConflict(kind, key, expected_version, actual)
            await session.commit()
            return new_version

    async def list(
        self,
        kind: str,
        prefix: str = "",
        *,
        start: str | None = None,
        end: str | None = None,
    ) -> list[StoredDocument]:
        # byte order, so ISO-date key suffixes compare chronologically
        key = DocumentRow.key.collate("C")
        conditions = [
            DocumentRow.kind == kind,
            DocumentRow.key.startswith(prefix, autoescape=True),
        ]
        if start is not None:
            conditions.append(key >= start)
        if end is not None:
            conditions.append(key <= end)
        async with self._session_factory() as session:
            stmt = select(DocumentRow).where(*conditions).order_by(key)
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_document(row) for row in rows]

    @staticmethod
    async def _current_version(session: AsyncSession, kind: str, key: str) -> int | None:
        stmt = select(DocumentRow.version).where(
            DocumentRow.kind == kind, DocumentRow.key == key
        )
        return (await session.execute(stmt)).scalar_one_or_none()


def _row_to_document(row: DocumentRow) -> StoredDocument:
    return StoredDocument(
        kind=row.kind,
        key=row.key,
        version=row.version,
        body=dict(row.body),
    )
