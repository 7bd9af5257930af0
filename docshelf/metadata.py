# docshelf/metadata.py
"""
Metadata Store Adapter: CRUD over the documents overlay table, keyed by storage path.

No transaction here ever spans the object store; sequencing across the two
stores is the reconciliation layer's job.
"""
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy import Table, delete, insert, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docshelf.errors import UpstreamError
from docshelf.models import DocumentMetadata

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {"document_name", "tag", "summary_text", "summary_updated_at", "note_taking"}
)


def _db_error(exc: SQLAlchemyError) -> UpstreamError:
    orig = getattr(exc, "orig", None)
    return UpstreamError(str(orig) if orig is not None else str(exc))


class MetadataStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], table: Table):
        self.sessionmaker = sessionmaker
        self.table = table

    async def get(self, path: str) -> Optional[DocumentMetadata]:
        stmt = select(self.table).where(self.table.c.storage_path == path)
        try:
            async with self.sessionmaker() as session:
                row = (await session.execute(stmt)).mappings().first()
        except SQLAlchemyError as e:
            logger.exception("Metadata lookup failed for %s", path)
            raise _db_error(e) from e
        return DocumentMetadata.from_row(row) if row is not None else None

    async def select_by_paths(self, paths: Iterable[str]) -> Dict[str, DocumentMetadata]:
        paths = list(dict.fromkeys(paths))
        if not paths:
            return {}
        stmt = select(self.table).where(self.table.c.storage_path.in_(paths))
        try:
            async with self.sessionmaker() as session:
                rows = (await session.execute(stmt)).mappings().all()
        except SQLAlchemyError as e:
            logger.exception("Bulk metadata lookup failed for %d paths", len(paths))
            raise _db_error(e) from e
        return {row["storage_path"]: DocumentMetadata.from_row(row) for row in rows}

    async def insert(
        self,
        *,
        document_name: str,
        storage_path: str,
        tag: Iterable[str] = (),
        summary_text: Optional[str] = None,
        summary_updated_at=None,
        note_taking: Optional[str] = None,
    ):
        """Insert one row and return its id. A duplicate storage_path is an UpstreamError."""
        values = {
            "document_name": document_name,
            "storage_path": storage_path,
            "tag": list(tag),
            "summary_text": summary_text,
            "summary_updated_at": summary_updated_at,
            "note_taking": note_taking,
        }
        try:
            async with self.sessionmaker() as session:
                async with session.begin():
                    result = await session.execute(insert(self.table).values(**values))
                    row_id = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            logger.exception("Metadata insert failed for %s", storage_path)
            raise _db_error(e) from e
        return row_id

    async def update_by_path(self, path: str, values: Mapping[str, Any]) -> int:
        """Update the row for ``path``; returns the number of rows affected (0 or 1)."""
        unknown = set(values) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown metadata fields: {sorted(unknown)}")
        values = dict(values)
        if "tag" in values:
            values["tag"] = list(values["tag"])
        stmt = update(self.table).where(self.table.c.storage_path == path).values(**values)
        try:
            async with self.sessionmaker() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    count = result.rowcount
        except SQLAlchemyError as e:
            logger.exception("Metadata update failed for %s", path)
            raise _db_error(e) from e
        return count

    async def delete_by_path(self, path: str) -> int:
        stmt = delete(self.table).where(self.table.c.storage_path == path)
        try:
            async with self.sessionmaker() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    count = result.rowcount
        except SQLAlchemyError as e:
            logger.exception("Metadata delete failed for %s", path)
            raise _db_error(e) from e
        return count

    async def count_by_path(self, path: str) -> int:
        stmt = select(self.table.c.id).where(self.table.c.storage_path == path)
        try:
            async with self.sessionmaker() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as e:
            logger.exception("Metadata count failed for %s", path)
            raise _db_error(e) from e
        return len(rows)

    async def ping(self) -> bool:
        try:
            async with self.sessionmaker() as session:
                await session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.exception("Metadata database ping failed")
            raise _db_error(e) from e
        return True
