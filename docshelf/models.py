# docshelf/models.py
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

metadata_obj = MetaData()

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
TagList = JSON().with_variant(JSONB(), "postgresql")


def build_documents_table(name: str = "documents", metadata: Optional[MetaData] = None) -> Table:
    """
    The metadata overlay table. ``storage_path`` is the join key with the
    object store and is unique, so concurrent inserts for the same path
    cannot produce duplicate rows.
    """
    metadata = metadata if metadata is not None else metadata_obj
    if name in metadata.tables:
        return metadata.tables[name]
    return Table(
        name,
        metadata,
        Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
        Column("document_name", String, nullable=False),
        Column("storage_path", String, nullable=False, unique=True, index=True),
        Column("tag", TagList, nullable=False, default=list),
        Column("summary_text", Text, nullable=True),
        Column("summary_updated_at", DateTime(timezone=True), nullable=True),
        Column("note_taking", Text, nullable=True),
        Column("created_at", DateTime(timezone=True), server_default=func.now()),
        Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes; everything we write is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class DocumentMetadata:
    id: uuid.UUID
    document_name: str
    storage_path: str
    tag: Tuple[str, ...] = field(default_factory=tuple)
    summary_text: Optional[str] = None
    summary_updated_at: Optional[datetime] = None
    note_taking: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DocumentMetadata":
        return cls(
            id=row["id"],
            document_name=row["document_name"],
            storage_path=row["storage_path"],
            tag=tuple(row["tag"] or ()),
            summary_text=row["summary_text"],
            summary_updated_at=_aware(row["summary_updated_at"]),
            note_taking=row["note_taking"],
            created_at=_aware(row["created_at"]),
            updated_at=_aware(row["updated_at"]),
        )
