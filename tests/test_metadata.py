from datetime import datetime, timezone

import pytest
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import create_async_engine

from docshelf.db import build_sessionmaker
from docshelf.errors import UpstreamError
from docshelf.metadata import MetadataStore
from docshelf.models import build_documents_table


@pytest.mark.asyncio
async def test_insert_and_get(metadata_store):
    row_id = await metadata_store.insert(document_name="Report", storage_path="uploads/report.pdf", tag=("a", "b"))
    row = await metadata_store.get("uploads/report.pdf")
    assert row.id == row_id
    assert row.document_name == "Report"
    assert row.tag == ("a", "b")
    assert row.summary_text is None
    assert row.summary_updated_at is None
    assert row.note_taking is None


@pytest.mark.asyncio
async def test_get_missing_is_none(metadata_store):
    assert await metadata_store.get("uploads/nope.pdf") is None


@pytest.mark.asyncio
async def test_select_by_paths_only_returns_requested(metadata_store):
    for name in ("a", "b", "c"):
        await metadata_store.insert(document_name=name, storage_path=f"uploads/{name}.pdf")
    rows = await metadata_store.select_by_paths(["uploads/a.pdf", "uploads/c.pdf", "uploads/missing.pdf"])
    assert set(rows) == {"uploads/a.pdf", "uploads/c.pdf"}
    assert rows["uploads/c.pdf"].document_name == "c"


@pytest.mark.asyncio
async def test_select_by_no_paths(metadata_store):
    assert await metadata_store.select_by_paths([]) == {}


@pytest.mark.asyncio
async def test_update_by_path_reports_rows_affected(metadata_store):
    await metadata_store.insert(document_name="x", storage_path="uploads/x.pdf")
    when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    assert await metadata_store.update_by_path("uploads/x.pdf", {"summary_text": "s", "summary_updated_at": when}) == 1
    assert await metadata_store.update_by_path("uploads/other.pdf", {"summary_text": "s"}) == 0

    row = await metadata_store.get("uploads/x.pdf")
    assert row.summary_text == "s"
    assert row.summary_updated_at == when


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(metadata_store):
    with pytest.raises(ValueError):
        await metadata_store.update_by_path("uploads/x.pdf", {"storage_path": "uploads/y.pdf"})


@pytest.mark.asyncio
async def test_duplicate_path_insert_is_upstream_error(metadata_store):
    await metadata_store.insert(document_name="x", storage_path="uploads/x.pdf")
    with pytest.raises(UpstreamError):
        await metadata_store.insert(document_name="again", storage_path="uploads/x.pdf")
    assert await metadata_store.count_by_path("uploads/x.pdf") == 1


@pytest.mark.asyncio
async def test_delete_by_path(metadata_store):
    await metadata_store.insert(document_name="x", storage_path="uploads/x.pdf")
    assert await metadata_store.delete_by_path("uploads/x.pdf") == 1
    assert await metadata_store.delete_by_path("uploads/x.pdf") == 0
    assert await metadata_store.get("uploads/x.pdf") is None


@pytest.mark.asyncio
async def test_ping(metadata_store):
    assert await metadata_store.ping() is True


@pytest.mark.asyncio
async def test_count_on_missing_table_is_upstream_error(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    store = MetadataStore(build_sessionmaker(engine), build_documents_table("documents", MetaData()))
    try:
        with pytest.raises(UpstreamError):
            await store.count_by_path("uploads/x.pdf")
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_ping_unreachable_database_is_upstream_error(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'no-such-dir' / 'meta.db'}")
    store = MetadataStore(build_sessionmaker(engine), build_documents_table("documents", MetaData()))
    try:
        with pytest.raises(UpstreamError):
            await store.ping()
    finally:
        await engine.dispose()
