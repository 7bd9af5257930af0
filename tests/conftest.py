"""
Shared pytest fixtures for docshelf tests.

Provides an in-memory object store, an aiosqlite-backed metadata store and
httpx mock transports for blob downloads and the chat-completion endpoint, so
nothing here talks to MinIO, Postgres or a real model.
"""
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import create_async_engine

from docshelf.ai import AiTextClient
from docshelf.config import Settings
from docshelf.db import build_sessionmaker, init_models
from docshelf.documents import DocumentLibrary
from docshelf.errors import ObjectExistsError, UpstreamError
from docshelf.main import create_app
from docshelf.metadata import MetadataStore
from docshelf.models import build_documents_table
from docshelf.storage import StoredObject

BLOB_HOST = "blobs.test"
AI_BASE_URL = "http://ai.test"


def make_pdf(*lines: str) -> bytes:
    """Build a one-page PDF whose page shows ``lines`` in Helvetica. No lines -> a page with no text."""
    if lines:
        ops = ["BT", "/F1 12 Tf", "72 720 Td"]
        for i, line in enumerate(lines):
            escaped = line.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
            if i:
                ops.append("0 -16 Td")
            ops.append(f"({escaped}) Tj")
        ops.append("ET")
        stream = "\n".join(ops).encode("latin-1")
    else:
        stream = b""

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % num + body + b"\nendobj\n"
    xref = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for off in offsets:
        out += b"%010d 00000 n \n" % off
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref)
    return bytes(out)


class InMemoryObjectStore:
    """Object store double with the adapter's contract: no overwrites, newest first, signed URLs."""

    def __init__(self, bucket: str = "test-docs"):
        self.bucket = bucket
        self.blobs: Dict[str, Tuple[bytes, str, datetime]] = {}
        self.signed: List[Tuple[str, int]] = []
        self.calls: List[str] = []
        self.fail_remove = False
        self.fail_downloads = False
        self._last: Optional[datetime] = None

    def _now(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last is not None and now <= self._last:
            now = self._last + timedelta(microseconds=1)
        self._last = now
        return now

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        self.calls.append("put")
        if path in self.blobs:
            raise ObjectExistsError(path)
        self.blobs[path] = (data, content_type, self._now())

    async def list(self, prefix: str, limit: int) -> List[StoredObject]:
        self.calls.append("list")
        prefix = prefix.strip("/") + "/"
        items = []
        for path, (data, _, created) in self.blobs.items():
            if not path.startswith(prefix) or "/" in path[len(prefix):]:
                continue
            items.append(StoredObject(
                name=path[len(prefix):],
                path=path,
                size=len(data),
                created_at=created,
                updated_at=created,
            ))
        items.sort(key=lambda o: o.created_at, reverse=True)
        return items[:limit]

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        self.calls.append("signed_url")
        if path not in self.blobs:
            raise UpstreamError("Object not found")
        self.signed.append((path, ttl_seconds))
        return f"http://{BLOB_HOST}/{self.bucket}/{path}?ttl={ttl_seconds}"

    async def remove(self, path: str) -> None:
        self.calls.append("remove")
        if self.fail_remove:
            raise UpstreamError("Storage remove failed")
        self.blobs.pop(path, None)

    async def ping(self) -> bool:
        return True

    def serve(self, request: httpx.Request) -> httpx.Response:
        if self.fail_downloads:
            return httpx.Response(503, text="unavailable")
        prefix = f"/{self.bucket}/"
        key = unquote(request.url.path)
        if not key.startswith(prefix) or key[len(prefix):] not in self.blobs:
            return httpx.Response(404, text="not found")
        data, content_type, _ = self.blobs[key[len(prefix):]]
        return httpx.Response(200, content=data, headers={"Content-Type": content_type})


class ChatStub:
    """Stands in for the chat-completions endpoint; records every request body."""

    def __init__(self):
        self.reply: Optional[str] = "- Revenue grew 12%\n- Costs were flat"
        self.status_code = 200
        self.requests: List[dict] = []
        self.headers: List[httpx.Headers] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream exploded")
        message = {"role": "assistant", "content": self.reply}
        return httpx.Response(200, json={"choices": [{"index": 0, "message": message}]})


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        ai_token="test-token",
        ai_base_url=AI_BASE_URL,
        storage_bucket="test-docs",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}",
        create_tables=False,
    )


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def chat() -> ChatStub:
    return ChatStub()


@pytest_asyncio.fixture
async def http_client(store, chat):
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.host == BLOB_HOST:
            return store.serve(request)
        if request.url.host == "ai.test":
            return chat(request)
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(route)) as client:
        yield client


@pytest_asyncio.fixture
async def metadata_store(settings):
    engine = create_async_engine(settings.database_url)
    table = build_documents_table(settings.documents_table, MetaData())
    await init_models(engine, table.metadata)
    yield MetadataStore(build_sessionmaker(engine), table)
    await engine.dispose()


@pytest.fixture
def ai_client(settings, http_client) -> AiTextClient:
    return AiTextClient(settings, http_client)


@pytest.fixture
def library(settings, store, metadata_store, ai_client, http_client) -> DocumentLibrary:
    return DocumentLibrary(settings, store, metadata_store, ai_client, http_client)


@pytest.fixture
def app(settings, store, metadata_store, http_client):
    return create_app(settings, object_store=store, metadata_store=metadata_store, http_client=http_client)


@pytest_asyncio.fixture
async def api(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


@pytest.fixture
def report_pdf() -> bytes:
    return make_pdf("Quarterly report", "Revenue grew 12 percent in Q3")
