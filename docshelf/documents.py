# docshelf/documents.py
"""
Document reconciliation layer.

Keeps the object store (PDF blobs) and the metadata table (names, tags,
summaries, notes) presented as one library, keyed by storage path:

 - list: blob-driven left join; a blob without a metadata row is shown with
   its raw filename and no tags, a metadata row without a blob is never shown
 - upload: store blob, then insert the metadata row
 - summarize: signed URL -> download -> extract text -> AI -> update-or-insert by path
 - edit / note: metadata update only, the blob is never touched
 - delete: remove blob, then delete the metadata row

None of these is atomic across the two stores. A failure after the first step
is logged and surfaced as an error; nothing is rolled back, and the next list
call is the only reconciliation.
"""
import asyncio
import logging
import posixpath
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from docshelf.ai import AiTextClient
from docshelf.config import Settings
from docshelf.errors import UnprocessableContentError, UpstreamError, ValidationError
from docshelf.metadata import MetadataStore
from docshelf.normalize import display_name_from_path, parse_tags, storage_path_for
from docshelf.pdf_text import extract_text
from docshelf.storage import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/pdf"

# marks "field not sent" apart from an explicit null
UNSET: Any = object()


@dataclass(frozen=True)
class DocumentView:
    """One merged library entry as served to clients."""

    name: str
    path: str
    size: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    document_name: Optional[str] = None
    tag: Tuple[str, ...] = field(default_factory=tuple)
    summary: Optional[str] = None
    summary_updated_at: Optional[datetime] = None
    note_taking: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        def _iso(value):
            return value.isoformat() if value is not None else None

        return {
            "name": self.name,
            "path": self.path,
            "size": self.size,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "document_name": self.document_name,
            "tag": list(self.tag),
            "summary": self.summary,
            "summary_updated_at": _iso(self.summary_updated_at),
            "note_taking": self.note_taking,
        }


@dataclass(frozen=True)
class UploadResult:
    path: str
    document_id: Optional[uuid.UUID]


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    summary_updated_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_path(path: Any) -> str:
    if not path or not isinstance(path, str) or not path.strip():
        raise ValidationError("Missing file path.")
    return path.strip()


class DocumentLibrary:
    def __init__(
        self,
        settings: Settings,
        object_store: ObjectStore,
        metadata_store: MetadataStore,
        ai_client: AiTextClient,
        http_client: httpx.AsyncClient,
        *,
        text_extractor: Callable[[bytes], str] = extract_text,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.ai_client = ai_client
        self.http_client = http_client
        self.text_extractor = text_extractor
        self.clock = clock

    # ---------------- list ----------------
    async def list_documents(self) -> List[DocumentView]:
        blobs = await self.object_store.list(self.settings.uploads_prefix, self.settings.list_limit)
        rows = await self.metadata_store.select_by_paths(b.path for b in blobs)

        merged = []
        for blob in blobs:
            meta = rows.get(blob.path)
            if meta is None:
                merged.append(DocumentView(
                    name=blob.name,
                    path=blob.path,
                    size=blob.size,
                    created_at=blob.created_at,
                    updated_at=blob.updated_at,
                ))
                continue
            merged.append(DocumentView(
                name=meta.document_name or blob.name,
                path=blob.path,
                size=blob.size,
                created_at=blob.created_at,
                updated_at=blob.updated_at,
                document_name=meta.document_name,
                tag=meta.tag,
                summary=meta.summary_text,
                summary_updated_at=meta.summary_updated_at,
                note_taking=meta.note_taking,
            ))
        return merged

    # ---------------- upload ----------------
    async def upload(
        self,
        filename: Optional[str],
        data: Optional[bytes],
        content_type: Optional[str] = None,
        document_name: Optional[str] = None,
        tags: Any = None,
    ) -> UploadResult:
        if data is None:
            raise ValidationError("Missing file upload.")
        if len(data) > self.settings.max_upload_size:
            raise ValidationError("File is too large.")

        original = posixpath.basename((filename or "").replace("\\", "/")).strip()
        display_name = (document_name or "").strip() or original or "document.pdf"
        path = storage_path_for(display_name, self.settings.uploads_prefix)
        tag_set = parse_tags(tags)

        await self.object_store.put(path, data, content_type or DEFAULT_CONTENT_TYPE)
        logger.info("Stored blob %s (%d bytes)", path, len(data))

        try:
            document_id = await self.metadata_store.insert(
                document_name=display_name,
                storage_path=path,
                tag=tag_set,
            )
        except UpstreamError:
            logger.warning("Blob %s stored but metadata insert failed; blob is now orphaned", path)
            raise
        return UploadResult(path=path, document_id=document_id)

    # ---------------- summarize ----------------
    async def _fetch_blob(self, path: str) -> bytes:
        url = await self.object_store.signed_url(path, self.settings.signed_url_ttl)
        try:
            resp = await self.http_client.get(url)
        except httpx.HTTPError as e:
            logger.exception("Download of %s failed", path)
            raise UpstreamError("Failed to download PDF.") from e
        if resp.status_code < 200 or resp.status_code >= 300:
            logger.error("Download of %s returned %d", path, resp.status_code)
            raise UpstreamError("Failed to download PDF.")
        return resp.content

    async def summarize(self, path: Any) -> SummaryResult:
        self.ai_client.require_token()
        path = _require_path(path)

        pdf_bytes = await self._fetch_blob(path)
        text = await asyncio.to_thread(self.text_extractor, pdf_bytes)
        if not text:
            raise UnprocessableContentError("No text could be extracted from the PDF.")

        summary = await self.ai_client.summarize(text)
        summary_time = self.clock()

        # update first; insert only when no row exists yet for this path
        updated = await self.metadata_store.update_by_path(
            path, {"summary_text": summary, "summary_updated_at": summary_time}
        )
        if updated == 0:
            logger.info("No metadata row for %s; creating one with the summary", path)
            await self.metadata_store.insert(
                document_name=display_name_from_path(path),
                storage_path=path,
                summary_text=summary,
                summary_updated_at=summary_time,
            )
        return SummaryResult(summary=summary, summary_updated_at=summary_time)

    # ---------------- edit / note ----------------
    async def edit(self, path: Any, document_name: Any, tags: Any = UNSET) -> int:
        """Rename and optionally retag. Update-only: returns rows affected, never inserts."""
        path = _require_path(path)
        if not isinstance(document_name, str) or not document_name.strip():
            raise ValidationError("Missing document name.")
        values: Dict[str, Any] = {"document_name": document_name.strip()}
        if tags is not UNSET:
            values["tag"] = parse_tags(tags)

        updated = await self.metadata_store.update_by_path(path, values)
        if updated == 0:
            logger.warning("Edit of %s matched no metadata row", path)
        return updated

    async def update_note(self, path: Any, note: Optional[str]) -> int:
        path = _require_path(path)
        if note is not None and not isinstance(note, str):
            raise ValidationError("Note must be a string.")
        updated = await self.metadata_store.update_by_path(path, {"note_taking": note})
        if updated == 0:
            logger.warning("Note update of %s matched no metadata row", path)
        return updated

    # ---------------- delete ----------------
    async def delete(self, path: Any) -> None:
        path = _require_path(path)
        await self.object_store.remove(path)
        try:
            await self.metadata_store.delete_by_path(path)
        except UpstreamError:
            logger.warning("Blob %s removed but metadata delete failed; row is now orphaned", path)
            raise

    # ---------------- links ----------------
    async def signed_link(self, path: Any) -> str:
        """Short-lived link for preview and download, whatever TTL the client displays."""
        path = _require_path(path)
        return await self.object_store.signed_url(path, self.settings.signed_url_ttl)

    # ---------------- translate ----------------
    async def translate(self, text: Any, languages: Sequence[str]) -> Dict[str, str]:
        self.ai_client.require_token()
        if not text or not isinstance(text, str):
            raise ValidationError("Missing text to translate.")
        wanted = list(dict.fromkeys(lang.strip() for lang in languages if isinstance(lang, str) and lang.strip()))
        if not wanted:
            raise ValidationError("Missing target language.")
        return await self.ai_client.translate(text, wanted)
