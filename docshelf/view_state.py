# docshelf/view_state.py
"""
Client-side view model of the document library.

Holds the last list snapshot (always replaced wholesale after an action), the
current selection with its tab, cached preview link and transient summary, and
a small per-card state machine:

    idle -> previewing   (selected and preview loading/shown)
    idle -> editing      (rename/retag form open)
    idle -> summarizing  (summary request in flight)

Only one request per (path, operation) is ever in flight: triggering the same
action again while it runs awaits the running request instead of racing it.
Saves are the exception when the body differs: they queue behind the running
save so the last one wins. Results that arrive after the selection has moved
on are dropped, and a refresh after an action always issues a new list request.

The preview link is cached for ``preview_ttl`` seconds (15 minutes). The server
only grants 60 seconds, so the countdown is advisory UI state; a link can
expire at the store before the local countdown lapses.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from docshelf.client import LibraryClient, LibraryClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PREVIEW_TTL = 15 * 60
LIST_KEY = "*"


class CardState(str, Enum):
    IDLE = "idle"
    EDITING = "editing"
    SUMMARIZING = "summarizing"
    PREVIEWING = "previewing"


class Tab(str, Enum):
    PREVIEW = "preview"
    SUMMARY = "summary"
    NOTE = "note"


@dataclass(frozen=True)
class PreviewLink:
    path: str
    url: str
    expires_at: float

    def expired(self, now: float) -> bool:
        return now >= self.expires_at


def format_bytes(value: Optional[float]) -> str:
    if not value:
        return "-"
    units = ["B", "KB", "MB", "GB"]
    size = float(value)
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    digits = 0 if size >= 10 or unit == 0 else 1
    return f"{size:.{digits}f} {units[unit]}"


class LibraryView:
    def __init__(
        self,
        client: LibraryClient,
        *,
        clock: Callable[[], float] = time.monotonic,
        preview_ttl: float = DEFAULT_PREVIEW_TTL,
    ):
        self.client = client
        self.clock = clock
        self.preview_ttl = preview_ttl

        self.documents: List[Dict[str, Any]] = []
        self.status = "Ready"
        self.is_loading = False
        self.selected_path: Optional[str] = None
        self.active_tab = Tab.PREVIEW
        self.summary_text: Optional[str] = None
        self.translations: Dict[str, str] = {}
        self.error: Optional[str] = None

        self._preview: Optional[PreviewLink] = None
        self._cards: Dict[str, CardState] = {}
        self._inflight: Dict[Tuple[str, str], "asyncio.Future[Any]"] = {}
        self._selection = 0
        self._writes: Dict[Tuple[str, str], Tuple[Any, "asyncio.Future[Any]"]] = {}
        self._list_issued = 0
        self._list_applied = 0

    # ---------------- derived state ----------------
    def card_state(self, path: str) -> CardState:
        return self._cards.get(path, CardState.IDLE)

    def in_flight(self, path: str, operation: str) -> bool:
        key = (path, operation)
        return key in self._inflight or key in self._writes

    @property
    def selected_document(self) -> Optional[Dict[str, Any]]:
        if self.selected_path is None:
            return None
        for doc in self.documents:
            if doc.get("path") == self.selected_path:
                return doc
        return None

    @property
    def summary_display(self) -> Optional[str]:
        if self.summary_text is not None:
            return self.summary_text
        doc = self.selected_document
        return doc.get("summary") if doc else None

    @property
    def total_size(self) -> int:
        return sum(doc.get("size") or 0 for doc in self.documents)

    @property
    def preview_url(self) -> Optional[str]:
        """Cached link for the selection, or None once the local countdown has lapsed."""
        preview = self._preview
        if preview is None or preview.path != self.selected_path:
            return None
        if preview.expired(self.clock()):
            self._preview = None
            return None
        return preview.url

    def search(self, query: str) -> List[Dict[str, Any]]:
        q = (query or "").strip().lower()
        if not q:
            return list(self.documents)
        return [
            doc for doc in self.documents
            if q in (doc.get("name") or "").lower()
            or any(q in tag.lower() for tag in doc.get("tag") or [])
        ]

    def _name(self, path: str) -> str:
        for doc in self.documents:
            if doc.get("path") == path:
                return doc.get("name") or path
        return path

    def _settle(self, path: str) -> None:
        if path == self.selected_path and self._preview is not None and self._preview.path == path:
            self._cards[path] = CardState.PREVIEWING
        else:
            self._cards.pop(path, None)

    def _fail(self, e: LibraryClientError) -> None:
        self.error = e.message
        self.status = e.message

    async def _single_flight(self, path: str, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        key = (path, operation)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _done(finished, key=key):
                if self._inflight.get(key) is finished:
                    del self._inflight[key]

            task.add_done_callback(_done)
        return await asyncio.shield(task)

    async def _queued_write(self, path: str, operation: str, payload: Any, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Writes for the same (path, operation) run one after another in call
        order, so the last call wins. A call whose payload matches the newest
        queued write joins it instead of sending the same body twice.
        """
        key = (path, operation)
        latest = self._writes.get(key)
        if latest is not None and latest[0] == payload:
            return await asyncio.shield(latest[1])
        previous = latest[1] if latest is not None else None

        async def _after_previous():
            if previous is not None:
                await asyncio.wait([previous])
            return await factory()

        task = asyncio.ensure_future(_after_previous())
        self._writes[key] = (payload, task)

        def _done(finished, key=key):
            current = self._writes.get(key)
            if current is not None and current[1] is finished:
                del self._writes[key]

        task.add_done_callback(_done)
        return await asyncio.shield(task)

    # ---------------- list ----------------
    def _start_list(self) -> Awaitable[Tuple[int, List[Dict[str, Any]]]]:
        self._list_issued += 1
        return self._fetch_list(self._list_issued)

    async def _fetch_list(self, seq: int) -> Tuple[int, List[Dict[str, Any]]]:
        return seq, await self.client.list_documents()

    async def refresh(self, *, force: bool = False) -> bool:
        """
        Reload the snapshot. A plain refresh joins a list request already in
        flight; ``force`` always issues a new one, since a request started
        before an action may have been answered before the action landed.
        Snapshots older than the one already shown are discarded.
        """
        if force:
            self._inflight.pop((LIST_KEY, "list"), None)
        self.is_loading = True
        try:
            seq, items = await self._single_flight(LIST_KEY, "list", self._start_list)
        except LibraryClientError as e:
            self._fail(e)
            return False
        finally:
            self.is_loading = False

        if seq < self._list_applied:
            logger.debug("Dropping list snapshot %d; %d is newer", seq, self._list_applied)
            return True
        self._list_applied = seq
        self.documents = items
        present = {doc.get("path") for doc in items}
        for path in list(self._cards):
            if path not in present:
                del self._cards[path]
        if self.selected_path is not None and self.selected_path not in present:
            self._clear_selection()
        self.status = "Library synced."
        return True

    async def upload(
        self,
        filename: str,
        content: bytes,
        *,
        document_name: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> Optional[str]:
        if not content:
            self.status = "Choose a PDF before uploading."
            return None
        self.status = "Uploading..."
        try:
            result = await self.client.upload(filename, content, document_name=document_name, tags=tags)
        except LibraryClientError as e:
            self._fail(e)
            return None
        await self.refresh(force=True)
        self.status = "Upload complete."
        return result.get("path")

    # ---------------- selection & preview ----------------
    def _clear_selection(self) -> None:
        if self.selected_path is not None and self.card_state(self.selected_path) == CardState.PREVIEWING:
            self._cards.pop(self.selected_path, None)
        self._selection += 1
        self.selected_path = None
        self._preview = None
        self.summary_text = None
        self.translations = {}
        self.error = None
        self.active_tab = Tab.PREVIEW

    def _reset_selection(self, path: str) -> None:
        self._clear_selection()
        self.selected_path = path

    async def select(self, path: str) -> Optional[str]:
        self._reset_selection(path)
        return await self.load_preview()

    async def load_preview(self) -> Optional[str]:
        """Return the preview link for the selection, fetching a fresh one if the cached link lapsed."""
        path = self.selected_path
        if path is None:
            return None
        cached = self.preview_url
        if cached is not None:
            return cached

        selection = self._selection
        if self.card_state(path) == CardState.IDLE:
            self._cards[path] = CardState.PREVIEWING
        self.status = f"Loading preview for {self._name(path)}..."
        try:
            url = await self._single_flight(path, "preview", lambda: self.client.signed_url(path))
        except LibraryClientError as e:
            if selection == self._selection:
                self._fail(e)
                if self.card_state(path) == CardState.PREVIEWING:
                    self._cards.pop(path, None)
            return None

        if selection != self._selection:
            logger.debug("Dropping preview for %s; selection changed", path)
            return None
        self._preview = PreviewLink(path=path, url=url, expires_at=self.clock() + self.preview_ttl)
        self.status = "Preview ready."
        return url

    async def open_tab(self, tab: Tab) -> None:
        if self.selected_path is None:
            return
        self.active_tab = Tab(tab)
        if self.active_tab == Tab.PREVIEW:
            await self.load_preview()

    async def download_link(self, path: str) -> Optional[str]:
        self.status = "Preparing download link..."
        try:
            url = await self._single_flight(path, "download", lambda: self.client.signed_url(path))
        except LibraryClientError as e:
            self._fail(e)
            return None
        self.status = "Download link ready."
        return url

    # ---------------- summary & translation ----------------
    async def summarize(self, path: str) -> Optional[str]:
        if self.card_state(path) == CardState.EDITING:
            self.status = "Finish editing before summarizing."
            return None
        if path != self.selected_path:
            self._reset_selection(path)
        else:
            self.summary_text = None
        self.active_tab = Tab.SUMMARY
        selection = self._selection
        self._cards[path] = CardState.SUMMARIZING
        self.status = f"Summarizing {self._name(path)}..."
        try:
            summary = await self._single_flight(path, "summarize", lambda: self.client.summarize(path))
        except LibraryClientError as e:
            if selection == self._selection:
                self._fail(e)
            return None
        finally:
            self._settle(path)

        if selection == self._selection:
            self.summary_text = summary
        await self.refresh(force=True)
        self.status = "Summary ready."
        return summary

    def clear_summary(self) -> None:
        self.summary_text = None
        self.translations = {}

    async def translate(self, languages: Sequence[str]) -> Dict[str, str]:
        text = self.summary_display
        if not text:
            self.status = "Nothing to translate."
            return {}
        selection = self._selection
        self.status = "Translating..."
        try:
            translations = await self.client.translate(text, languages)
        except LibraryClientError as e:
            if selection == self._selection:
                self._fail(e)
            return {}
        if selection == self._selection:
            self.translations = translations
            self.status = "Translation ready."
        return translations

    # ---------------- edit, note, delete ----------------
    def start_edit(self, path: str) -> bool:
        if self.card_state(path) == CardState.SUMMARIZING:
            return False
        self._cards[path] = CardState.EDITING
        return True

    def cancel_edit(self, path: str) -> None:
        if self.card_state(path) == CardState.EDITING:
            self._cards.pop(path, None)
            self._settle(path)

    async def save_edit(self, path: str, document_name: str, tags: Any = None) -> bool:
        self.status = "Saving changes..."
        try:
            await self._queued_write(
                path,
                "edit",
                (document_name, tags),
                lambda: self.client.update(path, document_name=document_name, tags=tags),
            )
        except LibraryClientError as e:
            self._fail(e)
            return False
        if self.card_state(path) == CardState.EDITING:
            self._cards.pop(path, None)
            self._settle(path)
        await self.refresh(force=True)
        self.status = "Document updated."
        return True

    async def save_note(self, path: str, note: Optional[str]) -> bool:
        self.status = "Saving note..."
        try:
            await self._queued_write(
                path, "note", note, lambda: self.client.update(path, note=note, send_note=True)
            )
        except LibraryClientError as e:
            self._fail(e)
            return False
        await self.refresh(force=True)
        self.status = "Note saved."
        return True

    async def delete(self, path: str) -> bool:
        self.status = "Removing file..."
        try:
            await self._single_flight(path, "delete", lambda: self.client.delete(path))
        except LibraryClientError as e:
            self._fail(e)
            return False
        if path == self.selected_path:
            self._clear_selection()
        self._cards.pop(path, None)
        await self.refresh(force=True)
        self.status = "File removed."
        return True
