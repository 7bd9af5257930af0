# docshelf/client.py
"""Async HTTP client for the docshelf API, used by the library view model."""
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)


class LibraryClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def read_json_safely(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    """Response body as JSON, or None if it is empty or not JSON."""
    if not resp.content:
        return None
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class LibraryClient:
    def __init__(self, http_client: httpx.AsyncClient):
        self.http = http_client

    async def _send(self, method: str, url: str, default_error: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise LibraryClientError(default_error) from e
        data = read_json_safely(resp)
        if resp.status_code >= 400 or not data or not data.get("ok"):
            message = (data or {}).get("error") or default_error
            raise LibraryClientError(message, resp.status_code)
        return data

    async def list_documents(self) -> List[Dict[str, Any]]:
        data = await self._send("GET", "/files", "Failed to load files.", headers={"Cache-Control": "no-store"})
        return list(data.get("items") or [])

    async def upload(
        self,
        filename: str,
        content: bytes,
        *,
        document_name: Optional[str] = None,
        tags: Optional[str] = None,
        content_type: str = "application/pdf",
    ) -> Dict[str, Any]:
        form = {}
        if document_name is not None:
            form["documentName"] = document_name
        if tags is not None:
            form["tags"] = tags
        data = await self._send(
            "POST",
            "/files",
            "Upload failed.",
            data=form,
            files={"file": (filename, content, content_type)},
        )
        return {"path": data.get("path"), "documentId": data.get("documentId")}

    async def signed_url(self, path: str) -> str:
        data = await self._send("GET", "/files", "Download failed.", params={"download": path})
        return data["url"]

    async def update(
        self,
        path: str,
        *,
        document_name: Optional[str] = None,
        tags: Any = None,
        note: Any = None,
        send_note: bool = False,
    ) -> None:
        body: Dict[str, Any] = {"path": path}
        if document_name is not None:
            body["documentName"] = document_name
        if tags is not None:
            body["tag"] = tags
        if send_note:
            body["note_taking"] = note
        await self._send("PATCH", "/files", "Update failed.", json=body)

    async def delete(self, path: str) -> None:
        await self._send("DELETE", "/files", "Delete failed.", json={"path": path})

    async def summarize(self, path: str) -> str:
        data = await self._send("POST", "/summarize", "Summary failed.", json={"path": path})
        return data.get("summary") or ""

    async def translate(self, text: str, languages: Sequence[str]) -> Dict[str, str]:
        data = await self._send(
            "POST",
            "/translate",
            "Translation failed.",
            json={"text": text, "targetLanguages": list(languages)},
        )
        return dict(data.get("translations") or {})
