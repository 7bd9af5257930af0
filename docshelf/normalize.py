# docshelf/normalize.py
"""
Boundary normalization for names and tags.

Filenames become part of the storage path, so they are reduced to a safe
character set and forced to a ``.pdf`` extension. Tag input arrives in several
wire shapes (a list, a JSON array encoded as a string, or a comma-separated
string); ``parse_tags`` is the single place that turns any of them into the
canonical tuple of tags.
"""
import json
import logging
import posixpath
import re
from typing import Any, Iterable, Tuple

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_WHITESPACE = re.compile(r"\s+")

DEFAULT_FILENAME = "document.pdf"


def normalize_filename(name: str) -> str:
    """
    'My File' -> 'My_File.pdf'. Applying it to its own output returns the same value.
    """
    safe = _UNSAFE_CHARS.sub("_", (name or "").strip())
    if not safe:
        return DEFAULT_FILENAME
    if not safe.lower().endswith(".pdf"):
        safe = f"{safe}.pdf"
    return safe


def storage_path_for(name: str, prefix: str = "uploads") -> str:
    return f"{prefix}/{normalize_filename(name)}"


def display_name_from_path(path: str) -> str:
    return posixpath.basename(path) or DEFAULT_FILENAME


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def _clean(items: Iterable[Any]) -> Tuple[str, ...]:
    seen = []
    for item in items:
        if not isinstance(item, str):
            continue
        tag = item.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return tuple(seen)


def parse_tags(value: Any) -> Tuple[str, ...]:
    """
    Canonicalize tag input into de-duplicated, trimmed tags (first-seen order kept).

      "x, y"          -> ("x", "y")
      '["x","y"]'     -> ("x", "y")
      ["x", "y", "x"] -> ("x", "y")

    Unparseable input gives an empty tuple, never an error.
    """
    if value is None:
        return ()
    if isinstance(value, (list, tuple, set, frozenset)):
        return _clean(value)
    if not isinstance(value, str):
        return ()

    raw = value.strip()
    if not raw:
        return ()
    if raw.startswith("["):
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring unparseable tag payload: %.200s", raw)
            return ()
        if not isinstance(decoded, list):
            return ()
        return _clean(decoded)
    return _clean(raw.split(","))
