# docshelf/pdf_text.py
import io
import logging
from typing import List

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from docshelf.errors import UnprocessableContentError
from docshelf.normalize import collapse_whitespace

logger = logging.getLogger(__name__)


def extract_pages(pdf_bytes: bytes) -> List[str]:
    """
    Extract text page by page. A page that fails to extract contributes an
    empty string so one bad page does not sink the whole document.
    """
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        pages = reader.pages
        page_count = len(pages)
    except (PdfReadError, ValueError, TypeError, KeyError) as e:
        logger.warning("Could not open PDF (%d bytes): %s", len(pdf_bytes), e)
        raise UnprocessableContentError("Could not read the PDF.") from e

    pages_text = []
    for i in range(page_count):
        try:
            text = pages[i].extract_text() or ""
        except Exception as e:
            logger.warning("Failed to extract text from page %s: %s", i + 1, e)
            text = ""
        pages_text.append(text)
    return pages_text


def extract_text(pdf_bytes: bytes) -> str:
    """Whole-document text with runs of whitespace collapsed to single spaces."""
    return collapse_whitespace(" ".join(extract_pages(pdf_bytes)))
