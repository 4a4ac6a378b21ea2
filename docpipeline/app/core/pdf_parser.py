# docpipeline/app/core/pdf_parser.py
import logging
from io import BytesIO
from typing import Optional

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

logger = logging.getLogger(__name__)

# Shorter than this is likely a scanned document or a failed extraction.
MIN_USABLE_TEXT_LENGTH = 50
# Fraction of tokens that must be plain ASCII words; garbled output fails this.
MIN_ASCII_WORD_RATIO = 0.5


class PDFParser:
    """Local text extraction for PDFs that carry a text layer."""

    def extract_text(self, data: bytes) -> str:
        if not data:
            raise ValueError("empty PDF data")
        reader = PdfReader(BytesIO(data))
        return self._extract_all(reader)

    def _extract_all(self, reader: PdfReader) -> str:
        pages = []
        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                pages.append(page_text)
        return "\n".join(pages).strip()

    def try_extract_usable_text(self, data: bytes) -> Optional[str]:
        """Return the text layer if it is good enough to skip the vision call."""
        try:
            text = self.extract_text(data)
        except (PdfReadError, ValueError, KeyError, TypeError) as exc:
            logger.info("Local PDF extraction failed, falling back to model: %s", exc)
            return None
        if not is_usable_text(text):
            logger.info("Local PDF text not usable (%d chars), falling back to model", len(text))
            return None
        return text


def is_usable_text(text: str) -> bool:
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_USABLE_TEXT_LENGTH:
        return False
    words = trimmed.split()
    if not words:
        return False
    ascii_words = sum(1 for w in words if w.isascii() and w.isprintable())
    return ascii_words / len(words) >= MIN_ASCII_WORD_RATIO
