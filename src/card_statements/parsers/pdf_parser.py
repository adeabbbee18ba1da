"""Plain-text extraction from decrypted PDF statements."""

import io
import logging
import os
from typing import Union

import pdfplumber

from ..models.core import ExtractedText
from ..utils.error_handler import ExtractionFailed


logger = logging.getLogger(__name__)


class TextExtractor:
    """Extracts page text with pdfplumber.

    Extraction is deterministic, so failures are raised immediately and
    never retried.
    """

    def __init__(self, min_text_length: int = 1, page_separator: str = "\n"):
        self.min_text_length = min_text_length
        self.page_separator = page_separator

    def extract(self, source: Union[bytes, str]) -> ExtractedText:
        """Extract text from PDF bytes or a PDF file path

        Raises:
            ExtractionFailed: On zero pages, an unreadable stream, or no text at all
        """
        label = source if isinstance(source, str) else f"<{len(source)} bytes>"
        if isinstance(source, str) and not os.path.exists(source):
            raise ExtractionFailed(f"Document not found: {source}")
        if isinstance(source, bytes) and not source:
            raise ExtractionFailed("Document is empty")

        handle = source if isinstance(source, str) else io.BytesIO(source)
        try:
            with pdfplumber.open(handle) as pdf:
                page_count = len(pdf.pages)
                if page_count == 0:
                    raise ExtractionFailed(f"Document has no pages: {label}")

                page_texts = []
                for page_num, page in enumerate(pdf.pages, 1):
                    text = page.extract_text() or ""
                    logger.debug(f"Page {page_num}: {len(text)} characters")
                    page_texts.append(text)
        except ExtractionFailed:
            raise
        except Exception as e:
            # pdfminer raises a wide family of syntax errors for broken streams
            raise ExtractionFailed(f"Unreadable PDF stream ({label}): {e}") from e

        text = self.page_separator.join(page_texts)
        if len(text.strip()) < self.min_text_length:
            raise ExtractionFailed(
                f"No extractable text in {page_count} page(s); the statement may be a scanned image"
            )

        logger.info(f"Extracted {len(text)} characters from {page_count} page(s)")
        return ExtractedText(text=text, page_count=page_count)
