"""
Text Extractor
Turns raw document bytes into plain text with a page map, using unstructured.io
for binary formats and OCR.
"""
import asyncio
import io
import os
from typing import Dict, List, Optional

import structlog
from unstructured.documents.elements import Element
from unstructured.partition.auto import partition

from docqa.config import get_settings
from docqa.exceptions import ExtractionError
from docqa.models.schemas import ExtractedText, PageSpan

logger = structlog.get_logger()

PDF_MIME_TYPE = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

GOOGLE_WORKSPACE_MIME_TYPES = (
    "application/vnd.google-apps.document",
    "application/vnd.google-apps.presentation",
    "application/vnd.google-apps.spreadsheet",
)

# Decoded directly as UTF-8
TEXT_MIME_TYPES = ("text/plain", "text/csv", "text/markdown") + GOOGLE_WORKSPACE_MIME_TYPES

IMAGE_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/tiff",
)

# Accepted by the upload endpoint
UPLOAD_MIME_TYPES = (PDF_MIME_TYPE, DOCX_MIME_TYPE, "text/plain") + IMAGE_MIME_TYPES

# Extension fallback when sniffing cannot identify the type
EXTENSION_MIME_TYPES = {
    "pdf": PDF_MIME_TYPE,
    "docx": DOCX_MIME_TYPE,
    "txt": "text/plain",
    "csv": "text/csv",
    "md": "text/markdown",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
}

_PAGE_SEPARATOR = "\n\n"
_ELEMENT_SEPARATOR = "\n\n"


def is_supported_mime_type(mime_type: str) -> bool:
    return (
        mime_type in TEXT_MIME_TYPES
        or mime_type in IMAGE_MIME_TYPES
        or mime_type in (PDF_MIME_TYPE, DOCX_MIME_TYPE)
    )


def detect_mime_type(data: bytes, filename: str) -> str:
    """
    Detect MIME type using python-magic, falling back to the file extension.

    Raises:
        ExtractionError: If neither identifies a supported type
    """
    import magic

    mime_type = magic.from_buffer(data[:2048], mime=True)
    logger.info("Detected file type", filename=filename, mime_type=mime_type)
    if is_supported_mime_type(mime_type):
        return mime_type

    ext = os.path.splitext(filename)[1].lower().lstrip(".")
    if ext in EXTENSION_MIME_TYPES:
        logger.warning("MIME detection failed, using extension", mime_type=mime_type, extension=ext)
        return EXTENSION_MIME_TYPES[ext]

    raise ExtractionError(
        f"Unsupported file type: {mime_type}",
        details={"filename": filename, "mime_type": mime_type},
    )


def single_page(text: str) -> ExtractedText:
    """Wrap text with no page structure as one page."""
    if not text:
        return ExtractedText(text="", page_count=1, pages=[])
    return ExtractedText(
        text=text,
        page_count=1,
        pages=[PageSpan(page_number=1, text=text, start_position=0, end_position=len(text))],
    )


def elements_to_text(elements: List[Element]) -> ExtractedText:
    """Group element text by page and record each page's offsets in the joined text."""
    grouped: Dict[int, List[str]] = {}
    for element in elements:
        text = (getattr(element, "text", "") or "").strip()
        if not text:
            continue
        page_number = getattr(element.metadata, "page_number", None) or 1
        grouped.setdefault(page_number, []).append(text)

    pages: List[PageSpan] = []
    position = 0
    for page_number in sorted(grouped):
        page_text = _ELEMENT_SEPARATOR.join(grouped[page_number])
        if pages:
            position += len(_PAGE_SEPARATOR)
        pages.append(
            PageSpan(
                page_number=page_number,
                text=page_text,
                start_position=position,
                end_position=position + len(page_text),
            )
        )
        position += len(page_text)

    return ExtractedText(
        text=_PAGE_SEPARATOR.join(page.text for page in pages),
        page_count=max(grouped, default=1),
        pages=pages,
    )


class TextExtractor:
    """Extracts plain text from uploaded or downloaded documents."""

    def __init__(self):
        self.settings = get_settings()

    async def extract(
        self,
        data: bytes,
        mime_type: Optional[str],
        filename: str,
    ) -> ExtractedText:
        """
        Extract text and page map from document bytes.

        Args:
            data: Raw file content
            mime_type: Declared MIME type, sniffed from the bytes when missing
            filename: Original filename, used for logging and format hints

        Returns:
            ExtractedText; ``text`` is empty when nothing was recoverable

        Raises:
            ExtractionError: If the type is unsupported or the bytes are unreadable
        """
        if not mime_type or mime_type == "application/octet-stream":
            mime_type = detect_mime_type(data, filename)

        logger.info("Extracting text", filename=filename, mime_type=mime_type, size_bytes=len(data))

        if mime_type in TEXT_MIME_TYPES:
            return single_page(self._decode(data, filename))

        if mime_type in IMAGE_MIME_TYPES:
            if not self.settings.ocr_enabled:
                logger.warning("OCR disabled, skipping image", filename=filename)
                return single_page("")
            return await self._partition(data, mime_type, filename, strategy="hi_res")

        if mime_type == PDF_MIME_TYPE:
            strategy = "auto" if self.settings.ocr_enabled else "fast"
            extracted = await self._partition(data, mime_type, filename, strategy=strategy)
            if self.settings.ocr_enabled and len(extracted.text.strip()) < self.settings.ocr_min_text_length:
                logger.info(
                    "PDF looks scanned, re-running with OCR",
                    filename=filename,
                    extracted_length=len(extracted.text),
                )
                ocr_extracted = await self._partition(data, mime_type, filename, strategy="ocr_only")
                if len(ocr_extracted.text) > len(extracted.text):
                    extracted = ocr_extracted
            return extracted

        if mime_type == DOCX_MIME_TYPE:
            return await self._partition(data, mime_type, filename, strategy="fast")

        raise ExtractionError(
            f"Unsupported file type: {mime_type}",
            details={"filename": filename, "mime_type": mime_type},
        )

    def _decode(self, data: bytes, filename: str) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ExtractionError(
                "Error extracting text from document. The file is not valid UTF-8 text.",
                details={"filename": filename},
            ) from e

    async def _partition(
        self,
        data: bytes,
        mime_type: str,
        filename: str,
        strategy: str,
    ) -> ExtractedText:
        """Partition with the given strategy, retrying once with 'fast' on failure."""
        try:
            elements = await asyncio.to_thread(
                self._run_partition, data, mime_type, filename, strategy
            )
        except Exception as parse_error:
            if strategy == "fast":
                logger.error("Failed to parse document", filename=filename, error=str(parse_error))
                raise ExtractionError(details={"filename": filename}) from parse_error

            logger.warning(
                "Primary parsing strategy failed, falling back to 'fast'",
                strategy=strategy,
                filename=filename,
                error=str(parse_error),
            )
            try:
                elements = await asyncio.to_thread(
                    self._run_partition, data, mime_type, filename, "fast"
                )
            except Exception as e:
                logger.error("Failed to parse document after fallback", filename=filename, error=str(e))
                raise ExtractionError(details={"filename": filename}) from e

        extracted = elements_to_text(elements)
        logger.info(
            "Document parsed successfully",
            filename=filename,
            strategy=strategy,
            element_count=len(elements),
            pages=extracted.page_count,
            text_length=len(extracted.text),
        )
        return extracted

    @staticmethod
    def _run_partition(data: bytes, mime_type: str, filename: str, strategy: str) -> List[Element]:
        return partition(
            file=io.BytesIO(data),
            content_type=mime_type,
            metadata_filename=filename,
            strategy=strategy,
            include_page_breaks=True,
        )


# Singleton instance
_text_extractor: Optional[TextExtractor] = None


def get_text_extractor() -> TextExtractor:
    """Get singleton text extractor instance."""
    global _text_extractor
    if _text_extractor is None:
        _text_extractor = TextExtractor()
    return _text_extractor
