"""
PDF processing service.

Extracts embedded text with pypdf for the text-grounded strategy and, for
the scanned-PDF fallback, renders pages to PIL Images via pdf2image
(poppler).
"""

import base64
import io
import logging
from dataclasses import dataclass
from typing import BinaryIO

from PIL import Image
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..config import get_settings
from .fetcher import PDF_MAGIC

logger = logging.getLogger(__name__)


class PDFConversionError(Exception):
    """Raised when a PDF cannot be read or rendered."""

    pass


class InsufficientTextError(PDFConversionError):
    """
    Raised when a PDF carries too little embedded text.

    This is a property of the input (typically a scanned PDF), not a
    transport failure.
    """

    def __init__(self, length: int, minimum: int):
        self.length = length
        self.minimum = minimum
        super().__init__(
            f"PDF contains insufficient text: {length} characters (minimum {minimum})"
        )


@dataclass(frozen=True)
class DocumentText:
    """Text payload handed to the inference service."""

    text: str
    page_count: int | None
    truncated: bool
    full_length: int


def bound_text(text: str, max_chars: int, page_count: int | None = None) -> DocumentText:
    """Cut text to a bounded prefix, flagging truncation."""
    return DocumentText(
        text=text[:max_chars],
        page_count=page_count,
        truncated=len(text) > max_chars,
        full_length=len(text),
    )


class PDFService:
    """
    Service for PDF processing operations.

    Text extraction uses pypdf; page rendering uses pdf2image (backed by
    poppler).
    """

    def __init__(
        self,
        min_text_length: int | None = None,
        max_text_chars: int | None = None,
        max_pages: int | None = None,
        dpi: int | None = None,
        image_format: str = "PNG",
    ):
        """
        Initialize the PDF service.

        Args:
            min_text_length: Below this many characters the PDF is treated as scanned.
            max_text_chars: Size of the text prefix handed downstream.
            max_pages: Maximum number of pages read for text.
            dpi: Resolution for page rendering.
            image_format: Output image format for rendering (PNG recommended).
        """
        settings = get_settings()
        self.min_text_length = (
            min_text_length if min_text_length is not None else settings.min_text_length
        )
        self.max_text_chars = max_text_chars or settings.max_text_chars
        self.max_pages = max_pages or settings.max_pdf_pages
        self.dpi = dpi or settings.render_dpi
        self.image_format = image_format

    @staticmethod
    def _read_bytes(file_bytes: bytes | BinaryIO) -> bytes:
        if hasattr(file_bytes, "read"):
            return file_bytes.read()
        return file_bytes

    def extract_text(self, file_bytes: bytes | BinaryIO) -> DocumentText:
        """
        Convert a PDF to plain text.

        Args:
            file_bytes: PDF file as bytes or file-like object.

        Returns:
            DocumentText with the bounded text prefix and a truncation flag.

        Raises:
            PDFConversionError: If the PDF cannot be parsed.
            InsufficientTextError: If the embedded text is below the minimum length.
        """
        pdf_bytes = self._read_bytes(file_bytes)

        if not pdf_bytes:
            raise PDFConversionError("Empty PDF file provided")

        if not pdf_bytes.startswith(PDF_MAGIC):
            raise PDFConversionError("Invalid PDF file: does not start with PDF header")

        try:
            reader = PdfReader(io.BytesIO(pdf_bytes))
            page_count = len(reader.pages)
            page_texts = []
            for page_number, page in enumerate(reader.pages[: self.max_pages], start=1):
                try:
                    page_text = page.extract_text() or ""
                except Exception as e:
                    logger.warning("Text extraction failed on page %d: %s", page_number, e)
                    continue
                if page_text.strip():
                    page_texts.append(page_text.strip())
        except PdfReadError as e:
            logger.error("PDF read error: %s", e)
            raise PDFConversionError(f"Invalid or corrupted PDF file: {e}") from e
        except Exception as e:
            logger.exception("Unexpected error during PDF text extraction")
            raise PDFConversionError(f"PDF text extraction failed: {e}") from e

        full_text = "\n\n".join(page_texts)
        logger.info(
            "PDF parse results: %d pages, %d characters", page_count, len(full_text)
        )

        if len(full_text) < self.min_text_length:
            raise InsufficientTextError(len(full_text), self.min_text_length)

        return bound_text(full_text, self.max_text_chars, page_count)

    def render_pages(
        self,
        file_bytes: bytes | BinaryIO,
        max_pages: int | None = None,
    ) -> list[Image.Image]:
        """
        Render the first pages of a PDF to PIL Images.

        Args:
            file_bytes: PDF file as bytes or file-like object.
            max_pages: Number of leading pages to render. Defaults to settings.

        Returns:
            List of PIL Image objects, one per rendered page.

        Raises:
            PDFConversionError: If rendering fails for any reason.
        """
        try:
            # Import here to provide clear error if poppler bindings are missing
            from pdf2image import convert_from_bytes
            from pdf2image.exceptions import (
                PDFInfoNotInstalledError,
                PDFPageCountError,
                PDFSyntaxError,
            )
        except ImportError as e:
            logger.error("pdf2image not installed: %s", e)
            raise PDFConversionError(
                "pdf2image library not installed. Run: pip install pdf2image"
            ) from e

        pdf_bytes = self._read_bytes(file_bytes)
        if not pdf_bytes:
            raise PDFConversionError("Empty PDF file provided")

        last_page = max_pages or get_settings().render_max_pages

        try:
            logger.info("Rendering PDF pages (dpi=%d, pages=1-%d)", self.dpi, last_page)
            images = convert_from_bytes(
                pdf_bytes,
                dpi=self.dpi,
                fmt=self.image_format.lower(),
                first_page=1,
                last_page=last_page,
                thread_count=2,
            )
            logger.info("Successfully rendered %d page(s)", len(images))
            return images

        except PDFInfoNotInstalledError as e:
            logger.error("Poppler not installed: %s", e)
            raise PDFConversionError(
                "Poppler not installed. Install poppler-utils: "
                "brew install poppler (macOS) or apt-get install poppler-utils (Linux)"
            ) from e

        except (PDFPageCountError, PDFSyntaxError) as e:
            logger.error("Could not render PDF: %s", e)
            raise PDFConversionError(f"Invalid or corrupted PDF file: {e}") from e

        except Exception as e:
            logger.exception("Unexpected error during PDF rendering")
            raise PDFConversionError(f"PDF rendering failed: {e}") from e

    def image_to_data_url(self, image: Image.Image, max_size: int = 2048) -> str:
        """
        Encode a PIL Image as a base64 PNG data URL for the vision API.

        Images larger than ``max_size`` on their longest side are downscaled.
        """
        if max(image.size) > max_size:
            ratio = max_size / max(image.size)
            new_size = (int(image.size[0] * ratio), int(image.size[1] * ratio))
            image = image.resize(new_size, Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        image.save(buffer, format="PNG", optimize=True)
        encoded = base64.b64encode(buffer.getvalue()).decode("utf-8")
        return f"data:image/png;base64,{encoded}"


# Singleton instance for convenience
_pdf_service: PDFService | None = None


def get_pdf_service() -> PDFService:
    """Get or create the PDF service singleton."""
    global _pdf_service
    if _pdf_service is None:
        _pdf_service = PDFService()
    return _pdf_service
