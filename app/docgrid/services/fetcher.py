"""
Binary fetcher for documents held in blob storage.

Downloads document bytes by URL and validates the container signature so
that an HTML error page served by misconfigured storage is never handed to
the PDF parser.
"""

import logging

import httpx

from ..config import get_settings
from ..models import FileType

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class FetchError(Exception):
    """Raised when a document cannot be downloaded."""

    pass


class FetchTimeoutError(FetchError):
    """Raised when a download exceeds its timeout."""

    pass


class InvalidFormatError(Exception):
    """Raised when downloaded bytes do not match the expected format."""

    pass


class BinaryFetcher:
    """
    Downloads documents over HTTP with a bounded timeout.

    Every request carries an identifying User-Agent header.
    """

    def __init__(self, timeout: float | None = None, user_agent: str | None = None):
        """
        Initialize the fetcher.

        Args:
            timeout: Per-request timeout in seconds. Defaults to settings.
            user_agent: Client identification header. Defaults to settings.
        """
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.fetch_timeout_seconds
        self.user_agent = user_agent or settings.user_agent

    async def fetch(self, url: str, file_type: FileType | None = None) -> bytes:
        """
        Download a document.

        Args:
            url: Storage URL of the document.
            file_type: Expected type. PDFs get their signature verified.

        Returns:
            The raw document bytes.

        Raises:
            FetchError: On transport errors or non-2xx responses.
            FetchTimeoutError: When the download times out.
            InvalidFormatError: On an empty body or a bad PDF signature.
        """
        headers = {"User-Agent": self.user_agent, "Accept": "application/pdf,*/*"}
        logger.info("Downloading document from %s", url)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("Download timed out after %.1fs: %s", self.timeout, url)
            raise FetchTimeoutError(f"Download timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.warning("Download failed for %s: %s", url, e)
            raise FetchError(f"Failed to download document: {e}") from e

        if not response.is_success:
            raise FetchError(
                f"Failed to download document: HTTP {response.status_code}"
            )

        content = response.content
        logger.info(
            "Downloaded %d bytes (content-type=%s)",
            len(content),
            response.headers.get("content-type", "unknown"),
        )

        if not content:
            raise InvalidFormatError("Downloaded document is empty")

        if file_type == FileType.PDF:
            verify_pdf_signature(content)

        return content


def verify_pdf_signature(content: bytes) -> None:
    """
    Check the PDF magic header.

    Raises:
        InvalidFormatError: If the bytes do not start with %PDF.
    """
    if not content.startswith(PDF_MAGIC):
        header = content[:5].decode("ascii", errors="replace")
        raise InvalidFormatError(
            f"Invalid PDF file: header is '{header}', expected '%PDF'"
        )


# Singleton instance for convenience
_fetcher: BinaryFetcher | None = None


def get_fetcher() -> BinaryFetcher:
    """Get or create the fetcher singleton."""
    global _fetcher
    if _fetcher is None:
        _fetcher = BinaryFetcher()
    return _fetcher
