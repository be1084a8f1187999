"""
Extraction strategies.

Every strategy maps (columns, content reference) to one ExtractionResult per
column behind the shared ``ExtractionStrategy`` interface. ``extract`` may
raise; ``run`` is the strategy boundary that turns any exception into
zero-confidence results carrying a diagnostic string.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Protocol

from ..config import get_settings
from ..models import ColumnDefinition, ExtractionMethod, ExtractionResult, FileType, Provenance
from .ai import AIService, batch_model
from .fetcher import BinaryFetcher
from .normalizer import failure_results, normalize_results
from .pdf_service import DocumentText, InsufficientTextError, PDFService, bound_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentReference:
    """Where a document lives and how it should be routed."""

    document_id: str
    url: str
    file_type: FileType


@dataclass
class StrategyOutcome:
    """Results of one strategy run plus the error it raised, if any."""

    results: list[ExtractionResult]
    error: Exception | None = field(default=None)


class ExtractionStrategy(ABC):
    """Base class for all strategies."""

    #: Human-readable label used in diagnostics
    label: str = "Extraction"
    #: Version recorded in provenance
    version: str = "v1"

    def __init__(self, ai_service: AIService):
        self.ai_service = ai_service

    def provenance(
        self, columns: list[ColumnDefinition], failed: bool = False
    ) -> Provenance:
        return Provenance(
            method=ExtractionMethod.AI,
            model=batch_model(columns, self.ai_service.model),
            version=f"{self.version}-failed" if failed else self.version,
        )

    @abstractmethod
    async def extract(
        self, columns: list[ColumnDefinition], reference: ContentReference
    ) -> list[ExtractionResult]:
        """Extract the columns. May raise any exception."""

    async def run(
        self, columns: list[ColumnDefinition], reference: ContentReference
    ) -> StrategyOutcome:
        """
        Run the strategy, never raising.

        Returns:
            StrategyOutcome whose results hold exactly one entry per column.
        """
        try:
            results = await self.extract(columns, reference)
            return StrategyOutcome(results=results)
        except Exception as e:
            logger.warning(
                "%s failed for document %s: %s", self.label, reference.document_id, e
            )
            diagnostic = f"{self.label} failed: {e}"
            return StrategyOutcome(
                results=failure_results(
                    columns, diagnostic, self.provenance(columns, failed=True)
                ),
                error=e,
            )


# =============================================================================
# Text Sources
# =============================================================================


class TextSource(Protocol):
    """Supplies the bounded text a text-grounded strategy works from."""

    async def __call__(self, reference: ContentReference) -> DocumentText: ...


class PDFTextSource:
    """Downloads a PDF and extracts its embedded text."""

    def __init__(self, fetcher: BinaryFetcher, pdf_service: PDFService):
        self.fetcher = fetcher
        self.pdf_service = pdf_service

    async def __call__(self, reference: ContentReference) -> DocumentText:
        pdf_bytes = await self.fetcher.fetch(reference.url, FileType.PDF)
        # pypdf parsing is CPU bound; keep it off the event loop
        return await asyncio.to_thread(self.pdf_service.extract_text, pdf_bytes)


class TranscriptionTextSource:
    """Asks the vision model to transcribe all readable text of a document."""

    def __init__(self, ai_service: AIService, min_length: int = 10, max_chars: int | None = None):
        self.ai_service = ai_service
        self.min_length = min_length
        self.max_chars = max_chars or get_settings().max_text_chars

    async def __call__(self, reference: ContentReference) -> DocumentText:
        text = (await self.ai_service.transcribe(reference.url)).strip()
        if len(text) < self.min_length:
            raise InsufficientTextError(len(text), self.min_length)
        logger.info("Transcribed %d characters from %s", len(text), reference.document_id)
        return bound_text(text, self.max_chars)


# =============================================================================
# Strategies
# =============================================================================


class DirectMultimodalStrategy(ExtractionStrategy):
    """One vision call carrying every column prompt and the document URL."""

    label = "Image extraction"
    version = "vision-api-v1"

    async def extract(self, columns, reference):
        raw = await self.ai_service.extract_from_visual(columns, [reference.url])
        return normalize_results(raw, columns, self.provenance(columns))


class TextGroundedStrategy(ExtractionStrategy):
    """Obtains document text, then runs one text-only call for all columns."""

    def __init__(
        self,
        ai_service: AIService,
        text_source: TextSource,
        label: str = "PDF extraction",
        version: str = "text-extraction-v1",
    ):
        super().__init__(ai_service)
        self.text_source = text_source
        self.label = label
        self.version = version

    async def extract(self, columns, reference):
        document_text = await self.text_source(reference)
        raw = await self.ai_service.extract_from_text(
            columns, document_text.text, document_text.truncated
        )
        return normalize_results(raw, columns, self.provenance(columns))


class RawUrlStrategy(ExtractionStrategy):
    """
    One call per column, handing the service the document URL directly.

    A failing column yields a zero-confidence diagnostic for that column
    only; the other columns keep their results.
    """

    label = "Direct URL extraction"
    version = "direct-url-v1"

    async def _extract_column(self, column, reference) -> ExtractionResult:
        try:
            raw = await self.ai_service.extract_column_from_url(column, reference.url)
        except Exception as e:
            logger.warning("Direct URL extraction failed for column %s: %s", column.id, e)
            return failure_results(
                [column], f"{self.label} failed: {e}", self.provenance([column], failed=True)
            )[0]
        return normalize_results([raw], [column], self.provenance([column]))[0]

    async def extract(self, columns, reference):
        return list(
            await asyncio.gather(*(self._extract_column(col, reference) for col in columns))
        )


class RenderedPagesStrategy(ExtractionStrategy):
    """Renders the first PDF pages and runs one vision call over them."""

    label = "Rendered page extraction"
    version = "rendered-pages-v1"

    def __init__(self, ai_service: AIService, fetcher: BinaryFetcher, pdf_service: PDFService):
        super().__init__(ai_service)
        self.fetcher = fetcher
        self.pdf_service = pdf_service

    async def extract(self, columns, reference):
        pdf_bytes = await self.fetcher.fetch(reference.url, FileType.PDF)
        images = await asyncio.to_thread(self.pdf_service.render_pages, pdf_bytes)
        data_urls = [self.pdf_service.image_to_data_url(image) for image in images]
        raw = await self.ai_service.extract_from_visual(columns, data_urls)
        return normalize_results(raw, columns, self.provenance(columns))
