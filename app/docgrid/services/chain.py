"""
Extraction strategy chain.

A chain runs a primary strategy, an optional replacement when the primary
raises outright, and an optional secondary strategy when too few columns
succeed. Secondary results only fill zero-confidence slots.
"""

import logging
from dataclasses import dataclass

from ..config import get_settings
from ..models import ColumnDefinition, ExtractionResult, FileType
from .ai import AIService
from .fetcher import BinaryFetcher
from .normalizer import count_successes, merge_fallback
from .pdf_service import PDFService
from .strategies import (
    ContentReference,
    DirectMultimodalStrategy,
    ExtractionStrategy,
    PDFTextSource,
    RawUrlStrategy,
    RenderedPagesStrategy,
    TextGroundedStrategy,
    TranscriptionTextSource,
)

logger = logging.getLogger(__name__)


@dataclass
class StrategyChain:
    """
    Ordered strategies for one file type.

    Attributes:
        primary: Strategy tried first.
        on_error: Replaces the primary when it raises.
        secondary: Fills failed slots when successes fall below the threshold.
        success_threshold: Fraction of columns that must succeed to skip the secondary.
    """

    primary: ExtractionStrategy
    on_error: ExtractionStrategy | None = None
    secondary: ExtractionStrategy | None = None
    success_threshold: float = 0.5

    def needs_secondary(self, results: list[ExtractionResult]) -> bool:
        if not results:
            return False
        return count_successes(results) < self.success_threshold * len(results)

    async def run(
        self, columns: list[ColumnDefinition], reference: ContentReference
    ) -> list[ExtractionResult]:
        """
        Extract the columns for one document. Never raises.

        Returns:
            Exactly one result per column, in column order.
        """
        if not columns:
            return []

        outcome = await self.primary.run(columns, reference)
        results = outcome.results

        if outcome.error is not None and self.on_error is not None:
            logger.warning(
                "%s raised for document %s, falling back to %s",
                self.primary.label,
                reference.document_id,
                self.on_error.label,
            )
            replacement = await self.on_error.run(columns, reference)
            results = merge_fallback(results, replacement.results)

        if self.secondary is not None and self.needs_secondary(results):
            failed_ids = {result.column_id for result in results if not result.succeeded}
            failed_columns = [col for col in columns if col.id in failed_ids]
            logger.warning(
                "Only %d/%d columns succeeded for document %s, trying %s",
                count_successes(results),
                len(results),
                reference.document_id,
                self.secondary.label,
            )
            fallback = await self.secondary.run(failed_columns, reference)
            results = merge_fallback(results, fallback.results)

        logger.info(
            "Extracted %d/%d columns for document %s",
            count_successes(results),
            len(results),
            reference.document_id,
        )
        return results


class StrategyChainFactory:
    """Builds the chain for a file type from shared service instances."""

    def __init__(
        self,
        ai_service: AIService,
        fetcher: BinaryFetcher,
        pdf_service: PDFService,
        success_threshold: float | None = None,
        scanned_pdf_fallback: bool | None = None,
    ):
        settings = get_settings()
        self.ai_service = ai_service
        self.fetcher = fetcher
        self.pdf_service = pdf_service
        self.success_threshold = (
            success_threshold if success_threshold is not None else settings.success_threshold
        )
        self.scanned_pdf_fallback = (
            scanned_pdf_fallback
            if scanned_pdf_fallback is not None
            else settings.scanned_pdf_fallback
        )

    def for_file_type(self, file_type: FileType | str) -> StrategyChain:
        if FileType(file_type) == FileType.PDF:
            return self._pdf_chain()
        # Unknown types take the image route
        return self._image_chain()

    def _image_chain(self) -> StrategyChain:
        return StrategyChain(
            primary=DirectMultimodalStrategy(self.ai_service),
            on_error=RawUrlStrategy(self.ai_service),
            secondary=TextGroundedStrategy(
                self.ai_service,
                TranscriptionTextSource(self.ai_service, max_chars=8000),
                label="Text fallback",
                version="text-fallback-v1",
            ),
            success_threshold=self.success_threshold,
        )

    def _pdf_chain(self) -> StrategyChain:
        secondary = None
        if self.scanned_pdf_fallback:
            secondary = RenderedPagesStrategy(self.ai_service, self.fetcher, self.pdf_service)
        return StrategyChain(
            primary=TextGroundedStrategy(
                self.ai_service,
                PDFTextSource(self.fetcher, self.pdf_service),
            ),
            secondary=secondary,
            success_threshold=self.success_threshold,
        )
