"""
Services package for the document grid extraction application.

Contains:
- fetcher / file_types: blob downloads and routing by file type
- pdf_service: PDF text extraction and page rendering
- ai: OpenAI integration for column extraction
- strategies / chain / normalizer: extraction strategies and fallback
- state_machine / demo_guard / aggregator: processing rules
- store / pipeline: persistence and the extraction entry point
"""

from .ai import AIService
from .pdf_service import PDFService
from .pipeline import ExtractionPipeline

__all__ = ["AIService", "ExtractionPipeline", "PDFService"]
