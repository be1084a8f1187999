"""Tests for extraction strategies and the strategy chain."""

from unittest.mock import MagicMock

import pytest
from PIL import Image

from app.docgrid.models import FileType
from app.docgrid.services.ai import ServiceResponseError, ServiceTimeoutError
from app.docgrid.services.chain import StrategyChainFactory
from app.docgrid.services.pdf_service import PDFService
from app.docgrid.services.strategies import (
    ContentReference,
    DirectMultimodalStrategy,
    RawUrlStrategy,
    RenderedPagesStrategy,
    TextGroundedStrategy,
)

IMAGE_URL = "https://blob.example.com/receipt.png"
PDF_URL = "https://blob.example.com/invoice.pdf"


def _image_ref() -> ContentReference:
    return ContentReference(document_id="doc-1", url=IMAGE_URL, file_type=FileType.IMAGE)


def _pdf_ref() -> ContentReference:
    return ContentReference(document_id="doc-2", url=PDF_URL, file_type=FileType.PDF)


@pytest.fixture
def factory(ai_stub, fetcher_stub) -> StrategyChainFactory:
    return StrategyChainFactory(
        ai_stub, fetcher_stub, PDFService(), success_threshold=0.5, scanned_pdf_fallback=False
    )


class TestChainSelection:
    """Tests for StrategyChainFactory.for_file_type."""

    def test_image_chain(self, factory):
        chain = factory.for_file_type(FileType.IMAGE)
        assert isinstance(chain.primary, DirectMultimodalStrategy)
        assert isinstance(chain.on_error, RawUrlStrategy)
        assert isinstance(chain.secondary, TextGroundedStrategy)
        assert chain.secondary.version == "text-fallback-v1"

    def test_unknown_routes_like_image(self, factory):
        """Test that unknown file types take the image route."""
        chain = factory.for_file_type(FileType.UNKNOWN)
        assert isinstance(chain.primary, DirectMultimodalStrategy)

    def test_pdf_chain_without_scanned_fallback(self, factory):
        chain = factory.for_file_type("pdf")
        assert isinstance(chain.primary, TextGroundedStrategy)
        assert chain.primary.version == "text-extraction-v1"
        assert chain.secondary is None

    def test_pdf_chain_with_scanned_fallback(self, ai_stub, fetcher_stub):
        factory = StrategyChainFactory(
            ai_stub, fetcher_stub, PDFService(), scanned_pdf_fallback=True
        )
        assert isinstance(factory.for_file_type(FileType.PDF).secondary, RenderedPagesStrategy)


class TestImageChain:
    """Tests for the image chain and its fallbacks."""

    @pytest.mark.asyncio
    async def test_low_success_invokes_secondary_for_failed_columns(
        self, factory, ai_stub, columns
    ):
        """Test that 1 of 4 successes triggers the text fallback for the other 3."""
        ai_stub.visual = {"title": ("Receipt", 0.9)}
        ai_stub.transcription = "Receipt from Acme dated 2024-05-01, total 12.50"
        ai_stub.text = {
            "date": ("2024-05-01", 0.8),
            "total": ("12.50", 0.85),
            "vendor": ("Acme", 0.9),
        }

        results = await factory.for_file_type(FileType.IMAGE).run(columns, _image_ref())

        assert [r.column_id for r in results] == ["title", "date", "total", "vendor"]
        assert all(r.confidence > 0 for r in results)
        assert results[0].provenance.version == "vision-api-v1"
        assert results[3].provenance.version == "text-fallback-v1"
        assert ai_stub.methods() == ["visual", "transcribe", "text"]
        assert ai_stub.calls[2][1] == ["date", "total", "vendor"]

    @pytest.mark.asyncio
    async def test_threshold_met_skips_secondary(self, factory, ai_stub, columns):
        """Test that half the columns succeeding is enough."""
        ai_stub.visual = {"title": ("Receipt", 0.9), "vendor": ("Acme", 0.6)}

        results = await factory.for_file_type(FileType.IMAGE).run(columns, _image_ref())

        assert ai_stub.methods() == ["visual"]
        assert [r.confidence for r in results] == [0.9, 0.0, 0.0, 0.6]

    @pytest.mark.asyncio
    async def test_primary_exception_uses_raw_url(self, factory, ai_stub, columns):
        """Test that a thrown multimodal call falls back to per-column calls."""
        ai_stub.visual_error = ServiceResponseError("Invalid JSON in AI response")
        ai_stub.url = {
            "title": ("Receipt", 0.7),
            "date": ("2024-05-01", 0.7),
            "total": ("12.50", 0.7),
            "vendor": ("Acme", 0.7),
        }

        results = await factory.for_file_type(FileType.IMAGE).run(columns, _image_ref())

        assert ai_stub.methods() == ["visual", "url", "url", "url", "url"]
        assert [r.value for r in results] == ["Receipt", "2024-05-01", "12.50", "Acme"]
        assert all(r.provenance.version == "direct-url-v1" for r in results)

    @pytest.mark.asyncio
    async def test_timeout_falls_into_regular_fallback(self, factory, ai_stub, columns):
        """Test that a service timeout is handled like any strategy failure."""
        ai_stub.visual_error = ServiceTimeoutError("AI service timed out")
        ai_stub.url = {"title": ("Receipt", 0.7), "date": ("2024-05-01", 0.7)}

        results = await factory.for_file_type(FileType.IMAGE).run(columns, _image_ref())

        assert len(results) == 4
        assert results[0].value == "Receipt"

    @pytest.mark.asyncio
    async def test_total_failure_keeps_primary_diagnostics(self, factory, ai_stub, columns):
        """Test that every column gets a zero-confidence diagnostic when all fail."""
        ai_stub.visual_error = ServiceResponseError("Invalid JSON in AI response")
        ai_stub.url = {col.id: ServiceResponseError("nope") for col in columns}
        ai_stub.transcription_error = ServiceTimeoutError("AI service timed out")

        results = await factory.for_file_type(FileType.IMAGE).run(columns, _image_ref())

        assert len(results) == 4
        assert all(r.confidence == 0 for r in results)
        assert all(r.value.startswith("Image extraction failed:") for r in results)
        assert all(r.provenance.version == "vision-api-v1-failed" for r in results)

    @pytest.mark.asyncio
    async def test_short_transcription_fails_secondary(self, factory, ai_stub, columns):
        """Test that a near-empty transcription does not reach the text call."""
        ai_stub.transcription = "  ok "

        results = await factory.for_file_type(FileType.IMAGE).run(columns, _image_ref())

        assert "text" not in ai_stub.methods()
        assert all(r.confidence == 0 for r in results)

    @pytest.mark.asyncio
    async def test_no_columns(self, factory, ai_stub):
        results = await factory.for_file_type(FileType.IMAGE).run([], _image_ref())
        assert results == []
        assert ai_stub.calls == []


class TestPdfChain:
    """Tests for the PDF chain."""

    @pytest.mark.asyncio
    async def test_text_grounded_extraction(
        self, factory, ai_stub, fetcher_stub, columns, sample_pdf_bytes
    ):
        """Test that PDF text is extracted and sent to the text call."""
        fetcher_stub.documents[PDF_URL] = sample_pdf_bytes
        ai_stub.text = {
            "title": ("Invoice INV-2024-001", 0.9),
            "date": ("2024-05-01", 0.9),
            "total": ("1234.50", 0.9),
            "vendor": ("Northwind Traders", 0.9),
        }

        results = await factory.for_file_type(FileType.PDF).run(columns, _pdf_ref())

        assert fetcher_stub.calls == [PDF_URL]
        method, column_ids, text, truncated = ai_stub.calls[0]
        assert method == "text"
        assert "INV-2024-001" in text
        assert truncated is False
        assert all(r.provenance.version == "text-extraction-v1" for r in results)
        assert results[3].value == "Northwind Traders"

    @pytest.mark.asyncio
    async def test_scanned_pdf_yields_insufficient_text_diagnostic(
        self, factory, ai_stub, fetcher_stub, columns, scanned_pdf_bytes
    ):
        """Test that a PDF without text reports insufficient text per column."""
        fetcher_stub.documents[PDF_URL] = scanned_pdf_bytes

        results = await factory.for_file_type(FileType.PDF).run(columns, _pdf_ref())

        assert len(results) == 4
        assert all(r.confidence == 0 for r in results)
        assert all("insufficient text" in r.value for r in results)
        assert all(r.value.startswith("PDF extraction failed:") for r in results)
        assert ai_stub.calls == []

    @pytest.mark.asyncio
    async def test_download_failure_yields_diagnostic(self, factory, columns):
        """Test that a failed download becomes a per-column diagnostic."""
        results = await factory.for_file_type(FileType.PDF).run(columns, _pdf_ref())

        assert all(r.confidence == 0 for r in results)
        assert all("HTTP 404" in r.value for r in results)

    @pytest.mark.asyncio
    async def test_rendered_pages_fallback(
        self, ai_stub, fetcher_stub, columns, scanned_pdf_bytes
    ):
        """Test that scanned PDFs are rendered and sent to the vision call when enabled."""
        pdf_service = PDFService()
        pdf_service.render_pages = MagicMock(return_value=[Image.new("RGB", (50, 50))])
        factory = StrategyChainFactory(
            ai_stub, fetcher_stub, pdf_service, scanned_pdf_fallback=True
        )
        fetcher_stub.documents[PDF_URL] = scanned_pdf_bytes
        ai_stub.visual = {col.id: (f"{col.name} value", 0.6) for col in columns}

        results = await factory.for_file_type(FileType.PDF).run(columns, _pdf_ref())

        assert all(r.confidence == 0.6 for r in results)
        assert all(r.provenance.version == "rendered-pages-v1" for r in results)
        image_urls = ai_stub.calls[0][2]
        assert image_urls[0].startswith("data:image/png;base64,")
