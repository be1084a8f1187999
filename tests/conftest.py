"""Pytest configuration and fixtures."""

from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.docgrid import models_db
from app.docgrid.database import Base, get_db
from app.docgrid.models import ColumnDefinition
from app.docgrid.services.chain import StrategyChainFactory
from app.docgrid.services.demo_guard import DemoDataGuard
from app.docgrid.services.fetcher import FetchError
from app.docgrid.services.pdf_service import PDFService
from app.docgrid.services.pipeline import ExtractionPipeline
from app.docgrid.services.store import ExtractionStore

INVOICE_TEXT = (
    "Invoice INV-2024-001 issued by Northwind Traders on 2024-05-01 "
    "with a total amount due of 1234.50 USD"
)


def build_pdf(text: str) -> bytes:
    """Build a one-page PDF whose content stream shows ``text`` in Helvetica."""
    escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
    stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 5 0 R >> >> /Contents 4 0 R >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (
        len(objects) + 1,
        xref_offset,
    )
    return bytes(out)


# =============================================================================
# Service Stubs
# =============================================================================


class StubAIService:
    """
    Deterministic stand-in for AIService.

    Tables map column id -> (value, confidence). Columns missing from a
    table get no entry, as a model that skipped them would.
    """

    model = "stub-model"

    def __init__(self):
        self.visual: dict[str, tuple[str, float]] = {}
        self.text: dict[str, tuple[str, float]] = {}
        self.url: dict[str, Any] = {}
        self.transcription = ""
        self.visual_error: Exception | None = None
        self.text_error: Exception | None = None
        self.transcription_error: Exception | None = None
        self.calls: list[tuple] = []

    @staticmethod
    def _entries(table, columns):
        entries = []
        for col in columns:
            if col.id in table:
                value, confidence = table[col.id]
                entries.append({"columnId": col.id, "value": value, "confidence": confidence})
        return entries

    def methods(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def extract_from_visual(self, columns, image_urls):
        self.calls.append(("visual", [col.id for col in columns], list(image_urls)))
        if self.visual_error:
            raise self.visual_error
        return self._entries(self.visual, columns)

    async def extract_from_text(self, columns, text, truncated=False):
        self.calls.append(("text", [col.id for col in columns], text, truncated))
        if self.text_error:
            raise self.text_error
        return self._entries(self.text, columns)

    async def extract_column_from_url(self, column, url):
        self.calls.append(("url", [column.id], url))
        entry = self.url.get(column.id)
        if isinstance(entry, Exception):
            raise entry
        if entry is None:
            return {"columnId": column.id, "value": "", "confidence": 0}
        return {"columnId": column.id, "value": entry[0], "confidence": entry[1]}

    async def transcribe(self, url):
        self.calls.append(("transcribe", [], url))
        if self.transcription_error:
            raise self.transcription_error
        return self.transcription


class StubFetcher:
    """Serves bytes from a dict keyed by URL; unknown URLs fail like a 404."""

    def __init__(self):
        self.documents: dict[str, Any] = {}
        self.calls: list[str] = []

    async def fetch(self, url, file_type=None):
        self.calls.append(url)
        content = self.documents.get(url)
        if isinstance(content, Exception):
            raise content
        if content is None:
            raise FetchError("Failed to download document: HTTP 404")
        return content


@pytest.fixture
def ai_stub() -> StubAIService:
    return StubAIService()


@pytest.fixture
def fetcher_stub() -> StubFetcher:
    return StubFetcher()


@pytest.fixture
def columns() -> list[ColumnDefinition]:
    """Four columns of different declared types."""
    return [
        ColumnDefinition(id="title", name="Title", prompt="Document title", type="text"),
        ColumnDefinition(id="date", name="Date", prompt="Issue date", type="date"),
        ColumnDefinition(id="total", name="Total", prompt="Total amount", type="price"),
        ColumnDefinition(
            id="vendor", name="Vendor", prompt="Issuing company", type="organization"
        ),
    ]


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """A valid PDF with enough embedded text for text extraction."""
    return build_pdf(INVOICE_TEXT)


@pytest.fixture
def scanned_pdf_bytes() -> bytes:
    """A valid PDF carrying almost no embedded text."""
    return build_pdf("Scan")


@pytest.fixture
def invalid_file_bytes() -> bytes:
    """Create invalid (non-PDF) file bytes for testing."""
    return b"This is not a PDF file"


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """In-memory SQLite session shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def project(db_session: Session, columns: list[ColumnDefinition]) -> models_db.Project:
    """A project with the four sample columns."""
    project = models_db.Project(name="Invoices")
    db_session.add(project)
    db_session.flush()
    for position, col in enumerate(columns):
        db_session.add(
            models_db.ColumnDef(
                id=col.id,
                project_id=project.id,
                name=col.name,
                prompt=col.prompt,
                type=col.type,
                position=position,
            )
        )
    db_session.commit()
    return project


@pytest.fixture
def make_document(
    db_session: Session, project: models_db.Project
) -> Callable[..., models_db.Document]:
    """Factory creating documents in the sample project."""

    def _make(
        filename: str = "invoice.pdf",
        storage_url: str | None = "https://blob.example.com/invoice.pdf",
        mime_type: str | None = "application/pdf",
        extension: str | None = "pdf",
        extracted_data: dict | None = None,
        size_bytes: int = 1000,
    ) -> models_db.Document:
        document = models_db.Document(
            project_id=project.id,
            filename=filename,
            storage_url=storage_url,
            mime_type=mime_type,
            extension=extension,
            size_bytes=size_bytes,
            extracted_data=extracted_data or {},
        )
        db_session.add(document)
        db_session.commit()
        return document

    return _make


@pytest.fixture
def make_collection(
    db_session: Session, project: models_db.Project
) -> Callable[..., models_db.DocumentCollection]:
    """Factory creating collections in the sample project."""

    def _make(
        documents: list[models_db.Document],
        hidden: list[str] | None = None,
        order: list[str] | None = None,
        name: str = "Q2 invoices",
    ) -> models_db.DocumentCollection:
        collection = models_db.DocumentCollection(
            project_id=project.id,
            name=name,
            document_ids=[doc.id for doc in documents],
            hidden_document_ids=hidden or [],
            aggregation_order=order or [],
            document_count=len(documents),
        )
        db_session.add(collection)
        db_session.commit()
        return collection

    return _make


@pytest.fixture
def store(db_session: Session) -> ExtractionStore:
    return ExtractionStore(db_session)


@pytest.fixture
def pipeline(
    store: ExtractionStore, ai_stub: StubAIService, fetcher_stub: StubFetcher
) -> ExtractionPipeline:
    """Pipeline wired to the stubs with the scanned-PDF fallback disabled."""
    factory = StrategyChainFactory(
        ai_stub,
        fetcher_stub,
        PDFService(),
        success_threshold=0.5,
        scanned_pdf_fallback=False,
    )
    return ExtractionPipeline(
        store,
        factory,
        guard=DemoDataGuard(),
        max_concurrent_documents=2,
    )


# =============================================================================
# API Client
# =============================================================================


@pytest.fixture
def client(
    db_session: Session, ai_stub: StubAIService, fetcher_stub: StubFetcher
) -> Generator[TestClient, None, None]:
    """Test client with the database and external services swapped for stubs."""
    from app.docgrid.main import app
    from app.docgrid.services.ai import get_ai_service
    from app.docgrid.services.fetcher import get_fetcher

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_service] = lambda: ai_stub
    app.dependency_overrides[get_fetcher] = lambda: fetcher_stub
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
