"""
FastAPI application for the document grid extraction service.

Provides endpoints for:
- Extracting column values from documents and collections
- Reading documents and collection aggregates
- Manual edits, overrides and member management
- Column deletion with cascade
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .database import init_db
from .models import HealthResponse
from .routers import collections, documents, extraction, projects
from .services.ai import AIServiceError, get_ai_service
from .services.exceptions import (
    CollectionNotFoundError,
    DocumentNotFoundError,
    InvalidRequestError,
    PermissionDeniedError,
)
from .services.fetcher import get_fetcher
from .services.pdf_service import PDFConversionError, get_pdf_service
from .services.state_machine import InvalidTransitionError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting Document Grid Extraction Service...")
    # Note: In production, use Alembic migrations instead of init_db()
    init_db()
    get_fetcher()
    get_pdf_service()
    get_ai_service()
    logger.info("Services initialized successfully")
    yield
    logger.info("Shutting down Document Grid Extraction Service...")


# Create FastAPI application
app = FastAPI(
    title="Document Grid Extraction API",
    description="Column extraction from documents and collections using AI",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # Grid frontend
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/", response_model=HealthResponse)
async def root() -> HealthResponse:
    """Root endpoint - health check."""
    return HealthResponse(
        status="healthy", message="Document Grid Extraction API is running", version=__version__
    )


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", message="Service is healthy", version=__version__)


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(extraction.router)
app.include_router(documents.router)
app.include_router(collections.router)
app.include_router(projects.router)


# =============================================================================
# Exception Handlers
# =============================================================================


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(DocumentNotFoundError)
async def document_not_found_handler(request: Request, exc: DocumentNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(CollectionNotFoundError)
async def collection_not_found_handler(request: Request, exc: CollectionNotFoundError):
    return _error(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(InvalidRequestError)
async def invalid_request_handler(request: Request, exc: InvalidRequestError):
    return _error(status.HTTP_400_BAD_REQUEST, exc)


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    logger.warning("Permission denied on %s %s", request.method, request.url.path)
    return _error(status.HTTP_403_FORBIDDEN, exc)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(PDFConversionError)
async def pdf_conversion_error_handler(request: Request, exc: PDFConversionError):
    """Handle PDF conversion errors."""
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)


@app.exception_handler(AIServiceError)
async def ai_service_error_handler(request: Request, exc: AIServiceError):
    """Handle AI service errors."""
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc)
