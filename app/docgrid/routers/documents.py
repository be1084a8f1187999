"""
Router for document-related endpoints.

Handles:
- Document retrieval with processing state and values
- Manual edits of extracted values
- Download redirects to blob storage
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse

from ..models import (
    AuditAction,
    DocumentResponse,
    ExtractedValue,
    UpdateValueRequest,
)
from ..models_db import Document
from ..services.pipeline import ExtractionPipeline
from ..services.store import ExtractionStore, processing_state
from .dependencies import get_actor, get_can_edit, get_pipeline, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


def document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        project_id=document.project_id,
        filename=document.filename,
        storage_url=document.storage_url,
        mime_type=document.mime_type,
        extension=document.extension,
        size_bytes=document.size_bytes or 0,
        page_count=document.page_count,
        status=document.status,
        processing=processing_state(document),
        extracted_data={
            column_id: ExtractedValue.model_validate(value)
            for column_id, value in (document.extracted_data or {}).items()
        },
    )


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    store: ExtractionStore = Depends(get_store),
) -> DocumentResponse:
    """Retrieve a document with its processing state and extracted values."""
    return document_response(store.get_document(document_id))


@router.put("/{document_id}/values/{column_id}", response_model=DocumentResponse)
async def update_document_value(
    document_id: str,
    column_id: str,
    request: UpdateValueRequest,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    actor: str | None = Depends(get_actor),
    can_edit: bool = Depends(get_can_edit),
) -> DocumentResponse:
    """
    Manually set the value of one column.

    The edit is recorded with method "manual" and appended to the audit log.
    """
    document = pipeline.update_document_value(
        document_id,
        column_id,
        request.value,
        confidence=request.confidence,
        actor=actor,
        can_edit=can_edit,
    )
    logger.info("Document %s: %s edited by %s", document_id, column_id, actor)
    return document_response(document)


@router.get("/{document_id}/download")
async def download_document(
    document_id: str,
    store: ExtractionStore = Depends(get_store),
    actor: str | None = Depends(get_actor),
) -> RedirectResponse:
    """Redirect to the document's storage URL and record the download."""
    document = store.get_document(document_id)
    if not document.storage_url:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not available for this document",
        )

    store.append_audit_log(
        document,
        AuditAction.DOWNLOADED,
        actor=actor,
        details={"filename": document.filename},
    )
    return RedirectResponse(
        url=document.storage_url,
        status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    )
