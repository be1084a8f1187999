"""
Router for extraction endpoints.

Handles:
- Unified extraction by document or collection target
- Per-document and per-collection extraction shortcuts
"""

import logging

from fastapi import APIRouter, Body, Depends

from ..models import CollectionExtractRequest, ExtractRequest, ExtractResponse
from ..services.pipeline import ExtractionPipeline
from .dependencies import get_actor, get_can_edit, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["extraction"])


@router.post("/extract", response_model=ExtractResponse)
async def extract(
    request: ExtractRequest,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    actor: str | None = Depends(get_actor),
    can_edit: bool = Depends(get_can_edit),
) -> ExtractResponse:
    """
    Extract column values for a document or a collection.

    The response always holds one entry per requested column. Columns that
    could not be extracted carry confidence 0 and a diagnostic value.
    """
    target = request.document_id or request.collection_id
    logger.info("Extraction requested for %s by %s", target, actor or "anonymous")
    return await pipeline.extract(request, actor=actor, can_edit=can_edit)


@router.post("/documents/{document_id}/extract", response_model=ExtractResponse)
async def extract_document(
    document_id: str,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    actor: str | None = Depends(get_actor),
    can_edit: bool = Depends(get_can_edit),
) -> ExtractResponse:
    """Extract every enabled column of one document."""
    return await pipeline.extract(
        ExtractRequest(document_id=document_id), actor=actor, can_edit=can_edit
    )


@router.post("/collections/{collection_id}/extract", response_model=ExtractResponse)
async def extract_collection(
    collection_id: str,
    body: CollectionExtractRequest | None = Body(default=None),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    actor: str | None = Depends(get_actor),
    can_edit: bool = Depends(get_can_edit),
) -> ExtractResponse:
    """Extract the requested (or all enabled) columns across a collection."""
    body = body or CollectionExtractRequest()
    request = ExtractRequest(
        collection_id=collection_id,
        column_ids=body.column_ids,
        force_reextract=body.force_reextract,
    )
    return await pipeline.extract(request, actor=actor, can_edit=can_edit)
