"""
Router for collection endpoints.

Handles:
- Collection retrieval with aggregates and stats
- Adding and removing members
- Hiding, showing and reordering members
- Explicit aggregate overrides
"""

import logging

from fastapi import APIRouter, Depends

from ..models import (
    AggregateValue,
    CollectionResponse,
    CollectionSettings,
    CollectionStats,
    ReorderRequest,
    UpdateValueRequest,
)
from ..models_db import DocumentCollection
from ..services.exceptions import PermissionDeniedError
from ..services.pipeline import ExtractionPipeline
from .dependencies import get_actor, get_can_edit, get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/collections", tags=["collections"])


def collection_response(collection: DocumentCollection) -> CollectionResponse:
    return CollectionResponse(
        id=collection.id,
        project_id=collection.project_id,
        name=collection.name,
        document_ids=list(collection.document_ids or []),
        settings=CollectionSettings(
            hidden_document_ids=list(collection.hidden_document_ids or []),
            aggregation_order=list(collection.aggregation_order or []),
        ),
        stats=CollectionStats(
            document_count=collection.document_count or 0,
            total_size=collection.total_size or 0,
            last_modified=collection.last_modified,
        ),
        extracted_data={
            column_id: AggregateValue.model_validate(value)
            for column_id, value in (collection.extracted_data or {}).items()
        },
    )


def _require_edit(can_edit: bool) -> None:
    if not can_edit:
        raise PermissionDeniedError("You do not have permission to edit this collection")


@router.get("/{collection_id}", response_model=CollectionResponse)
async def get_collection(
    collection_id: str,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
) -> CollectionResponse:
    """Retrieve a collection with its aggregates and stats."""
    return collection_response(pipeline.store.get_collection(collection_id))


@router.post("/{collection_id}/documents/{document_id}", response_model=CollectionResponse)
async def add_document(
    collection_id: str,
    document_id: str,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    can_edit: bool = Depends(get_can_edit),
) -> CollectionResponse:
    """Add a project document to the collection."""
    collection = pipeline.add_collection_member(collection_id, document_id, can_edit=can_edit)
    return collection_response(collection)


@router.delete("/{collection_id}/documents/{document_id}", response_model=CollectionResponse)
async def remove_document(
    collection_id: str,
    document_id: str,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    can_edit: bool = Depends(get_can_edit),
) -> CollectionResponse:
    """Remove a member from the collection."""
    collection = pipeline.remove_collection_member(
        collection_id, document_id, can_edit=can_edit
    )
    return collection_response(collection)


@router.post("/{collection_id}/documents/{document_id}/hide", response_model=CollectionResponse)
async def hide_document(
    collection_id: str,
    document_id: str,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    can_edit: bool = Depends(get_can_edit),
) -> CollectionResponse:
    """Exclude a member from aggregation."""
    _require_edit(can_edit)
    collection = pipeline.store.get_collection(collection_id)
    pipeline.store.hide_member(collection, document_id)
    pipeline.refresh_aggregates(collection, keep_manual=True)
    return collection_response(collection)


@router.post("/{collection_id}/documents/{document_id}/show", response_model=CollectionResponse)
async def show_document(
    collection_id: str,
    document_id: str,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    can_edit: bool = Depends(get_can_edit),
) -> CollectionResponse:
    """Include a hidden member in aggregation again."""
    _require_edit(can_edit)
    collection = pipeline.store.get_collection(collection_id)
    pipeline.store.show_member(collection, document_id)
    pipeline.refresh_aggregates(collection, keep_manual=True)
    return collection_response(collection)


@router.put("/{collection_id}/order", response_model=CollectionResponse)
async def reorder_documents(
    collection_id: str,
    request: ReorderRequest,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    can_edit: bool = Depends(get_can_edit),
) -> CollectionResponse:
    """Set the aggregation order; ids that are not members are ignored."""
    _require_edit(can_edit)
    collection = pipeline.store.get_collection(collection_id)
    pipeline.store.reorder_members(collection, request.document_ids)
    pipeline.refresh_aggregates(collection, keep_manual=True)
    return collection_response(collection)


@router.put("/{collection_id}/values/{column_id}", response_model=CollectionResponse)
async def override_value(
    collection_id: str,
    column_id: str,
    request: UpdateValueRequest,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    actor: str | None = Depends(get_actor),
    can_edit: bool = Depends(get_can_edit),
) -> CollectionResponse:
    """Explicitly override the collection-level value of a column."""
    collection = pipeline.override_collection_value(
        collection_id,
        column_id,
        request.value,
        confidence=request.confidence,
        actor=actor,
        can_edit=can_edit,
    )
    return collection_response(collection)
