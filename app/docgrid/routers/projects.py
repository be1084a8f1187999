"""
Router for project-scoped endpoints.

Handles:
- Column deletion, cascading to every stored value of that column
- Batch processing of all pending documents of a project
"""

import logging

from fastapi import APIRouter, Depends, status

from ..models import ProcessPendingResponse
from ..services.exceptions import PermissionDeniedError
from ..services.pipeline import ExtractionPipeline
from ..services.store import ExtractionStore
from .dependencies import get_actor, get_can_edit, get_pipeline, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post(
    "/{project_id}/documents/process-pending", response_model=ProcessPendingResponse
)
async def process_pending_documents(
    project_id: str,
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    actor: str | None = Depends(get_actor),
    can_edit: bool = Depends(get_can_edit),
) -> ProcessPendingResponse:
    """Extract every enabled column for each pending document of the project."""
    return await pipeline.process_pending(project_id, actor=actor, can_edit=can_edit)


@router.delete("/{project_id}/columns/{column_id}", status_code=status.HTTP_200_OK)
async def delete_column(
    project_id: str,
    column_id: str,
    store: ExtractionStore = Depends(get_store),
    actor: str | None = Depends(get_actor),
    can_edit: bool = Depends(get_can_edit),
) -> dict:
    """
    Delete a column and its values from all documents and collections.

    Returns:
        Confirmation with the number of records that lost a value.
    """
    if not can_edit:
        raise PermissionDeniedError("You do not have permission to edit this project")

    affected = store.delete_column(project_id, column_id)
    logger.info("Column %s deleted by %s", column_id, actor or "anonymous")
    return {
        "message": f"Column {column_id} deleted",
        "column_id": column_id,
        "records_updated": affected,
    }
