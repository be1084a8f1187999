"""
Persistence layer for documents, collections and column definitions.

Every mutating call commits, so writes are atomic per record. JSON columns
are reassigned rather than mutated in place so that SQLAlchemy tracks the
change.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from ..models import (
    AggregateValue,
    AuditAction,
    ColumnDefinition,
    ExtractedValue,
    ProcessingError,
    ProcessingState,
    ProcessingStatus,
)
from ..models_db import AuditLogEntry, ColumnDef, Document, DocumentCollection
from .exceptions import CollectionNotFoundError, DocumentNotFoundError, InvalidRequestError
from .state_machine import ProcessingStateMachine

logger = logging.getLogger(__name__)


def _dump(value: ExtractedValue) -> dict[str, Any]:
    return value.model_dump(mode="json", by_alias=True)


def processing_state(document: Document) -> ProcessingState:
    """Read the processing state stored on a document row."""
    error = None
    if document.error_message:
        error = ProcessingError(
            message=document.error_message, code=document.error_code or "UNKNOWN"
        )
    return ProcessingState(
        status=document.processing_status or ProcessingStatus.PENDING,
        progress=document.progress or 0,
        started_at=document.started_at,
        completed_at=document.completed_at,
        error=error,
        retry_count=document.retry_count or 0,
    )


def column_definition(column: ColumnDef) -> ColumnDefinition:
    return ColumnDefinition(
        id=column.id,
        name=column.name,
        prompt=column.prompt,
        type=column.type,
        model_hint=column.model_hint,
        enabled=column.enabled,
    )


class ExtractionStore:
    """SQLAlchemy-backed store used by the pipeline and the routers."""

    def __init__(self, db: Session, state_machine: ProcessingStateMachine | None = None):
        self.db = db
        self.state_machine = state_machine or ProcessingStateMachine()

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_document(self, document_id: str) -> Document:
        document = (
            self.db.query(Document)
            .filter(Document.id == document_id, Document.status != "deleted")
            .first()
        )
        if not document:
            raise DocumentNotFoundError(document_id)
        return document

    def get_documents(self, document_ids: list[str]) -> dict[str, Document]:
        """Active documents by id; unknown ids are left out."""
        if not document_ids:
            return {}
        documents = (
            self.db.query(Document)
            .filter(Document.id.in_(document_ids), Document.status != "deleted")
            .all()
        )
        return {doc.id: doc for doc in documents}

    def get_pending_documents(self, project_id: str) -> list[Document]:
        """Active documents of a project that have not been processed yet."""
        return (
            self.db.query(Document)
            .filter(
                Document.project_id == project_id,
                Document.processing_status == ProcessingStatus.PENDING,
                Document.status != "deleted",
            )
            .order_by(Document.created_at)
            .all()
        )

    def get_collection(self, collection_id: str) -> DocumentCollection:
        collection = (
            self.db.query(DocumentCollection)
            .filter(DocumentCollection.id == collection_id)
            .first()
        )
        if not collection:
            raise CollectionNotFoundError(collection_id)
        return collection

    def collections_containing(self, document: Document) -> list[DocumentCollection]:
        collections = (
            self.db.query(DocumentCollection)
            .filter(DocumentCollection.project_id == document.project_id)
            .all()
        )
        return [c for c in collections if document.id in (c.document_ids or [])]

    def get_columns(
        self, project_id: str, column_ids: list[str] | None = None
    ) -> list[ColumnDefinition]:
        """
        Column definitions of a project, in project order.

        Without ``column_ids`` all extraction-enabled columns are returned.
        With them, the named columns are returned in project order.

        Raises:
            InvalidRequestError: If a requested column id is not defined.
        """
        columns = (
            self.db.query(ColumnDef)
            .filter(ColumnDef.project_id == project_id)
            .order_by(ColumnDef.position)
            .all()
        )
        if column_ids is None:
            return [column_definition(col) for col in columns if col.enabled]

        known = {col.id for col in columns}
        unknown = [column_id for column_id in column_ids if column_id not in known]
        if unknown:
            raise InvalidRequestError(f"Invalid column IDs: {', '.join(unknown)}")
        requested = set(column_ids)
        return [column_definition(col) for col in columns if col.id in requested]

    # =========================================================================
    # Documents
    # =========================================================================

    def set_extracted_value(
        self, document: Document, column_id: str, value: ExtractedValue
    ) -> None:
        """Store (overwrite) the value for one (document, column) pair."""
        document.extracted_data = {**(document.extracted_data or {}), column_id: _dump(value)}
        self.db.commit()

    def append_audit_log(
        self,
        document: Document,
        action: AuditAction,
        actor: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            document_id=document.id,
            action=AuditAction(action).value,
            actor=actor,
            timestamp=datetime.utcnow(),
            details=details or {},
        )
        self.db.add(entry)
        self.db.commit()
        return entry

    def update_processing_status(
        self,
        document: Document,
        status: ProcessingStatus,
        progress: int | None = None,
        error: ProcessingError | None = None,
        actor: str | None = None,
    ) -> ProcessingState:
        """
        Apply a processing transition and record it in the audit log.

        Raises:
            InvalidTransitionError: If the state machine rejects the transition.
        """
        current = processing_state(document)
        new_state = self.state_machine.transition(current, status, progress=progress, error=error)
        status = ProcessingStatus(new_state.status)

        document.processing_status = status
        document.progress = new_state.progress
        document.started_at = new_state.started_at
        document.completed_at = new_state.completed_at
        document.retry_count = new_state.retry_count
        document.error_message = new_state.error.message if new_state.error else None
        document.error_code = new_state.error.code if new_state.error else None

        action = AuditAction.STATUS_CHANGED
        if status == ProcessingStatus.COMPLETED:
            action = AuditAction.PROCESSED
        details: dict[str, Any] = {
            "from": ProcessingStatus(current.status).value,
            "to": status.value,
        }
        if new_state.error:
            details["error"] = new_state.error.model_dump()
        self.db.add(
            AuditLogEntry(
                document_id=document.id,
                action=action.value,
                actor=actor,
                timestamp=datetime.utcnow(),
                details=details,
            )
        )
        self.db.commit()
        logger.info("Document %s: %s -> %s", document.id, details["from"], details["to"])
        return new_state

    # =========================================================================
    # Collections
    # =========================================================================

    def recompute_collection_stats(self, collection: DocumentCollection) -> None:
        members = self.get_documents(list(collection.document_ids or []))
        collection.document_count = len(collection.document_ids or [])
        collection.total_size = sum(doc.size_bytes or 0 for doc in members.values())
        collection.last_modified = datetime.utcnow()
        self.db.commit()

    def set_collection_aggregate(
        self,
        collection: DocumentCollection,
        column_id: str,
        value: AggregateValue | None,
    ) -> None:
        """Store the aggregate for a column; None clears it."""
        data = dict(collection.extracted_data or {})
        if value is None:
            data.pop(column_id, None)
        else:
            data[column_id] = _dump(value)
        collection.extracted_data = data
        self.db.commit()

    def _require_member(self, collection: DocumentCollection, document_id: str) -> None:
        if document_id not in (collection.document_ids or []):
            raise InvalidRequestError(
                f"Document {document_id} is not a member of collection {collection.id}"
            )

    def add_member(self, collection: DocumentCollection, document: Document) -> None:
        if document.id in (collection.document_ids or []):
            return
        collection.document_ids = [*(collection.document_ids or []), document.id]
        self.recompute_collection_stats(collection)

    def remove_member(self, collection: DocumentCollection, document_id: str) -> None:
        self._require_member(collection, document_id)
        collection.document_ids = [d for d in collection.document_ids if d != document_id]
        collection.hidden_document_ids = [
            d for d in (collection.hidden_document_ids or []) if d != document_id
        ]
        collection.aggregation_order = [
            d for d in (collection.aggregation_order or []) if d != document_id
        ]
        self.recompute_collection_stats(collection)

    def hide_member(self, collection: DocumentCollection, document_id: str) -> None:
        self._require_member(collection, document_id)
        hidden = list(collection.hidden_document_ids or [])
        if document_id not in hidden:
            collection.hidden_document_ids = [*hidden, document_id]
        self.recompute_collection_stats(collection)

    def show_member(self, collection: DocumentCollection, document_id: str) -> None:
        self._require_member(collection, document_id)
        collection.hidden_document_ids = [
            d for d in (collection.hidden_document_ids or []) if d != document_id
        ]
        self.recompute_collection_stats(collection)

    def reorder_members(self, collection: DocumentCollection, document_ids: list[str]) -> None:
        """Set the aggregation order, keeping only current members."""
        members = set(collection.document_ids or [])
        order: list[str] = []
        for doc_id in document_ids:
            if doc_id in members and doc_id not in order:
                order.append(doc_id)
        collection.aggregation_order = order
        self.recompute_collection_stats(collection)

    # =========================================================================
    # Columns
    # =========================================================================

    def delete_column(self, project_id: str, column_id: str) -> int:
        """
        Delete a column and every value stored for it in the project.

        Returns:
            Number of documents and collections that lost a value.

        Raises:
            InvalidRequestError: If the column is not defined for the project.
        """
        column = (
            self.db.query(ColumnDef)
            .filter(ColumnDef.project_id == project_id, ColumnDef.id == column_id)
            .first()
        )
        if not column:
            raise InvalidRequestError(f"Column {column_id} not found in project {project_id}")

        affected = 0
        records = [
            *self.db.query(Document).filter(Document.project_id == project_id).all(),
            *self.db.query(DocumentCollection)
            .filter(DocumentCollection.project_id == project_id)
            .all(),
        ]
        for record in records:
            if column_id in (record.extracted_data or {}):
                record.extracted_data = {
                    k: v for k, v in record.extracted_data.items() if k != column_id
                }
                affected += 1

        self.db.delete(column)
        self.db.commit()
        logger.info(
            "Deleted column %s from project %s (%d record(s) updated)",
            column_id,
            project_id,
            affected,
        )
        return affected
