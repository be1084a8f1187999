"""
Extraction pipeline.

Entry point of the service: resolves a document or collection target,
routes every document through the strategy chain for its file type,
persists confident results, and folds member values into collection
aggregates.

Per-document chain runs are independent tasks bounded by a semaphore.
Database writes happen after all tasks of a request have settled, on the
request's session.
"""

import asyncio
import logging
from dataclasses import dataclass

from ..config import get_settings
from ..models import (
    AggregateValue,
    AuditAction,
    ColumnDefinition,
    ExtractedValue,
    ExtractionMethod,
    ExtractionResult,
    ExtractRequest,
    ExtractResponse,
    PendingDocumentResult,
    ProcessingError,
    ProcessingStatus,
    ProcessPendingResponse,
    Provenance,
)
from ..models_db import Document, DocumentCollection
from .aggregator import CollectionAggregator, ordered_members
from .chain import StrategyChainFactory
from .demo_guard import DemoDataGuard
from .exceptions import InvalidRequestError, PermissionDeniedError
from .file_types import classify_file_type
from .normalizer import count_successes, failure_results
from .store import ExtractionStore
from .strategies import ContentReference

logger = logging.getLogger(__name__)

MISSING_URL = "MISSING_URL"


@dataclass
class DocumentJob:
    """Columns to extract for one document, resolved before fan-out."""

    document: Document
    reference: ContentReference
    columns: list[ColumnDefinition]


def is_override(stored: dict) -> bool:
    """True for an explicitly set aggregate; folded aggregates always name a source."""
    return (
        (stored.get("provenance") or {}).get("method") == ExtractionMethod.MANUAL.value
        and not stored.get("sourceDocumentIds")
    )


def _missing_url_results(columns: list[ColumnDefinition]) -> list[ExtractionResult]:
    return failure_results(
        columns,
        "Extraction failed: document has no retrievable storage URL",
        Provenance(method=ExtractionMethod.AI, version="missing-url"),
    )


class ExtractionPipeline:
    """Runs extraction requests against the store."""

    def __init__(
        self,
        store: ExtractionStore,
        chain_factory: StrategyChainFactory,
        guard: DemoDataGuard | None = None,
        aggregator: CollectionAggregator | None = None,
        max_concurrent_documents: int | None = None,
    ):
        self.store = store
        self.chain_factory = chain_factory
        self.guard = guard or DemoDataGuard()
        self.aggregator = aggregator or CollectionAggregator()
        self.max_concurrent_documents = (
            max_concurrent_documents or get_settings().max_concurrent_documents
        )

    # =========================================================================
    # Extraction
    # =========================================================================

    async def extract(
        self,
        request: ExtractRequest,
        actor: str | None = None,
        can_edit: bool = True,
    ) -> ExtractResponse:
        """
        Extract a document or a collection.

        Args:
            request: Validated target.
            actor: Id of the requesting user, recorded in audit entries.
            can_edit: Precomputed permission of the actor on the project.

        Returns:
            ExtractResponse with one entry per requested column.

        Raises:
            PermissionDeniedError: If ``can_edit`` is False.
            DocumentNotFoundError / CollectionNotFoundError: Unknown target.
            InvalidRequestError: Unknown column ids.
        """
        if not can_edit:
            raise PermissionDeniedError("You do not have permission to extract data")

        if request.document_id:
            return await self.extract_document(request.document_id, actor)
        return await self.extract_collection(
            request.collection_id,
            column_ids=request.column_ids,
            force_reextract=request.force_reextract,
            actor=actor,
        )

    def _reference(self, document: Document) -> ContentReference:
        return ContentReference(
            document_id=document.id,
            url=document.storage_url,
            file_type=classify_file_type(document.mime_type, document.extension),
        )

    async def _run_job(
        self, job: DocumentJob, semaphore: asyncio.Semaphore
    ) -> list[ExtractionResult]:
        async with semaphore:
            chain = self.chain_factory.for_file_type(job.reference.file_type)
            logger.info(
                "Extracting %d column(s) from %s as %s",
                len(job.columns),
                job.reference.document_id,
                job.reference.file_type.value,
            )
            return await chain.run(job.columns, job.reference)

    async def _run_jobs(self, jobs: list[DocumentJob]) -> list[list[ExtractionResult]]:
        semaphore = asyncio.Semaphore(self.max_concurrent_documents)
        outcomes = await asyncio.gather(
            *(self._run_job(job, semaphore) for job in jobs), return_exceptions=True
        )
        results = []
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Extraction task for %s raised: %s", job.reference.document_id, outcome
                )
                outcome = failure_results(
                    job.columns,
                    f"Extraction failed: {outcome}",
                    Provenance(method=ExtractionMethod.AI, version="pipeline-failed"),
                )
            results.append(outcome)
        return results

    def _start(self, document: Document, actor: str | None) -> bool:
        """Move a document into processing; False if it has no URL."""
        self.store.update_processing_status(
            document, ProcessingStatus.PROCESSING, progress=0, actor=actor
        )
        if document.storage_url:
            return True
        logger.warning("Document %s has no storage URL", document.id)
        self.store.update_processing_status(
            document,
            ProcessingStatus.FAILED,
            error=ProcessingError(message="Document has no storage URL", code=MISSING_URL),
            actor=actor,
        )
        return False

    def _persist(
        self,
        document: Document,
        columns: list[ColumnDefinition],
        results: list[ExtractionResult],
        actor: str | None,
    ) -> None:
        """Store confident results and complete the document."""
        types = {col.id: col.type for col in columns}
        for result in results:
            if not result.succeeded:
                continue
            self.store.set_extracted_value(
                document,
                result.column_id,
                ExtractedValue(
                    value=result.value,
                    type=types[result.column_id],
                    confidence=result.confidence,
                    provenance=result.provenance,
                ),
            )
        self.store.update_processing_status(document, ProcessingStatus.COMPLETED, actor=actor)

    async def extract_document(
        self, document_id: str, actor: str | None = None
    ) -> ExtractResponse:
        """Extract every enabled column of one document, ignoring stored values."""
        document = self.store.get_document(document_id)
        columns = self.store.get_columns(document.project_id)

        if not self._start(document, actor):
            results = _missing_url_results(columns)
        elif not columns:
            results = []
            self.store.update_processing_status(document, ProcessingStatus.COMPLETED, actor=actor)
        else:
            job = DocumentJob(document, self._reference(document), columns)
            [results] = await self._run_jobs([job])
            self._persist(document, columns, results, actor)
            for collection in self.store.collections_containing(document):
                self.refresh_aggregates(collection, [col.id for col in columns])

        success_count = count_successes(results)
        logger.info(
            "Document %s: %d/%d columns extracted", document.id, success_count, len(columns)
        )
        return ExtractResponse(
            per_column=results,
            success_count=success_count,
            total_columns=len(columns),
            document_id=document.id,
        )

    async def extract_collection(
        self,
        collection_id: str,
        column_ids: list[str] | None = None,
        force_reextract: bool = False,
        actor: str | None = None,
    ) -> ExtractResponse:
        """
        Extract the selected columns for every visible member, then aggregate.

        Members whose stored values pass the demo-data guard are not sent to
        the service again unless ``force_reextract`` is set.
        """
        collection = self.store.get_collection(collection_id)
        columns = self.store.get_columns(collection.project_id, column_ids)
        if column_ids is not None and not columns:
            raise InvalidRequestError("No columns requested")

        member_ids = ordered_members(
            collection.document_ids,
            collection.hidden_document_ids,
            collection.aggregation_order,
        )
        documents = self.store.get_documents(member_ids)

        jobs: list[DocumentJob] = []
        diagnostics: dict[str, str] = {}
        for doc_id in member_ids:
            document = documents.get(doc_id)
            if document is None:
                continue
            stored = document.extracted_data or {}
            pending = [
                col
                for col in columns
                if self.guard.needs_extraction(stored.get(col.id), force_reextract)
            ]
            if not pending:
                continue
            if not self._start(document, actor):
                for result in _missing_url_results(pending):
                    diagnostics.setdefault(result.column_id, result.value)
                continue
            jobs.append(DocumentJob(document, self._reference(document), pending))

        logger.info(
            "Collection %s: %d of %d visible member(s) need extraction",
            collection.id,
            len(jobs),
            len(member_ids),
        )

        # Join before touching the database or aggregating
        all_results = await self._run_jobs(jobs)

        for job, results in zip(jobs, all_results):
            self._persist(job.document, job.columns, results, actor)
            for result in results:
                if not result.succeeded and result.value:
                    diagnostics.setdefault(result.column_id, result.value)

        # Overrides survive unless a member was actually re-extracted for the column
        extracted = {col.id for job in jobs for col in job.columns}
        aggregates = self.refresh_aggregates(
            collection, [col.id for col in columns if col.id in extracted]
        )
        aggregates.update(
            self.refresh_aggregates(
                collection,
                [col.id for col in columns if col.id not in extracted],
                keep_manual=True,
            )
        )

        per_column = []
        contributing = {}
        for col in columns:
            aggregate = aggregates.get(col.id)
            if aggregate is None:
                per_column.append(
                    ExtractionResult(
                        column_id=col.id,
                        value=diagnostics.get(
                            col.id, "No visible document has a value for this column"
                        ),
                        confidence=0.0,
                        provenance=Provenance(method=ExtractionMethod.AI),
                    )
                )
                contributing[col.id] = []
            else:
                per_column.append(
                    ExtractionResult(
                        column_id=col.id,
                        value=aggregate.value,
                        confidence=aggregate.confidence,
                        provenance=aggregate.provenance,
                    )
                )
                contributing[col.id] = list(aggregate.source_document_ids)

        success_count = count_successes(per_column)
        logger.info(
            "Collection %s: %d/%d columns aggregated", collection.id, success_count, len(columns)
        )
        return ExtractResponse(
            per_column=per_column,
            success_count=success_count,
            total_columns=len(columns),
            collection_id=collection.id,
            contributing_document_ids=contributing,
        )

    async def process_pending(
        self,
        project_id: str,
        actor: str | None = None,
        can_edit: bool = True,
    ) -> ProcessPendingResponse:
        """
        Extract every enabled column for all pending documents of a project.

        Documents run through the same bounded fan-out as a collection
        request; collections containing a processed document are re-folded
        once after the join.

        Raises:
            PermissionDeniedError: If ``can_edit`` is False.
        """
        if not can_edit:
            raise PermissionDeniedError("You do not have permission to process documents")

        documents = self.store.get_pending_documents(project_id)
        columns = self.store.get_columns(project_id)
        if not documents:
            logger.info("Project %s: no pending documents", project_id)
            return ProcessPendingResponse(total_pending=0, total_columns=len(columns))

        outcomes: dict[str, PendingDocumentResult] = {}
        jobs: list[DocumentJob] = []
        for document in documents:
            if self._start(document, actor):
                jobs.append(DocumentJob(document, self._reference(document), columns))
                continue
            outcomes[document.id] = PendingDocumentResult(
                document_id=document.id,
                filename=document.filename,
                status=ProcessingStatus.FAILED,
                error="Document has no storage URL",
            )

        all_results = await self._run_jobs(jobs)

        touched: dict[str, DocumentCollection] = {}
        for job, results in zip(jobs, all_results):
            self._persist(job.document, job.columns, results, actor)
            outcomes[job.document.id] = PendingDocumentResult(
                document_id=job.document.id,
                filename=job.document.filename,
                status=ProcessingStatus.COMPLETED,
                success_count=count_successes(results),
            )
            for collection in self.store.collections_containing(job.document):
                touched[collection.id] = collection
        for collection in touched.values():
            self.refresh_aggregates(collection, [col.id for col in columns])

        failed_count = len(documents) - len(jobs)
        logger.info(
            "Project %s: processed %d pending document(s), %d failed",
            project_id,
            len(jobs),
            failed_count,
        )
        return ProcessPendingResponse(
            total_pending=len(documents),
            processed_count=len(jobs),
            failed_count=failed_count,
            total_columns=len(columns),
            results=[outcomes[document.id] for document in documents],
        )

    # =========================================================================
    # Aggregates
    # =========================================================================

    def refresh_aggregates(
        self,
        collection: DocumentCollection,
        column_ids: list[str] | None = None,
        keep_manual: bool = False,
    ) -> dict[str, AggregateValue | None]:
        """
        Recompute collection aggregates from stored member values.

        Args:
            collection: Collection to refresh.
            column_ids: Columns to refresh; defaults to all enabled columns.
            keep_manual: Leave explicitly overridden aggregates untouched.

        Returns:
            columnId -> aggregate (None where no visible member contributes).
            Kept overrides are returned as stored.
        """
        if column_ids is None:
            column_ids = [col.id for col in self.store.get_columns(collection.project_id)]

        kept: dict[str, AggregateValue | None] = {}
        if keep_manual:
            stored = collection.extracted_data or {}
            for column_id in column_ids:
                if column_id in stored and is_override(stored[column_id]):
                    kept[column_id] = AggregateValue.model_validate(stored[column_id])
            column_ids = [column_id for column_id in column_ids if column_id not in kept]

        members = self.store.get_documents(list(collection.document_ids or []))
        folded = self.aggregator.aggregate(
            column_ids,
            collection.document_ids,
            collection.hidden_document_ids,
            collection.aggregation_order,
            {doc_id: doc.extracted_data or {} for doc_id, doc in members.items()},
        )
        for column_id, aggregate in folded.items():
            self.store.set_collection_aggregate(collection, column_id, aggregate)
        self.store.recompute_collection_stats(collection)
        return kept | folded

    # =========================================================================
    # Membership
    # =========================================================================

    def add_collection_member(
        self, collection_id: str, document_id: str, can_edit: bool = True
    ) -> DocumentCollection:
        """
        Add a project document to a collection and re-fold its aggregates.

        Raises:
            InvalidRequestError: If the document is unknown or belongs to
                another project.
        """
        if not can_edit:
            raise PermissionDeniedError("You do not have permission to edit this collection")

        collection = self.store.get_collection(collection_id)
        document = self.store.get_documents([document_id]).get(document_id)
        if document is None or document.project_id != collection.project_id:
            raise InvalidRequestError(
                f"Document {document_id} not found or does not belong to this project"
            )
        self.store.add_member(collection, document)
        self.refresh_aggregates(collection, keep_manual=True)
        logger.info("Collection %s: added %s", collection.id, document_id)
        return collection

    def remove_collection_member(
        self, collection_id: str, document_id: str, can_edit: bool = True
    ) -> DocumentCollection:
        """Remove a member; aggregates it contributed to are re-folded."""
        if not can_edit:
            raise PermissionDeniedError("You do not have permission to edit this collection")

        collection = self.store.get_collection(collection_id)
        self.store.remove_member(collection, document_id)
        self.refresh_aggregates(collection, keep_manual=True)
        logger.info("Collection %s: removed %s", collection.id, document_id)
        return collection

    # =========================================================================
    # Manual Edits
    # =========================================================================

    def update_document_value(
        self,
        document_id: str,
        column_id: str,
        value: str,
        confidence: float = 1.0,
        actor: str | None = None,
        can_edit: bool = True,
    ) -> Document:
        """Store a manually entered value and audit the edit."""
        if not can_edit:
            raise PermissionDeniedError("You do not have permission to edit this document")

        document = self.store.get_document(document_id)
        [column] = self.store.get_columns(document.project_id, [column_id])
        previous = (document.extracted_data or {}).get(column_id, {}).get("value")
        self.store.set_extracted_value(
            document,
            column_id,
            ExtractedValue(
                value=value,
                type=column.type,
                confidence=confidence,
                provenance=Provenance(method=ExtractionMethod.MANUAL, actor=actor),
            ),
        )
        self.store.append_audit_log(
            document,
            AuditAction.UPDATED,
            actor=actor,
            details={"columnId": column_id, "previous": previous, "value": value},
        )
        for collection in self.store.collections_containing(document):
            self.refresh_aggregates(collection, [column_id], keep_manual=True)
        return document

    def override_collection_value(
        self,
        collection_id: str,
        column_id: str,
        value: str,
        confidence: float = 1.0,
        actor: str | None = None,
        can_edit: bool = True,
    ) -> DocumentCollection:
        """Explicitly set a collection aggregate."""
        if not can_edit:
            raise PermissionDeniedError("You do not have permission to edit this collection")

        collection = self.store.get_collection(collection_id)
        [column] = self.store.get_columns(collection.project_id, [column_id])
        self.store.set_collection_aggregate(
            collection,
            column_id,
            AggregateValue(
                value=value,
                type=column.type,
                confidence=confidence,
                provenance=Provenance(method=ExtractionMethod.MANUAL, actor=actor),
            ),
        )
        self.store.recompute_collection_stats(collection)
        logger.info("Collection %s: %s overridden by %s", collection.id, column_id, actor)
        return collection
