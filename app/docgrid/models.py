"""
Pydantic models for the document grid extraction pipeline.

Defines strict types for column definitions, extracted values, provenance,
processing state and the request/response contracts of the API.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class ColumnType(str, Enum):
    """Declared semantic type of a column."""

    TEXT = "text"  # Also serves as catch-all
    DATE = "date"
    PRICE = "price"
    LOCATION = "location"
    PERSON = "person"
    ORGANIZATION = "organization"
    STATUS = "status"
    COLLECTION = "collection"


class FileType(str, Enum):
    """Routing category of a stored document."""

    IMAGE = "image"
    PDF = "pdf"
    UNKNOWN = "unknown"


class ProcessingStatus(str, Enum):
    """Status of a document in the extraction pipeline."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExtractionMethod(str, Enum):
    """How a value was produced."""

    AI = "ai"
    MANUAL = "manual"


class AuditAction(str, Enum):
    """Actions recorded in a document's audit log."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PROCESSED = "processed"
    UPDATED = "updated"
    DOWNLOADED = "downloaded"
    DELETED = "deleted"


class APIModel(BaseModel):
    """Base model serialized with camelCase keys for the grid frontend."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# Columns and Extracted Values
# =============================================================================


class ColumnDefinition(APIModel):
    """
    A prompted field definition shared across all documents of a project.

    Attributes:
        id: Immutable column identity.
        name: Display name, also sent to the model.
        prompt: Natural-language instruction describing what to extract.
        type: Declared semantic type.
        model_hint: Optional model name to prefer for this column.
        enabled: Whether the column takes part in extraction.
    """

    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    prompt: str = Field(..., min_length=1)
    type: ColumnType = Field(default=ColumnType.TEXT)
    model_hint: str | None = Field(default=None)
    enabled: bool = Field(default=True)

    @field_validator("id")
    @classmethod
    def reject_reserved_ids(cls, v: str) -> str:
        """The grid reserves its index and filename columns."""
        if v in ("index", "filename"):
            raise ValueError(f"Column id '{v}' is reserved")
        return v


class Provenance(APIModel):
    """Metadata recording how a value was produced."""

    method: ExtractionMethod = Field(default=ExtractionMethod.AI)
    model: str | None = Field(default=None)
    version: str | None = Field(default=None)
    actor: str | None = Field(default=None)


class ExtractedValue(APIModel):
    """A stored value for one (document, column) pair."""

    value: str = Field(default="")
    type: ColumnType = Field(default=ColumnType.TEXT)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extracted_at: datetime = Field(default_factory=datetime.utcnow)
    provenance: Provenance = Field(default_factory=Provenance)


class AggregateValue(ExtractedValue):
    """A collection-level value derived from its members."""

    source_document_ids: list[str] = Field(default_factory=list)


class ExtractionResult(APIModel):
    """
    Normalized result for one requested column.

    Confidence is always within [0, 1]; a failed column carries confidence
    0 and a diagnostic string as its value.
    """

    column_id: str = Field(...)
    value: str = Field(default="")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    provenance: Provenance = Field(default_factory=Provenance)

    @field_validator("confidence")
    @classmethod
    def round_confidence(cls, v: float) -> float:
        """Round confidence to 3 decimal places; a positive value stays positive."""
        if v > 0:
            return max(round(v, 3), 0.001)
        return round(v, 3)

    @property
    def succeeded(self) -> bool:
        return self.confidence > 0


# =============================================================================
# Processing State
# =============================================================================


class ProcessingError(APIModel):
    """Structured error stored on a failed document."""

    message: str
    code: str


class ProcessingState(APIModel):
    """Processing state of a document."""

    status: ProcessingStatus = Field(default=ProcessingStatus.PENDING)
    progress: int = Field(default=0, ge=0, le=100)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: ProcessingError | None = None
    retry_count: int = Field(default=0, ge=0)


class AuditEntry(APIModel):
    """One audit-log entry."""

    action: AuditAction
    actor: str | None = None
    timestamp: datetime
    details: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Extraction Request / Response
# =============================================================================


class ExtractRequest(APIModel):
    """
    Input contract of the extraction pipeline.

    Exactly one target must be given: a document, or a collection with an
    optional column subset and forceReextract flag.
    """

    document_id: str | None = Field(default=None)
    collection_id: str | None = Field(default=None)
    column_ids: list[str] | None = Field(default=None)
    force_reextract: bool = Field(default=False)

    @model_validator(mode="after")
    def validate_single_target(self) -> "ExtractRequest":
        """Ensure exactly one of documentId / collectionId is set."""
        if bool(self.document_id) == bool(self.collection_id):
            raise ValueError("Provide exactly one of documentId or collectionId")
        if self.document_id and (self.column_ids or self.force_reextract):
            raise ValueError(
                "columnIds and forceReextract only apply to collection targets"
            )
        return self


class CollectionExtractRequest(APIModel):
    """Body of the collection extraction endpoint."""

    column_ids: list[str] | None = Field(default=None)
    force_reextract: bool = Field(default=False)


class ExtractResponse(APIModel):
    """Output contract of the extraction pipeline."""

    per_column: list[ExtractionResult] = Field(default_factory=list)
    success_count: int = Field(..., ge=0)
    total_columns: int = Field(..., ge=0)
    document_id: str | None = None
    collection_id: str | None = None
    contributing_document_ids: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Collection targets only: columnId -> ids of contributing members",
    )


class PendingDocumentResult(APIModel):
    """Outcome of one document in a process-pending run."""

    document_id: str
    filename: str
    status: ProcessingStatus
    success_count: int = Field(default=0, ge=0)
    error: str | None = None


class ProcessPendingResponse(APIModel):
    """Summary of processing every pending document of a project."""

    total_pending: int = Field(..., ge=0)
    processed_count: int = Field(default=0, ge=0)
    failed_count: int = Field(default=0, ge=0)
    total_columns: int = Field(default=0, ge=0)
    results: list[PendingDocumentResult] = Field(default_factory=list)


# =============================================================================
# Document / Collection Views
# =============================================================================


class DocumentResponse(APIModel):
    """Document with processing state and extracted values."""

    id: str
    project_id: str
    filename: str
    storage_url: str | None = None
    mime_type: str | None = None
    extension: str | None = None
    size_bytes: int = 0
    page_count: int | None = None
    status: str
    processing: ProcessingState
    extracted_data: dict[str, ExtractedValue] = Field(default_factory=dict)


class CollectionSettings(APIModel):
    """Visibility and ordering of collection members."""

    hidden_document_ids: list[str] = Field(default_factory=list)
    aggregation_order: list[str] = Field(default_factory=list)


class CollectionStats(APIModel):
    """Derived statistics of a collection."""

    document_count: int = 0
    total_size: int = 0
    last_modified: datetime | None = None


class CollectionResponse(APIModel):
    """Collection with aggregates and stats."""

    id: str
    project_id: str
    name: str
    document_ids: list[str] = Field(default_factory=list)
    settings: CollectionSettings
    stats: CollectionStats
    extracted_data: dict[str, AggregateValue] = Field(default_factory=dict)


class UpdateValueRequest(APIModel):
    """Manual edit of a document value or collection aggregate."""

    value: str = Field(...)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class ReorderRequest(APIModel):
    """New aggregation order for a collection."""

    document_ids: list[str] = Field(...)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy")
    message: str = Field(default="")
    version: str = Field(default="1.0.0")
