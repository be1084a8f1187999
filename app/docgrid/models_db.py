"""
SQLAlchemy database models for the document grid.

This module defines the ORM models for persisting projects, their column
definitions, documents with per-column extracted values, audit logs and
document collections.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .models import ProcessingStatus


def _new_id() -> str:
    return str(uuid.uuid4())


class Project(Base):
    """
    Owner of columns, documents and collections.

    Project CRUD and collaborators live outside this service; only the
    identity is needed here.
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    columns: Mapped[list["ColumnDef"]] = relationship(
        "ColumnDef",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ColumnDef.position",
    )
    documents: Mapped[list["Document"]] = relationship(
        "Document",
        back_populates="project",
        cascade="all, delete-orphan",
    )
    collections: Mapped[list["DocumentCollection"]] = relationship(
        "DocumentCollection",
        back_populates="project",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}')>"


class ColumnDef(Base):
    """A prompted column definition at project scope."""

    __tablename__ = "columns"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(50), default="text", nullable=False)
    model_hint: Mapped[str | None] = mapped_column(String(100), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    project: Mapped[Project] = relationship("Project", back_populates="columns")

    def __repr__(self) -> str:
        return f"<ColumnDef(id={self.id}, name='{self.name}', type={self.type})>"


class Document(Base):
    """
    A single uploaded document.

    Tracks storage location, file metadata, processing state and the
    extracted value for each column (columnId -> ExtractedValue as JSON).
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    storage_url: Mapped[str | None] = mapped_column(
        String(2048),
        nullable=True,
        comment="Secure URL of the blob in storage",
    )
    mime_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    extension: Mapped[str | None] = mapped_column(String(20), nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Processing state
    processing_status: Mapped[ProcessingStatus] = mapped_column(
        Enum(ProcessingStatus),
        default=ProcessingStatus.PENDING,
        nullable=False,
        index=True,
    )
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    extracted_data: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
        comment="columnId -> ExtractedValue as JSON",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default="active",
        nullable=False,
        comment="active | archived | deleted (soft delete)",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    project: Mapped[Project] = relationship("Project", back_populates="documents")
    audit_log: Mapped[list["AuditLogEntry"]] = relationship(
        "AuditLogEntry",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="AuditLogEntry.id",
    )

    def __repr__(self) -> str:
        return (
            f"<Document(id={self.id}, filename='{self.filename}', "
            f"status={self.processing_status.value})>"
        )


class AuditLogEntry(Base):
    """Append-only audit trail of a document."""

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )
    details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    document: Mapped[Document] = relationship("Document", back_populates="audit_log")

    def __repr__(self) -> str:
        return f"<AuditLogEntry(document={self.document_id}, action={self.action})>"


class DocumentCollection(Base):
    """
    An ordered group of documents whose per-column values fold into one
    aggregate.

    Member ids, hidden ids and the aggregation order are kept as JSON lists
    so that ordering is stored exactly as the user arranged it.
    """

    __tablename__ = "document_collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    hidden_document_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    aggregation_order: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    extracted_data: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
        comment="columnId -> AggregateValue as JSON",
    )

    # Stats
    document_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_modified: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    project: Mapped[Project] = relationship("Project", back_populates="collections")

    def __repr__(self) -> str:
        return f"<DocumentCollection(id={self.id}, documents={len(self.document_ids or [])})>"
