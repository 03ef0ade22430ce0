# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌─────────────────┐       ┌──────────────────────────────────┐
# │  documents      │       │  chunks                          │
# ├─────────────────┤       ├──────────────────────────────────┤
# │ id (PK)         │──1:N─▶│ id (PK)                          │
# │ owner_id        │       │ document_id (FK → documents.id)  │
# │ name            │       │ chunk_index (int)                │
# │ path            │       │ content (text)                   │
# │ file_hash       │       │ token_count (int, estimated)     │
# │ file_size       │       │ embedding (vector(768))          │
# │ status          │       │ metadata_ (jsonb)                │
# │ processed_at    │       │ created_at                       │
# │ error_message   │       └──────────────────────────────────┘
# │ num_chunks      │
# │ embedding_model │
# │ celery_task_id  │
# │ created_at      │
# │ updated_at      │
# └─────────────────┘
#
# Chunks are written once, with their embedding, and deleted only through
# the cascade when their document is deleted.
# =============================================================================

import enum
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from veritas.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class DocumentStatus(str, enum.Enum):
    """
    Ingestion state of a document.

        QUEUED → PROCESSING → COMPLETED
                            → FAILED
    """

    QUEUED = "queued"            # Uploaded, waiting for a worker
    PROCESSING = "processing"    # Worker is extracting/chunking/embedding
    COMPLETED = "completed"      # Chunks embedded and stored; ready for chat
    FAILED = "failed"            # See error_message


class Document(Base):
    """An uploaded document (PDF, DOCX, TXT or MD) and its ingestion state."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Owning user; general (non-document) chat is scoped to an owner's documents
    owner_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Original filename as uploaded
    name: Mapped[str] = mapped_column(String(500), nullable=False)

    # Location of the stored upload on disk
    path: Mapped[str] = mapped_column(String(1000), nullable=False)

    # SHA-256 of the file bytes, used to reject duplicate uploads
    file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus),
        nullable=False,
        default=DocumentStatus.QUEUED,
    )

    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # Human-readable failure reason (null unless status == FAILED)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    num_chunks: Mapped[int | None] = mapped_column(Integer, nullable=True)

    embedding_model: Mapped[str | None] = mapped_column(String(255), nullable=True)

    celery_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Deleting a document deletes its chunks
    chunks: Mapped[list["Chunk"]] = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, name='{self.name}', status={self.status})>"


class Chunk(Base):
    """One embedded retrieval unit of a document."""

    __tablename__ = "chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    document_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Position among the document's stored chunks (0-indexed)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Estimated, see veritas.services.tokens
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=False,
    )

    # Chunk metadata from the chunker ({"length": <chars>})
    # `metadata_` because `metadata` is reserved on declarative classes
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONB,
        nullable=True,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped["Document"] = relationship("Document", back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, doc_id={self.document_id}, "
            f"index={self.chunk_index})>"
        )


# =============================================================================
# Indexes
# =============================================================================
# HNSW with vector_cosine_ops: nearest-neighbour search by cosine distance.
# =============================================================================

chunk_embedding_idx = Index(
    "idx_chunk_embedding_hnsw",
    Chunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

chunk_document_idx = Index(
    "idx_chunk_document_id",
    Chunk.document_id,
)
