# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# The contract between backend and clients. Chunk embeddings stay in the
# database; responses carry text, ids and scores only.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from veritas.db.models import DocumentStatus


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class DocumentResponse(BaseModel):
    """Document record, returned after upload and by GET /documents/{id}."""

    id: int
    owner_id: int | None = None
    name: str
    file_size: int | None = None
    status: DocumentStatus
    error_message: str | None = None
    num_chunks: int | None = None
    embedding_model: str | None = None
    celery_task_id: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IngestResponse(BaseModel):
    """
    Response for POST /ingest.

    The document is NOT immediately available for questions. Poll
    GET /ingest/{task_id} or GET /documents/{id} until it is completed.
    """

    document_id: int = Field(description="ID of the created document record")
    task_id: str = Field(description="Celery task ID for tracking ingestion progress")
    status: str = Field(default="queued", description="Document status")
    message: str = Field(
        default="Document uploaded. Ingestion queued.",
        description="Human-readable status message",
    )


class IngestStatusResponse(BaseModel):
    """Response for GET /ingest/{task_id}."""

    task_id: str
    status: str = Field(description="Task status: PENDING, STARTED, RETRY, SUCCESS, FAILURE")
    document: DocumentResponse | None = Field(
        default=None,
        description="The document record, once the task is known",
    )
    error: str | None = Field(
        default=None,
        description="Error message (available when status is FAILURE)",
    )


class SourceChunk(BaseModel):
    """A re-ranked chunk that went into the answer's context."""

    chunk_id: int | str = Field(description="ID of the chunk in the vector store")
    document_id: int | None = Field(default=None)
    content: str
    score: float = Field(description="Combined re-rank score (0-1)")
    similarity_score: float = Field(description="1 - cosine distance / 2")
    keyword_score: float
    length_score: float


class TokenReport(BaseModel):
    """Context-window accounting for one answer (estimated tokens)."""

    max_context_tokens: int
    reserved_tokens: int
    context_tokens: int
    total_tokens: int


class AskResponse(BaseModel):
    """Response for POST /ask."""

    answer: str = Field(description="The generated answer")
    question: str = Field(description="The last user message (echoed back)")
    document_id: int | None = Field(
        description="Document that was searched (null if the owner's documents)"
    )
    sources: list[SourceChunk] = Field(
        description="Chunks used as context, in re-ranked order"
    )
    candidate_count: int = Field(description="Chunks returned by vector search")
    model: str = Field(description="Model that generated the answer")
    tokens: TokenReport
