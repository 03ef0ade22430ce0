# =============================================================================
# Document Store — Find, Create, Update Status
# =============================================================================
#
# Thin persistence helpers around the Document model:
# - find/create run on the API side (async session, request-scoped)
# - update_status runs on the worker side (own sync session, committed
#   immediately so status changes are visible even if the pipeline fails)
# =============================================================================

from __future__ import annotations

import hashlib
import logging
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from veritas.db.engine import get_sync_session
from veritas.db.models import Document, DocumentStatus

logger = logging.getLogger(__name__)

# Error messages are truncated to fit comfortably in logs and API responses
MAX_ERROR_LENGTH = 1000


def hash_file(content: bytes) -> str:
    """SHA-256 hex digest of the uploaded bytes."""
    return hashlib.sha256(content).hexdigest()


async def find_document(session: AsyncSession, document_id: int) -> Document | None:
    return await session.get(Document, document_id)


async def find_by_task_id(session: AsyncSession, task_id: str) -> Document | None:
    result = await session.execute(
        select(Document).where(Document.celery_task_id == task_id).limit(1)
    )
    return result.scalar_one_or_none()


async def find_by_hash(
    session: AsyncSession,
    file_hash: str,
    owner_id: int | None,
) -> Document | None:
    """Earlier upload of the same bytes by the same owner, if any."""
    stmt = select(Document).where(Document.file_hash == file_hash)
    if owner_id is None:
        stmt = stmt.where(Document.owner_id.is_(None))
    else:
        stmt = stmt.where(Document.owner_id == owner_id)
    result = await session.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def create_document(
    session: AsyncSession,
    *,
    name: str,
    path: str,
    file_hash: str,
    file_size: int,
    owner_id: int | None = None,
) -> Document:
    """Insert a QUEUED document and flush so its id is assigned."""
    doc = Document(
        name=name,
        path=path,
        file_hash=file_hash,
        file_size=file_size,
        owner_id=owner_id,
        status=DocumentStatus.QUEUED,
    )
    session.add(doc)
    await session.flush()
    logger.info("Created document id=%d name='%s'", doc.id, name)
    return doc


def update_status(
    document_id: int,
    status: DocumentStatus,
    *,
    error_message: str | None = None,
    num_chunks: int | None = None,
    embedding_model: str | None = None,
) -> None:
    """
    Record a status transition (sync, for workers).

    PROCESSING clears any previous error; COMPLETED stamps processed_at.
    """
    values: dict = {"status": status}
    if status == DocumentStatus.PROCESSING:
        values["error_message"] = None
    if status == DocumentStatus.COMPLETED:
        values["processed_at"] = datetime.now(UTC)
    if error_message is not None:
        values["error_message"] = error_message[:MAX_ERROR_LENGTH]
    if num_chunks is not None:
        values["num_chunks"] = num_chunks
    if embedding_model is not None:
        values["embedding_model"] = embedding_model

    with get_sync_session() as session:
        session.execute(
            update(Document)
            .where(Document.id == document_id)
            .values(**values)
        )

    logger.debug("Document %d → %s", document_id, status.value)
