# =============================================================================
# Shared Route Dependencies
# =============================================================================

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from veritas.db.models import Document, DocumentStatus
from veritas.services.documents import find_document


async def resolve_chat_document(
    session: AsyncSession,
    document_id: int | None,
) -> Document | None:
    """
    Load the document a chat is scoped to.

    Raises 404 if it does not exist and 409 until its ingestion has
    completed: a half-ingested document would answer from partial context.
    """
    if document_id is None:
        return None

    doc = await find_document(session, document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found.")
    if doc.status != DocumentStatus.COMPLETED:
        raise HTTPException(
            status_code=409,
            detail=f"Document {document_id} is not ready (status: {doc.status.value}).",
        )
    return doc
