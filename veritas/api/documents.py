import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from veritas.db.engine import get_async_session
from veritas.models.responses import DocumentResponse
from veritas.services.documents import find_document

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Documents"])


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    summary="Get a document record, including ingestion status and error",
)
async def get_document(
    document_id: int,
    session: AsyncSession = Depends(get_async_session),
) -> DocumentResponse:
    doc = await find_document(session, document_id)
    if doc is None:
        raise HTTPException(status_code=404, detail=f"Document {document_id} not found.")
    return DocumentResponse.model_validate(doc)
