# =============================================================================
# Chat API — Streamed Grounded Answer (Server-Sent Events)
# =============================================================================
#
# POST /chat/stream responds with text/event-stream:
#
#     data: {"content": "..."}     one per generated text delta
#     data: [DONE]                 normal end
#     data: {"error": "..."}       failure; the stream ends after it
#
# Document checks (404/409) happen before the stream opens. Once it is
# open, errors are reported in-band only.
# =============================================================================

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from veritas.api.deps import resolve_chat_document
from veritas.db.engine import get_async_session
from veritas.models.requests import ChatRequest
from veritas.services.chat import stream_answer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Disable proxy buffering (nginx) so deltas reach the client immediately
    "X-Accel-Buffering": "no",
}


@router.post(
    "/chat/stream",
    summary="Stream an answer to the latest question as Server-Sent Events",
    response_class=StreamingResponse,
)
async def chat_stream_endpoint(
    request: ChatRequest,
    session: AsyncSession = Depends(get_async_session),
) -> StreamingResponse:
    document = await resolve_chat_document(session, request.document_id)

    logger.info(
        "Chat stream: %d messages, document_id=%s, owner_id=%s",
        len(request.messages), request.document_id, request.owner_id,
    )

    return StreamingResponse(
        stream_answer(request.as_dicts(), document=document, owner_id=request.owner_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
