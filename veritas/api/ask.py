# =============================================================================
# Ask API — One-Shot Grounded Answer
# =============================================================================
#
# POST /ask runs the same retrieval as the chat stream but waits for the
# full answer, and returns the re-ranked sources and the token accounting
# alongside it.
#
# Error handling:
# - Configuration errors (e.g. missing API key) → 503
# - Model server / embedding failures → 502
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from veritas.api.deps import resolve_chat_document
from veritas.db.engine import get_async_session
from veritas.models.requests import AskRequest
from veritas.models.responses import AskResponse, SourceChunk, TokenReport
from veritas.services.chat import answer
from veritas.services.retrieval import last_user_question

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Answering"])


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Answer the latest question from the document context",
)
async def ask_endpoint(
    request: AskRequest,
    session: AsyncSession = Depends(get_async_session),
) -> AskResponse:
    document = await resolve_chat_document(session, request.document_id)
    messages = request.as_dicts()

    logger.info(
        "Ask request: question='%s', document_id=%s, owner_id=%s",
        last_user_question(messages)[:80], request.document_id, request.owner_id,
    )

    try:
        result = await answer(messages, document=document, owner_id=request.owner_id)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except Exception as e:
        logger.exception("Answer generation failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Model service error: {e}",
        ) from e

    selected_ids = {id(chunk) for chunk in result.context.selected}
    sources = [
        SourceChunk(
            chunk_id=scored.chunk.chunk_id,
            document_id=scored.chunk.document_id,
            content=scored.chunk.content,
            score=round(scored.combined_score, 4),
            similarity_score=round(scored.similarity_score, 4),
            keyword_score=round(scored.keyword_score, 4),
            length_score=round(scored.length_score, 4),
        )
        for scored in result.context.ranked
        if id(scored.chunk) in selected_ids
    ]

    context = result.context
    return AskResponse(
        answer=result.answer,
        question=context.question,
        document_id=request.document_id,
        sources=sources,
        candidate_count=len(context.ranked),
        model=result.llm.model,
        tokens=TokenReport(
            max_context_tokens=context.max_context_tokens,
            reserved_tokens=context.reserved_tokens,
            context_tokens=context.context_tokens,
            total_tokens=context.total_tokens,
        ),
    )
