# =============================================================================
# Answering — Retrieval-Grounded Chat, One-Shot and Streamed
# =============================================================================
#
# answer():        assemble context → one completion → AnswerResult
# stream_answer(): assemble context → streamed completion as Server-Sent
#                  Events:
#
#     data: {"content": "The"}
#     data: {"content": " revenue"}
#     ...
#     data: [DONE]
#
# The stream never raises once started: a failure in embedding, search or
# generation becomes one `data: {"error": "..."}` event and the stream ends.
# =============================================================================

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from veritas.services.embedder import embed_query
from veritas.services.llm import LLMProvider, LLMResponse, get_llm_provider
from veritas.services.retrieval import AssembledContext, assemble_context
from veritas.services.vectorstore import VectorStore, get_vector_store

logger = logging.getLogger(__name__)

DONE_EVENT = "data: [DONE]\n\n"


@dataclass
class AnswerResult:
    answer: str
    context: AssembledContext
    llm: LLMResponse


def sse_event(payload: dict) -> str:
    """One Server-Sent Event line carrying a JSON payload."""
    return f"data: {json.dumps(payload)}\n\n"


def _conversation(messages: Sequence[dict[str, str]]) -> list[dict[str, str]]:
    # System prompts are supplied by retrieval, not by the client
    return [
        {"role": m["role"], "content": m.get("content") or ""}
        for m in messages
        if m.get("role") in ("user", "assistant")
    ]


async def answer(
    messages: Sequence[dict[str, str]],
    document: Any | None = None,
    owner_id: int | None = None,
    vector_store: VectorStore | None = None,
    llm: LLMProvider | None = None,
    embed: Callable[[str], list[float]] = embed_query,
) -> AnswerResult:
    """Answer the latest question in one completion. Errors propagate."""
    context = await assemble_context(
        messages,
        vector_store or get_vector_store(),
        embed=embed,
        document=document,
        owner_id=owner_id,
    )
    provider = llm or get_llm_provider()
    response = await provider.complete(_conversation(messages), system=context.system_prompt)

    logger.info(
        "Answered with %d context chunks (model=%s, in=%d, out=%d tokens)",
        len(context.selected), response.model,
        response.input_tokens, response.output_tokens,
    )
    return AnswerResult(answer=response.content, context=context, llm=response)


async def stream_answer(
    messages: Sequence[dict[str, str]],
    document: Any | None = None,
    owner_id: int | None = None,
    vector_store: VectorStore | None = None,
    llm: LLMProvider | None = None,
    embed: Callable[[str], list[float]] = embed_query,
) -> AsyncIterator[str]:
    """Yield SSE lines for a streamed answer, ending with [DONE] or an error event."""
    try:
        context = await assemble_context(
            messages,
            vector_store or get_vector_store(),
            embed=embed,
            document=document,
            owner_id=owner_id,
        )
        provider = llm or get_llm_provider()
        async for delta in provider.stream(
            _conversation(messages), system=context.system_prompt,
        ):
            yield sse_event({"content": delta})
    except Exception as exc:
        logger.exception("Chat stream failed")
        yield sse_event({"error": str(exc)})
        return

    yield DONE_EVENT
