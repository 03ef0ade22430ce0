# =============================================================================
# Query-Time Context Assembly
# =============================================================================
#
# Turns a conversation into a grounded system prompt:
#
#   last user question
#        │ embed
#        ▼
#   vector store ── nearest `retrieval_candidates` chunks, scoped to one
#        │           document or to the owner's documents
#        ▼
#   rerank ─────── similarity + keyword + length
#        │
#        ▼
#   select ─────── greedy prefix within max_context_tokens - reserved
#        │
#        ▼
#   system prompt = scaffolding + chunks joined by the separator
#
# Reserved tokens = scaffolding + every user and assistant turn sent to the
# model + a fixed share of the window kept free for the answer.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from veritas.config import settings
from veritas.services.context import ContextBudget, join_context, select_context
from veritas.services.embedder import embed_query
from veritas.services.reranker import (
    RerankWeights,
    RetrievedChunk,
    ScoredCandidate,
    rerank,
)
from veritas.services.tokens import estimate_tokens
from veritas.services.vectorstore import VectorStore

logger = logging.getLogger(__name__)

EMPTY_CONTEXT_PROMPT = (
    "You are a helpful assistant. If the context is empty or insufficient, "
    "answer based on your general knowledge about the user's documents if "
    "possible, and otherwise ask a clarifying question."
)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class AssembledContext:
    """Everything one chat turn needs from retrieval."""

    system_prompt: str
    question: str
    selected: list[RetrievedChunk] = field(default_factory=list)
    ranked: list[ScoredCandidate] = field(default_factory=list)
    reserved_tokens: int = 0
    context_tokens: int = 0
    max_context_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.reserved_tokens + self.context_tokens


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def last_user_question(messages: Sequence[dict[str, str]]) -> str:
    """Content of the most recent user message."""
    for message in reversed(messages):
        if message.get("role") == "user":
            return message.get("content") or ""
    raise ValueError("Conversation has no user message")


def prompt_scaffolding(scope_name: str | None) -> str:
    """Instruction text that precedes the context in the system prompt."""
    scope = f"this document ('{scope_name}')" if scope_name else "the available documents"
    return (
        f"Based only on the following context from {scope}, answer the user's "
        "question. If you are not sure, say you are not sure and suggest where "
        "to look.\n\nContext:\n"
    )


def build_system_prompt(scope_name: str | None, context: str) -> str:
    if not context.strip():
        return EMPTY_CONTEXT_PROMPT
    return prompt_scaffolding(scope_name) + context


def reserved_tokens_for(
    messages: Sequence[dict[str, str]],
    prompt_base: str,
    max_tokens: int,
    reserve_ratio: float,
) -> int:
    # Every turn that is forwarded to the model, assistant replies included
    history_tokens = sum(
        estimate_tokens(m.get("content") or "")
        for m in messages
        if m.get("role") in ("user", "assistant")
    )
    return estimate_tokens(prompt_base) + history_tokens + math.floor(max_tokens * reserve_ratio)


async def assemble_context(
    messages: Sequence[dict[str, str]],
    vector_store: VectorStore,
    embed: Callable[[str], list[float]] = embed_query,
    document: Any | None = None,
    owner_id: int | None = None,
    *,
    max_context_tokens: int | None = None,
    reserve_ratio: float | None = None,
    candidates: int | None = None,
    separator: str | None = None,
    weights: RerankWeights | None = None,
) -> AssembledContext:
    """
    Retrieve, re-rank and pack context for the latest question.

    Args:
        messages: Conversation so far, oldest first.
        vector_store: Backend to search.
        embed: Sync text → vector function (run in a worker thread).
        document: Object with `id` and `name`; restricts the search to it.
        owner_id: Restricts the search to this owner's documents when no
            document is given.
        Remaining keyword arguments default to the configured values.
    """
    max_context_tokens = max_context_tokens or settings.max_context_tokens
    reserve_ratio = settings.response_reserve_ratio if reserve_ratio is None else reserve_ratio
    candidates = candidates or settings.retrieval_candidates
    separator = settings.context_separator if separator is None else separator
    weights = weights or RerankWeights.from_settings(settings)

    question = last_user_question(messages)
    query_vector = await asyncio.to_thread(embed, question)

    found = await vector_store.search(
        query_vector,
        top_k=candidates,
        document_id=document.id if document is not None else None,
        owner_id=owner_id,
    )
    logger.info(
        "Candidate chunks: %s",
        ", ".join(str(c.chunk.chunk_id) for c in found) or "(none)",
    )

    ranked = rerank(found, question, weights)
    logger.info(
        "Re-ranking completed: candidates=%d top=%s",
        len(ranked),
        [
            {
                "chunk_id": s.chunk.chunk_id,
                "score": round(s.combined_score, 3),
                "similarity": round(s.similarity_score, 3),
                "keyword": round(s.keyword_score, 3),
                "length": round(s.length_score, 3),
            }
            for s in ranked[:5]
        ],
    )

    scope_name = document.name if document is not None else None
    reserved = reserved_tokens_for(
        messages, prompt_scaffolding(scope_name), max_context_tokens, reserve_ratio,
    )
    selection = select_context(
        ranked,
        ContextBudget(max_context_tokens=max_context_tokens, reserved_tokens=reserved),
        separator=separator,
    )
    logger.info(
        "Context window: candidates=%d selected=%d reserved=%d used=%d max=%d",
        len(found), len(selection.chunks), reserved,
        selection.total_tokens, max_context_tokens,
    )

    context = join_context(selection.chunks, separator)
    return AssembledContext(
        system_prompt=build_system_prompt(scope_name, context),
        question=question,
        selected=selection.chunks,
        ranked=ranked,
        reserved_tokens=reserved,
        context_tokens=selection.used_tokens,
        max_context_tokens=max_context_tokens,
    )
