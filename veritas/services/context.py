# =============================================================================
# Context Selector — Greedy Packing into a Token Budget
# =============================================================================
#
# Walks re-ranked candidates best-first and keeps each one while it fits
# into the tokens left after the reserved share (system prompt scaffolding,
# conversation history, room for the answer).
#
# Selection stops at the FIRST candidate that does not fit. There is no
# skip-ahead: a large highly-ranked chunk blocks everything below it, which
# keeps the context a strict prefix of the ranking.
#
# Every accepted chunk costs its own estimate plus one separator estimate.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from veritas.services.reranker import RetrievedChunk, ScoredCandidate
from veritas.services.tokens import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class ContextBudget:
    """Token budget; nothing is selectable unless reserved_tokens < max_context_tokens."""

    max_context_tokens: int
    reserved_tokens: int = 0

    @property
    def available_tokens(self) -> int:
        return self.max_context_tokens - self.reserved_tokens


@dataclass
class ContextSelection:
    """Chunks chosen for the prompt, in ranked order, with their token cost."""

    chunks: list[RetrievedChunk] = field(default_factory=list)
    used_tokens: int = 0
    reserved_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.reserved_tokens + self.used_tokens


def select_within_budget(
    ranked: Sequence[ScoredCandidate],
    max_tokens: int,
    reserved_tokens: int,
    separator: str = DEFAULT_SEPARATOR,
) -> list[RetrievedChunk]:
    """Return the longest prefix of `ranked` whose cost fits the budget."""
    return select_context(
        ranked,
        ContextBudget(max_context_tokens=max_tokens, reserved_tokens=reserved_tokens),
        separator=separator,
    ).chunks


def select_context(
    ranked: Sequence[ScoredCandidate],
    budget: ContextBudget,
    separator: str = DEFAULT_SEPARATOR,
) -> ContextSelection:
    """Like `select_within_budget()`, but also reports the token accounting."""
    selection = ContextSelection(reserved_tokens=budget.reserved_tokens)
    available = budget.available_tokens
    if available <= 0:
        logger.warning(
            "No context budget left: reserved=%d, max=%d",
            budget.reserved_tokens, budget.max_context_tokens,
        )
        return selection

    separator_tokens = estimate_tokens(separator)
    for scored in ranked:
        cost = estimate_tokens(scored.chunk.content) + separator_tokens
        if selection.used_tokens + cost > available:
            break
        selection.chunks.append(scored.chunk)
        selection.used_tokens += cost

    return selection


def join_context(chunks: Sequence[RetrievedChunk], separator: str = DEFAULT_SEPARATOR) -> str:
    """Join selected chunk contents in order with the fixed separator."""
    return separator.join(chunk.content for chunk in chunks)
