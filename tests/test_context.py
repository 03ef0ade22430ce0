# =============================================================================
# Unit Tests — Context Selector
# =============================================================================

from veritas.services.context import (
    DEFAULT_SEPARATOR,
    ContextBudget,
    join_context,
    select_context,
    select_within_budget,
)
from veritas.services.reranker import Candidate, RetrievedChunk, ScoredCandidate
from veritas.services.tokens import estimate_tokens

SEPARATOR_TOKENS = estimate_tokens(DEFAULT_SEPARATOR)


def _scored(chunk_id, content: str, score: float = 0.5) -> ScoredCandidate:
    candidate = Candidate(
        chunk=RetrievedChunk(chunk_id=chunk_id, document_id=1, content=content),
        distance=0.5,
    )
    return ScoredCandidate(
        candidate=candidate,
        similarity_score=score,
        keyword_score=score,
        length_score=score,
        combined_score=score,
    )


def _text_costing(tokens: int) -> str:
    """Content whose estimate plus one separator equals `tokens`."""
    return "x" * ((tokens - SEPARATOR_TOKENS) * 4)


class TestSelectWithinBudget:

    def test_oversized_first_candidate_blocks_the_rest(self):
        ranked = [_scored("big", _text_costing(20)), _scored("small", "tiny chunk")]
        assert select_within_budget(ranked, max_tokens=100, reserved_tokens=90) == []

    def test_takes_prefix_that_fits(self):
        ranked = [_scored(i, _text_costing(10)) for i in range(5)]
        selected = select_within_budget(ranked, max_tokens=100, reserved_tokens=70)
        assert [c.chunk_id for c in selected] == [0, 1, 2]

    def test_exact_fit_is_accepted(self):
        ranked = [_scored(i, _text_costing(10)) for i in range(2)]
        selected = select_within_budget(ranked, max_tokens=40, reserved_tokens=20)
        assert len(selected) == 2

    def test_no_skip_ahead(self):
        ranked = [
            _scored("a", _text_costing(10)),
            _scored("b", _text_costing(50)),
            _scored("c", _text_costing(5)),
        ]
        selected = select_within_budget(ranked, max_tokens=40, reserved_tokens=0)
        assert [c.chunk_id for c in selected] == ["a"]

    def test_reserved_at_or_above_max_yields_nothing(self):
        ranked = [_scored(1, "short text")]
        assert select_within_budget(ranked, max_tokens=100, reserved_tokens=100) == []
        assert select_within_budget(ranked, max_tokens=100, reserved_tokens=150) == []

    def test_keeps_ranked_order(self):
        ranked = [_scored(i, f"chunk number {i}", 1 - i / 10) for i in range(4)]
        selected = select_within_budget(ranked, max_tokens=1000, reserved_tokens=0)
        assert [c.chunk_id for c in selected] == [0, 1, 2, 3]

    def test_budget_respected(self):
        ranked = [_scored(i, "word " * (i * 7 + 3)) for i in range(30)]
        max_tokens, reserved = 500, 123
        selected = select_within_budget(ranked, max_tokens, reserved)
        cost = sum(estimate_tokens(c.content) + SEPARATOR_TOKENS for c in selected)
        assert cost + reserved <= max_tokens


class TestSelectContext:

    def test_accounting(self):
        ranked = [_scored(i, _text_costing(10)) for i in range(3)]
        selection = select_context(ranked, ContextBudget(max_context_tokens=100, reserved_tokens=40))
        assert len(selection.chunks) == 3
        assert selection.used_tokens == 30
        assert selection.reserved_tokens == 40
        assert selection.total_tokens == 70

    def test_available_tokens(self):
        assert ContextBudget(4000, 1000).available_tokens == 3000


class TestJoinContext:

    def test_joins_in_order_with_separator(self):
        chunks = [
            RetrievedChunk(chunk_id=1, document_id=1, content="first"),
            RetrievedChunk(chunk_id=2, document_id=1, content="second"),
        ]
        assert join_context(chunks) == "first\n\n---\n\nsecond"

    def test_empty(self):
        assert join_context([]) == ""
