# =============================================================================
# Retrieval Re-ranker — Similarity + Keyword + Length
# =============================================================================
#
# Re-orders nearest-neighbour candidates for a query by a convex
# combination of three signals, each in [0, 1]:
#
#   similarity  1 - distance / 2 (cosine distance lies in [0, 2])
#   keyword     how many query keywords the chunk contains, and how often
#   length      preference for chunks of 800-2000 characters
#
#   combined = w_sim * similarity + w_kw * keyword + w_len * length
#
# Candidates without a distance score as the worst case (distance 2,
# similarity 0): an unmeasured chunk never outranks a measured one on
# similarity alone.
#
# The sort is stable. The vector index returns candidates by ascending
# distance, so ties go to the more vector-similar candidate.
# =============================================================================

from __future__ import annotations

import logging
import math
import string
from collections.abc import Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_DISTANCE = 2.0
# Occurrences of one keyword counted toward the frequency score
MAX_OCCURRENCES_PER_KEYWORD = 5
MIN_KEYWORD_LENGTH = 3
NEUTRAL_KEYWORD_SCORE = 0.5

STOP_WORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can",
    "had", "her", "was", "one", "our", "out", "has", "have", "his", "how",
    "its", "may", "who", "did", "does", "this", "that", "with", "what",
    "when", "where", "which", "why", "from", "they", "them", "then", "there",
    "these", "those", "into", "about", "than", "been", "were", "will",
    "would", "could", "should", "your", "their", "some", "such", "only",
    "also", "just", "please", "tell", "explain", "describe",
})


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class RetrievedChunk:
    """A stored chunk as returned by the vector index."""

    chunk_id: int | str
    document_id: int | None
    content: str
    metadata: dict = field(default_factory=dict)


@dataclass
class Candidate:
    """A retrieved chunk tagged with its cosine distance to the query vector."""

    chunk: RetrievedChunk
    distance: float | None


@dataclass
class ScoredCandidate:
    """Per-query scores for one candidate. Lives for a single query turn."""

    candidate: Candidate
    similarity_score: float
    keyword_score: float
    length_score: float
    combined_score: float

    @property
    def chunk(self) -> RetrievedChunk:
        return self.candidate.chunk


@dataclass(frozen=True)
class RerankWeights:
    """Weights of the convex combination; non-negative and summing to 1."""

    similarity: float = 0.7
    keyword: float = 0.2
    length: float = 0.1

    def __post_init__(self) -> None:
        if min(self.similarity, self.keyword, self.length) < 0:
            raise ValueError(f"Rerank weights must be non-negative: {self}")
        total = self.similarity + self.keyword + self.length
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Rerank weights must sum to 1, got {total:.6f}")

    @classmethod
    def from_settings(cls, settings) -> RerankWeights:
        return cls(
            similarity=settings.rerank_similarity_weight,
            keyword=settings.rerank_keyword_weight,
            length=settings.rerank_length_weight,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def rerank(
    candidates: Sequence[Candidate],
    query: str,
    weights: RerankWeights | None = None,
) -> list[ScoredCandidate]:
    """
    Score and sort `candidates` for `query`, highest combined score first.

    Deterministic for a given input and weights; equal scores keep their
    input order.
    """
    weights = weights or RerankWeights()
    keywords = extract_keywords(query)

    scored: list[ScoredCandidate] = []
    for candidate in candidates:
        content = candidate.chunk.content
        similarity = similarity_score(candidate.distance)
        keyword = keyword_score(content, keywords)
        length = length_score(len(content))
        combined = (
            weights.similarity * similarity
            + weights.keyword * keyword
            + weights.length * length
        )
        scored.append(ScoredCandidate(
            candidate=candidate,
            similarity_score=similarity,
            keyword_score=keyword,
            length_score=length,
            combined_score=combined,
        ))

    # sorted() stays stable with reverse=True
    return sorted(scored, key=lambda s: s.combined_score, reverse=True)


def similarity_score(distance: float | None) -> float:
    """Map cosine distance [0, 2] to similarity [0, 1]; None is the worst case."""
    if distance is None:
        distance = MAX_DISTANCE
    return min(1.0, max(0.0, 1.0 - distance / MAX_DISTANCE))


def extract_keywords(query: str) -> list[str]:
    """
    Lowercase, whitespace-split, strip punctuation, then drop short tokens
    and stop words. Duplicates are removed, first occurrence wins.
    """
    keywords: list[str] = []
    for token in query.lower().split():
        token = token.strip(string.punctuation)
        if len(token) < MIN_KEYWORD_LENGTH or token in STOP_WORDS:
            continue
        if token not in keywords:
            keywords.append(token)
    return keywords


def keyword_score(content: str, keywords: Sequence[str]) -> float:
    """
    0.7 * share of keywords present + 0.3 * capped occurrence frequency.

    A query with no usable keywords scores every chunk a neutral 0.5.
    """
    if not keywords:
        return NEUTRAL_KEYWORD_SCORE

    haystack = content.lower()
    matched = 0
    occurrences = 0
    for keyword in keywords:
        count = min(haystack.count(keyword), MAX_OCCURRENCES_PER_KEYWORD)
        if count:
            matched += 1
            occurrences += count

    match_ratio = matched / len(keywords)
    frequency = min(occurrences / 10, 1.0)
    return 0.7 * match_ratio + 0.3 * frequency


def length_score(length: int) -> float:
    """
    Piecewise preference for medium-length chunks:
        < 100          0.3
        100 - 799      linear 0.3 → 1.0
        800 - 2000     1.0
        > 2000         decays by 1/2000 per char, floor 0.5
    """
    if length < 100:
        return 0.3
    if length < 800:
        return 0.3 + 0.7 * (length - 100) / 700
    if length <= 2000:
        return 1.0
    return max(0.5, 1.0 - (length - 2000) / 2000)
