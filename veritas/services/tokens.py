# =============================================================================
# Token Estimator — Character Heuristic
# =============================================================================
#
# Approximates language-model token counts as ceil(characters / 4), the
# usual ratio for English text. Counts are estimates, not tokenizer output;
# they only need to be consistent between the context selector and the
# caller's budget accounting.
# =============================================================================

from __future__ import annotations

import math
from collections.abc import Sequence

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """
    Estimate the token count of `text`.

    Empty or whitespace-only text costs 0 tokens. Otherwise every character
    (whitespace included) counts toward the estimate.
    """
    if not text or not text.strip():
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_tokens_for(texts: str | Sequence[str]) -> int | list[int]:
    """Estimate one text, or each text of a sequence."""
    if isinstance(texts, str):
        return estimate_tokens(texts)
    return [estimate_tokens(t) for t in texts]


def would_exceed_limit(current_tokens: int, text_to_add: str, max_tokens: int) -> bool:
    """True if adding `text_to_add` to `current_tokens` goes over `max_tokens`."""
    return current_tokens + estimate_tokens(text_to_add) > max_tokens
