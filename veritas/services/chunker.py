# =============================================================================
# Recursive Text Chunker — Separator Tiers with Character Overlap
# =============================================================================
#
# Splits extracted document text into overlapping chunks sized for the
# embedding model and for the generation model's context window.
#
# ALGORITHM:
# 1. Trim the text. If it already fits in chunk_size, return it as one chunk.
# 2. Try separators from coarsest to finest: paragraph break, line break,
#    sentence end, space. Use the first one that yields more than one part.
# 3. Accumulate parts into a running chunk, re-joined with that separator.
#    When the next part would overflow, emit the running chunk and open a
#    new one that starts with the last `overlap` characters of the emitted
#    chunk, so meaning carries across the boundary.
# 4. A part that is itself larger than chunk_size is emitted through the
#    same procedure restricted to the FINER separators only, prefixed with
#    the pending overlap tail (joined by the separator of the tier the tail
#    came from), and the chunk after it opens with the tail of its last
#    piece. Each level of recursion drops at least one separator, so the
#    depth is bounded by len(SEPARATORS).
# 5. With no separator left, slice fixed windows of chunk_size characters
#    advancing by chunk_size - overlap. A pending overlap tail is kept as
#    the start of the first window.
#
# Chunks opened with an overlap tail may exceed chunk_size by at most
# overlap + len(separator). Fixed-width slices never exceed chunk_size.
#
# Pipeline position: Step 2 of ingestion (extract → chunk → embed → store).
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Coarsest first
SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", " ")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextChunk:
    """
    One retrieval unit, in document order.

    metadata keys:
        length: int — character count of `content`
    """

    content: str
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_content(cls, content: str) -> TextChunk:
        return cls(content=content, metadata={"length": len(content)})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecursiveChunker:
    """Chunking engine bound to a chunk size and overlap (both in characters)."""

    chunk_size: int = 1500
    overlap: int = 200

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.overlap < 0:
            raise ValueError(f"overlap must not be negative, got {self.overlap}")

    @classmethod
    def from_settings(cls, settings) -> RecursiveChunker:
        return cls(chunk_size=settings.chunk_size, overlap=settings.chunk_overlap)

    @property
    def effective_overlap(self) -> int:
        """Overlap clamped to half the chunk size."""
        return min(self.overlap, self.chunk_size // 2)

    def chunk(self, text: str) -> list[TextChunk]:
        """
        Split `text` into an ordered list of TextChunk.

        Empty input yields a single empty chunk; callers drop it with
        `filter_chunks()`.
        """
        chunks = _split(
            text,
            self.chunk_size,
            self.effective_overlap,
            SEPARATORS,
        )
        logger.debug(
            "Chunked %d characters into %d chunks (size=%d, overlap=%d)",
            len(text), len(chunks), self.chunk_size, self.effective_overlap,
        )
        return chunks


def chunk_text(
    text: str,
    chunk_size: int = 1500,
    chunk_overlap: int = 200,
) -> list[TextChunk]:
    """Convenience wrapper: `RecursiveChunker(chunk_size, chunk_overlap).chunk(text)`."""
    return RecursiveChunker(chunk_size=chunk_size, overlap=chunk_overlap).chunk(text)


def filter_chunks(chunks: Iterable[TextChunk], min_length: int = 5) -> list[str]:
    """
    Caller-side filter applied before embedding.

    Returns the trimmed contents of chunks whose trimmed length is at least
    `min_length`, in order.
    """
    contents: list[str] = []
    for chunk in chunks:
        trimmed = chunk.content.strip()
        if trimmed and len(trimmed) >= min_length:
            contents.append(trimmed)
    return contents


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _split(
    text: str,
    chunk_size: int,
    overlap: int,
    separators: Sequence[str],
    lead: str = "",
    lead_separator: str = "",
) -> list[TextChunk]:
    """
    Chunk `text`. A non-empty `lead` is the overlap tail carried over from
    the enclosing tier; it opens the first chunk, joined by `lead_separator`
    (the enclosing tier's separator, not this tier's).
    """
    text = text.strip()
    if len(text) <= chunk_size:
        return [TextChunk.from_content(text)]

    for tier, separator in enumerate(separators):
        parts = text.split(separator)
        if len(parts) > 1:
            return _merge_parts(
                parts,
                separator,
                chunk_size,
                overlap,
                finer_separators=separators[tier + 1:],
                lead=lead,
                lead_separator=lead_separator,
            )

    if lead:
        text = f"{lead}{lead_separator}{text}"
    return _split_fixed_width(text, chunk_size, overlap)


def _merge_parts(
    parts: list[str],
    separator: str,
    chunk_size: int,
    overlap: int,
    finer_separators: Sequence[str],
    lead: str = "",
    lead_separator: str = "",
) -> list[TextChunk]:
    chunks: list[TextChunk] = []
    current = ""
    # Overlap carried into the next chunk that opens, and what joins it
    tail = lead
    joiner = lead_separator if lead else separator

    for raw_part in parts:
        part = raw_part.strip()
        if not part:
            continue

        if len(part) > chunk_size:
            # Close the running chunk first so output stays in document order
            if current:
                chunks.append(TextChunk.from_content(current))
                tail, joiner = _tail(current, overlap), separator
                current = ""

            sub_chunks = _split(
                part, chunk_size, overlap, finer_separators,
                lead=tail, lead_separator=joiner,
            )
            chunks.extend(sub_chunks)
            tail = _tail(sub_chunks[-1].content, overlap) if sub_chunks else ""
            joiner = separator
            continue

        if not current:
            current = f"{tail}{joiner}{part}" if tail else part
            continue

        candidate = f"{current}{separator}{part}"
        if len(candidate) > chunk_size:
            chunks.append(TextChunk.from_content(current))
            tail, joiner = _tail(current, overlap), separator
            current = f"{tail}{joiner}{part}" if tail else part
        else:
            current = candidate

    if current:
        chunks.append(TextChunk.from_content(current))

    return chunks


def _split_fixed_width(text: str, chunk_size: int, overlap: int) -> list[TextChunk]:
    """Last resort: fixed windows, each repeating the previous window's last `overlap` chars."""
    step = chunk_size - overlap
    chunks: list[TextChunk] = []
    start = 0

    while start < len(text):
        end = min(start + chunk_size, len(text))
        chunks.append(TextChunk.from_content(text[start:end]))
        if end >= len(text) or step <= 0:
            break
        start += step

    return chunks


def _tail(content: str, overlap: int) -> str:
    # content[-0:] would return the whole string
    return content[-overlap:] if overlap > 0 else ""
