# =============================================================================
# Embedding Generator — Batched and Parallel Vector Generation
# =============================================================================
#
# Turns chunk texts into embedding vectors through the model server's
# OpenAI-compatible embeddings endpoint (Ollama serves one at /v1).
#
# TWO PATHS:
#   Batch    — groups of `batch_size` texts, one request per group. A group
#              whose request fails (or whose reply has the wrong shape) is
#              re-submitted through the parallel path, item by item.
#   Parallel — windows of `concurrency` texts, one request per text, run on
#              a bounded thread pool. The window is a barrier: all of its
#              requests resolve before results are checked, failed items are
#              retried one by one, and the next window starts.
#
# Whether the server accepts list input is decided once per generator:
# pinned by `batch_mode` ("batch" / "parallel") or probed ("auto").
#
# ORDERING: output[i] is always the vector of the i-th filtered input,
# whichever path produced it. Results are written by index into a
# pre-sized list, never appended.
#
# FAILURE: exhausting the per-item retries is the only unrecoverable error.
# `generate()` raises EmbeddingError naming the chunk; `generate_partial()`
# records the failure, leaves None in that slot, and carries on.
#
# Pipeline position: Step 3 of ingestion (extract → chunk → embed → store).
# =============================================================================

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Literal, Protocol

from openai import OpenAI

from veritas.config import settings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]
Vector = list[float]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class MalformedEmbeddingResponse(ValueError):
    """The server replied, but not with one vector or a list of vectors."""


class EmbeddingError(RuntimeError):
    """A single chunk could not be embedded after all retries."""

    def __init__(self, index: int, content: str, cause: BaseException | None) -> None:
        self.index = index
        self.content = content
        self.cause = cause
        preview = content[:60].replace("\n", " ")
        super().__init__(
            f"Failed to embed chunk {index} ('{preview}'): {cause}"
        )


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingFailure:
    """A chunk that was skipped after its retries ran out."""

    index: int
    content: str
    error: str


@dataclass
class EmbeddingResult:
    """
    Outcome of a skip-and-continue run.

    `texts` is the filtered input; `vectors[i]` belongs to `texts[i]` and is
    None exactly for the indices listed in `failures`.
    """

    texts: list[str]
    vectors: list[Vector | None]
    failures: list[EmbeddingFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for v in self.vectors if v is not None)


# ---------------------------------------------------------------------------
# Remote Client
# ---------------------------------------------------------------------------


class EmbeddingClient(Protocol):
    """
    Anything that can turn one text or a list of texts into vectors.

    Returns the raw payload: one vector for a string input, a list of
    vectors for a list input. Shape checking happens in the generator.
    """

    def embed(
        self,
        inputs: str | list[str],
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> object:
        ...


class OpenAIEmbeddingClient:
    """
    Embedding client for any OpenAI-compatible endpoint.

    The SDK manages its own connection pool and is thread-safe, so one
    instance serves every worker thread of the parallel path.
    """

    def __init__(
        self,
        model: str,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 60.0,
    ) -> None:
        client_kwargs: dict = {"api_key": api_key or "ollama", "timeout": timeout}
        if base_url:
            client_kwargs["base_url"] = base_url
        self._client = OpenAI(**client_kwargs)
        self._model = model

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            model, base_url or "https://api.openai.com/v1",
        )

    def embed(
        self,
        inputs: str | list[str],
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> object:
        client = self._client
        options: dict = {}
        if timeout is not None:
            options["timeout"] = timeout
        if max_retries is not None:
            options["max_retries"] = max_retries
        if options:
            client = client.with_options(**options)

        response = client.embeddings.create(model=self._model, input=inputs)

        # Items carry their input position; sort so vectors line up with inputs
        vectors = [item.embedding for item in sorted(response.data, key=lambda x: x.index)]
        if isinstance(inputs, str) and len(vectors) == 1:
            return vectors[0]
        return vectors


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class EmbeddingGenerator:
    """
    Embeds chunk texts with bounded concurrency, retries and fixed-delay
    rate limiting. One instance can be reused across documents.
    """

    def __init__(
        self,
        client: EmbeddingClient,
        *,
        batch_size: int = 10,
        concurrency: int = 5,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        request_timeout: float = 60.0,
        batch_mode: Literal["auto", "batch", "parallel"] = "auto",
        batch_delay: float = 0.1,
        window_delay: float = 0.05,
        min_length: int = 5,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1 or concurrency < 1 or max_retries < 1:
            raise ValueError(
                "batch_size, concurrency and max_retries must all be at least 1"
            )
        self._client = client
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self.batch_mode = batch_mode
        self.batch_delay = batch_delay
        self.window_delay = window_delay
        self.min_length = min_length
        self._sleep = sleep
        self._batch_supported: bool | None = None

    @classmethod
    def from_settings(cls, cfg=None, client: EmbeddingClient | None = None) -> EmbeddingGenerator:
        cfg = cfg or settings
        return cls(
            client or get_embedding_client(),
            batch_size=cfg.embedding_batch_size,
            concurrency=cfg.embedding_concurrency,
            max_retries=cfg.embedding_retries,
            retry_delay=cfg.embedding_retry_delay,
            request_timeout=cfg.embedding_timeout,
            batch_mode=cfg.embedding_batch_mode,
            batch_delay=cfg.embedding_batch_delay,
            window_delay=cfg.embedding_window_delay,
            min_length=cfg.min_chunk_length,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def filter_texts(self, texts: Sequence[str]) -> list[str]:
        """Drop empty texts and texts shorter than min_length (after trimming)."""
        return [t for t in texts if t.strip() and len(t.strip()) >= self.min_length]

    def supports_batch(self) -> bool:
        """Decide once whether list input is used; probes the server in "auto" mode."""
        if self._batch_supported is None:
            if self.batch_mode == "batch":
                self._batch_supported = True
            elif self.batch_mode == "parallel":
                self._batch_supported = False
            else:
                self._batch_supported = self._probe_batch_support()
        return self._batch_supported

    def generate(
        self,
        texts: Sequence[str],
        on_progress: ProgressCallback | None = None,
    ) -> list[Vector]:
        """
        Embed `texts`, aligned with `filter_texts(texts)`.

        Raises:
            EmbeddingError: A chunk failed all of its retries. `index` refers
                to the filtered input.
        """
        result = self._run(texts, on_progress, skip_failed=False)
        return [v for v in result.vectors if v is not None]

    def generate_partial(
        self,
        texts: Sequence[str],
        on_progress: ProgressCallback | None = None,
    ) -> EmbeddingResult:
        """Embed `texts`, skipping chunks whose retries run out instead of raising."""
        return self._run(texts, on_progress, skip_failed=True)

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def _run(
        self,
        texts: Sequence[str],
        on_progress: ProgressCallback | None,
        skip_failed: bool,
    ) -> EmbeddingResult:
        valid = self.filter_texts(texts)
        result = EmbeddingResult(texts=valid, vectors=[None] * len(valid))
        if not valid:
            return result

        if self.supports_batch():
            self._run_batches(result, on_progress, skip_failed)
        else:
            self._run_parallel(result, range(len(valid)), on_progress, skip_failed)

        logger.info(
            "Generated %d/%d embeddings (%d failed)",
            result.succeeded, len(valid), len(result.failures),
        )
        return result

    def _run_batches(
        self,
        result: EmbeddingResult,
        on_progress: ProgressCallback | None,
        skip_failed: bool,
    ) -> None:
        total = len(result.texts)
        processed = 0

        for start in range(0, total, self.batch_size):
            end = min(start + self.batch_size, total)
            group = result.texts[start:end]

            try:
                payload = self._client.embed(group, timeout=self.request_timeout)
                vectors = _coerce_vectors(payload, expected=len(group))
                result.vectors[start:end] = vectors
            except Exception as exc:
                logger.warning(
                    "Batch embedding failed for chunks %d-%d, falling back to "
                    "per-item requests: %s",
                    start, end - 1, exc,
                )
                self._run_parallel(result, range(start, end), None, skip_failed)

            processed = end
            logger.debug("Embedding progress: %d/%d", processed, total)
            if on_progress:
                on_progress(processed, total)

            if end < total and self.batch_delay > 0:
                self._sleep(self.batch_delay)

    def _run_parallel(
        self,
        result: EmbeddingResult,
        indices: range,
        on_progress: ProgressCallback | None,
        skip_failed: bool,
    ) -> None:
        total = len(indices)
        processed = 0
        index_list = list(indices)

        with ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="embed",
        ) as executor:
            for offset in range(0, total, self.concurrency):
                window = index_list[offset:offset + self.concurrency]
                futures = {
                    executor.submit(
                        self._client.embed,
                        result.texts[i],
                        timeout=self.request_timeout,
                        max_retries=self.max_retries,
                    ): i
                    for i in window
                }
                # Barrier: the whole window resolves before anything else happens
                wait(futures)

                for future, i in sorted(futures.items(), key=lambda item: item[1]):
                    try:
                        result.vectors[i] = _coerce_vectors(future.result(), expected=1)[0]
                    except Exception as exc:
                        logger.warning(
                            "Embedding request for chunk %d failed, retrying "
                            "individually: %s",
                            i, exc,
                        )
                        self._retry_into(result, i, skip_failed)

                processed += len(window)
                if on_progress:
                    on_progress(processed, total)

                if processed < total and self.window_delay > 0:
                    self._sleep(self.window_delay)

    def _retry_into(self, result: EmbeddingResult, index: int, skip_failed: bool) -> None:
        try:
            result.vectors[index] = self._embed_with_retry(index, result.texts[index])
        except EmbeddingError as exc:
            if not skip_failed:
                raise
            result.failures.append(
                EmbeddingFailure(index=index, content=exc.content, error=str(exc.cause)),
            )

    def _embed_with_retry(self, index: int, text: str) -> Vector:
        last_exc: BaseException | None = None

        for attempt in range(1, self.max_retries + 1):
            try:
                payload = self._client.embed(text, timeout=self.request_timeout)
                return _coerce_vectors(payload, expected=1)[0]
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "Embedding attempt %d/%d failed for chunk %d (%d chars): %s",
                    attempt, self.max_retries, index, len(text), exc,
                )
                if attempt < self.max_retries:
                    self._sleep(self.retry_delay)

        logger.error(
            "Failed to embed chunk %d after %d attempts: %s",
            index, self.max_retries, last_exc,
        )
        raise EmbeddingError(index, text, last_exc)

    def _probe_batch_support(self) -> bool:
        try:
            payload = self._client.embed(
                ["batch probe", "batch probe"],
                timeout=self.request_timeout,
                max_retries=0,
            )
            _coerce_vectors(payload, expected=2)
        except Exception as exc:
            logger.info("Batch embeddings unavailable, using per-item requests: %s", exc)
            return False
        logger.info("Batch embeddings supported by the model server")
        return True


# ---------------------------------------------------------------------------
# Module-Level Helpers
# ---------------------------------------------------------------------------

_client: OpenAIEmbeddingClient | None = None


def get_embedding_client() -> OpenAIEmbeddingClient:
    """Lazily initialize and cache the embedding client."""
    global _client
    if _client is None:
        _client = OpenAIEmbeddingClient(
            model=settings.embedding_model,
            base_url=settings.ollama_base_url,
            api_key=settings.ollama_api_key,
            timeout=settings.embedding_timeout,
        )
    return _client


def embed_query(text: str) -> Vector:
    """
    Embed a single query string.

    Used at question time; relies on the SDK's own retries rather than the
    generator's per-chunk retry loop.
    """
    payload = get_embedding_client().embed(
        text,
        timeout=settings.embedding_timeout,
        max_retries=settings.embedding_retries,
    )
    return _coerce_vectors(payload, expected=1)[0]


def _is_vector(value: object) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) > 0
        and all(
            isinstance(x, (int, float)) and not isinstance(x, bool)
            for x in value
        )
    )


def _coerce_vectors(payload: object, expected: int) -> list[Vector]:
    """
    Normalise a reply to a list of `expected` vectors.

    Accepts one vector (a flat list of numbers) or a list of vectors.
    Anything else, or the wrong count, raises MalformedEmbeddingResponse.
    """
    if _is_vector(payload):
        vectors = [[float(x) for x in payload]]
    elif (
        isinstance(payload, (list, tuple))
        and payload
        and all(_is_vector(v) for v in payload)
    ):
        vectors = [[float(x) for x in v] for v in payload]
    else:
        raise MalformedEmbeddingResponse(
            f"Unrecognised embedding payload of type {type(payload).__name__}"
        )

    if len(vectors) != expected:
        raise MalformedEmbeddingResponse(
            f"Expected {expected} embeddings, got {len(vectors)}"
        )
    return vectors
