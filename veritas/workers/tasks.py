# =============================================================================
# Ingestion Task
# =============================================================================
#
# ingest_document(document_id, file_path, ...):
#
#   processing ─▶ extract ─▶ chunk + filter ─▶ embed ─▶ store ─▶ completed
#
# Embedding is skip-and-continue: a chunk whose retries run out is logged
# and left out, the rest of the document is still stored. A document that
# yields no usable chunk, or no embedded chunk, fails.
#
# Workers run this synchronously: sync DB sessions only, no event loop.
#
# On any failure the document is marked failed with the message and the
# task is retried up to 3 times, 60 s apart (model server restarting, DB
# connection dropped). Permanent errors such as an unsupported file simply
# fail again and stay failed.
# =============================================================================

import logging

from veritas.config import settings
from veritas.db.models import DocumentStatus
from veritas.services.chunker import RecursiveChunker, filter_chunks
from veritas.services.documents import update_status
from veritas.services.embedder import EmbeddingGenerator
from veritas.services.extractor import extract_text
from veritas.services.vectorstore import get_vector_store
from veritas.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    name="ingest_document",
    max_retries=3,
    default_retry_delay=60,
)
def ingest_document(
    self,
    document_id: int,
    file_path: str,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
    owner_id: int | None = None,
) -> dict:
    """
    Process an uploaded file through the full ingestion pipeline.

    Args:
        self: Celery task instance (bound task, provides self.request.id).
        document_id: Database ID of the Document record to update.
        file_path: Path to the stored upload.
        chunk_size: Override chunk size in characters (default: settings.chunk_size).
        chunk_overlap: Override overlap in characters (default: settings.chunk_overlap).
        owner_id: Owner of the document, copied onto stored chunks for
            owner-scoped search.

    Returns:
        dict with a processing summary.
    """
    task_id = self.request.id
    _chunk_size = chunk_size or settings.chunk_size
    _chunk_overlap = settings.chunk_overlap if chunk_overlap is None else chunk_overlap

    logger.info(
        "Starting ingestion: document_id=%d, file=%s, task_id=%s, "
        "chunk_size=%d, chunk_overlap=%d, vectorstore=%s",
        document_id, file_path, task_id,
        _chunk_size, _chunk_overlap, settings.vectorstore_type,
    )

    try:
        # --- Step 1: Mark as PROCESSING ---
        update_status(document_id, DocumentStatus.PROCESSING)

        # --- Step 2: Extract text ---
        logger.info("[%s] Step 2/5: Extracting text...", task_id)
        text = extract_text(file_path)

        # --- Step 3: Chunk ---
        logger.info(
            "[%s] Step 3/5: Chunking text (size=%d, overlap=%d)...",
            task_id, _chunk_size, _chunk_overlap,
        )
        chunker = RecursiveChunker(chunk_size=_chunk_size, overlap=_chunk_overlap)
        raw_chunks = chunker.chunk(text)
        contents = filter_chunks(raw_chunks, min_length=settings.min_chunk_length)
        logger.info(
            "[%s] Created %d chunks (%d after filtering)",
            task_id, len(raw_chunks), len(contents),
        )

        if not contents:
            raise ValueError(
                "No valid chunks produced from document — file may be empty or unreadable"
            )

        # --- Step 4: Embed ---
        logger.info(
            "[%s] Step 4/5: Generating embeddings for %d chunks (model=%s)...",
            task_id, len(contents), settings.embedding_model,
        )
        generator = EmbeddingGenerator.from_settings()

        def _log_progress(done: int, total: int) -> None:
            logger.debug("[%s] Embedded %d/%d chunks", task_id, done, total)

        result = generator.generate_partial(contents, on_progress=_log_progress)

        for failure in result.failures:
            logger.warning(
                "[%s] Chunk %d was not embedded and will be skipped: %s",
                task_id, failure.index, failure.error,
            )

        if result.succeeded == 0:
            raise RuntimeError("No chunks were successfully embedded")

        # --- Step 5: Store ---
        logger.info(
            "[%s] Step 5/5: Storing %d chunks in %s...",
            task_id, result.succeeded, settings.vectorstore_type,
        )
        stored_contents: list[str] = []
        embeddings: list[list[float]] = []
        metadatas: list[dict] = []
        for content, vector in zip(result.texts, result.vectors, strict=True):
            if vector is None:
                continue
            metadatas.append({"chunk_index": len(stored_contents), "length": len(content)})
            stored_contents.append(content)
            embeddings.append(vector)

        get_vector_store().add_chunks(
            document_id=document_id,
            contents=stored_contents,
            embeddings=embeddings,
            metadatas=metadatas,
            owner_id=owner_id,
        )

        # --- Step 6: Mark as COMPLETED ---
        update_status(
            document_id,
            DocumentStatus.COMPLETED,
            num_chunks=len(stored_contents),
            embedding_model=settings.embedding_model,
        )

        summary = {
            "document_id": document_id,
            "status": "completed",
            "chunk_count": len(stored_contents),
            "skipped_chunks": len(result.failures),
            "chunk_size": _chunk_size,
            "chunk_overlap": _chunk_overlap,
            "vectorstore": settings.vectorstore_type,
        }
        logger.info("[%s] Ingestion complete: %s", task_id, summary)
        return summary

    except Exception as exc:
        logger.exception(
            "[%s] Ingestion failed for document_id=%d: %s",
            task_id, document_id, exc,
        )
        update_status(document_id, DocumentStatus.FAILED, error_message=str(exc))

        # Celery re-queues after default_retry_delay; once retries run out
        # the document stays FAILED.
        raise self.retry(exc=exc)
