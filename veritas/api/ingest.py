# =============================================================================
# Ingestion API — Upload and Status Polling
# =============================================================================
#
#   POST /ingest            store the upload, queue ingest_document → 202
#   GET  /ingest/{task_id}  Celery state + the document record
#
# An upload is rejected before anything is stored when its extension is
# not allowed, it is empty or too large (400), or the same owner already
# uploaded identical bytes (409, matched on SHA-256).
#
# The document row is committed before the task is queued so a fast worker
# always finds it.
# =============================================================================

import logging
from pathlib import Path

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from veritas.config import settings
from veritas.db.engine import get_async_session
from veritas.models.responses import DocumentResponse, IngestResponse, IngestStatusResponse
from veritas.services.documents import create_document, find_by_hash, find_by_task_id, hash_file
from veritas.services.extractor import file_extension
from veritas.workers.tasks import ingest_document

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ingestion"])


async def _read_upload(file: UploadFile) -> bytes:
    """Upload bytes, or HTTP 400 if the file cannot be ingested."""
    if file_extension(file.filename or "") not in settings.allowed_extensions:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Allowed: {', '.join(settings.allowed_extensions)}",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    if len(content) > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise HTTPException(status_code=400, detail=f"File exceeds the {limit_mb} MB limit.")
    return content


def _save_upload(document_id: int, file_name: str, content: bytes) -> Path:
    # The id prefix keeps two uploads named "report.pdf" apart
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    path = upload_dir / f"{document_id}_{Path(file_name).name}"
    path.write_bytes(content)
    return path


@router.post(
    "/ingest",
    response_model=IngestResponse,
    status_code=202,
    summary="Upload a document for processing",
    description=(
        "Upload a PDF, DOCX, TXT or MD file. It is extracted, chunked, embedded "
        "and stored in the background; poll the returned task_id for progress."
    ),
)
async def ingest_document_endpoint(
    file: UploadFile = File(..., description="Document to ingest"),
    owner_id: int | None = Form(default=None, description="Owning user"),
    chunk_size: int | None = Query(
        default=None, ge=100, le=8000, description="Chunk size in characters.",
    ),
    chunk_overlap: int | None = Query(
        default=None, ge=0, le=2000, description="Chunk overlap in characters.",
    ),
    session: AsyncSession = Depends(get_async_session),
) -> IngestResponse:
    content = await _read_upload(file)

    file_hash = hash_file(content)
    duplicate = await find_by_hash(session, file_hash, owner_id)
    if duplicate is not None:
        raise HTTPException(
            status_code=409,
            detail=f"This file was already uploaded as document {duplicate.id} ('{duplicate.name}').",
        )

    doc = await create_document(
        session,
        name=file.filename,
        path="",
        file_hash=file_hash,
        file_size=len(content),
        owner_id=owner_id,
    )
    path = _save_upload(doc.id, file.filename, content)
    doc.path = str(path)
    await session.commit()

    task = ingest_document.delay(
        document_id=doc.id,
        file_path=str(path),
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        owner_id=owner_id,
    )
    # Committed by the get_async_session dependency
    doc.celery_task_id = task.id

    logger.info(
        "Queued ingestion: document_id=%d, file=%s (%d bytes), task_id=%s",
        doc.id, path, len(content), task.id,
    )
    return IngestResponse(
        document_id=doc.id,
        task_id=task.id,
        message=f"Document '{file.filename}' uploaded. Ingestion queued.",
    )


@router.get(
    "/ingest/{task_id}",
    response_model=IngestStatusResponse,
    summary="Check document ingestion status",
)
async def get_ingest_status(
    task_id: str,
    session: AsyncSession = Depends(get_async_session),
) -> IngestStatusResponse:
    """
    `status` is the Celery state: PENDING, STARTED, RETRY, SUCCESS or
    FAILURE. While a task is retrying, the document's error_message holds
    the last failure.
    """
    result = AsyncResult(task_id, app=ingest_document.app)
    doc = await find_by_task_id(session, task_id)

    error = None
    if result.status == "FAILURE":
        error = str(result.result) if result.result else "Unknown error"

    return IngestStatusResponse(
        task_id=task_id,
        status=result.status,
        document=DocumentResponse.model_validate(doc) if doc is not None else None,
        error=error,
    )
