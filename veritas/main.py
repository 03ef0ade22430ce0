# =============================================================================
# FastAPI Application Factory
# =============================================================================
#
#   uvicorn veritas.main:app --reload
#
# Routers:
#   /ingest, /ingest/{task_id}   upload + ingestion status
#   /documents/{document_id}     document record
#   /ask                         one-shot answer with sources
#   /chat/stream                 streamed answer (SSE)
#   /health                      liveness
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from veritas.api import ask, chat, documents, ingest
from veritas.config import settings
from veritas.logging_config import configure_logging
from veritas.models.responses import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s v%s (vectorstore=%s, llm=%s/%s, embeddings=%s)",
        settings.app_name, settings.app_version, settings.vectorstore_type,
        settings.llm_provider, settings.llm_model, settings.embedding_model,
    )
    yield
    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Document Q&A: upload documents, ask questions grounded in their content.",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(ingest.router)
    app.include_router(documents.router)
    app.include_router(ask.router)
    app.include_router(chat.router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    return app


app = create_app()
