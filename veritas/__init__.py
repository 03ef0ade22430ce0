# =============================================================================
# Veritas — Document Q&A over Local Models
# =============================================================================
# Upload documents, ask questions, get answers grounded in their content.
# Ingestion chunks and embeds documents in the background; at question time
# the nearest chunks are re-ranked and packed into a token budget before
# the model is called.
#
# Package structure:
#   veritas/
#   ├── api/          → FastAPI route handlers (ingest, documents, ask, chat)
#   ├── db/           → Database engine, session, and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Chunking, token estimation, embedding, re-ranking,
#   │                    context selection, vector stores, generation
#   └── workers/      → Celery task definitions and configuration
# =============================================================================
