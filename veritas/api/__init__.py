# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines an APIRouter:
#   - ingest.py: upload and ingestion status
#   - documents.py: document records
#   - ask.py: one-shot grounded answer with sources and token report
#   - chat.py: streamed grounded answer (Server-Sent Events)
# =============================================================================
