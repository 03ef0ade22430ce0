# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py: ingest_document (extract → chunk → embed → store)
#
# Extraction and embedding of a large document take minutes; the API
# returns a task id immediately and the client polls for status.
# =============================================================================
