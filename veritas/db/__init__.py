# =============================================================================
# Database Package
# =============================================================================
# Async/sync SQLAlchemy engines and the ORM models.
#
# Key exports:
#   - get_async_session: FastAPI dependency for database sessions
#   - get_sync_session: context manager for Celery workers
#   - Document, Chunk: uploaded documents and their embedded chunks
# =============================================================================
