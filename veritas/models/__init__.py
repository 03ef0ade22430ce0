# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, separate from the ORM models in
# veritas/db/models.py. Embedding vectors never appear in a response.
# =============================================================================
