# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs the document ingestion pipeline in the background:
#   Upload → Extract → Chunk → Embed → Store
#
# ARCHITECTURE:
# ┌──────────┐     ┌───────┐     ┌──────────────┐     ┌───────┐
# │ FastAPI  │────▶│ Redis │────▶│ Celery Worker│────▶│ Redis │
# │(producer)│     │(broker)│    │  (consumer)  │     │(result)│
# └──────────┘     └───────┘     └──────────────┘     └───────┘
#    db 0 ──────────┘                                    └── db 1
#
# The broker (Redis db 0) queues tasks. Results land in Redis db 1 for
# GET /ingest/{task_id} to poll.
# =============================================================================

from celery import Celery
from celery.signals import setup_logging

from veritas.config import settings
from veritas.logging_config import configure_logging

celery_app = Celery(
    "veritas.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only: pickle can execute code during deserialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability ---
    # Ack after completion, so a crashed worker's task is re-queued
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # One task at a time per worker process: ingestion is long-running
    worker_prefetch_multiplier=1,

    # --- Timeouts ---
    task_soft_time_limit=300,
    task_time_limit=600,

    # --- Results ---
    result_expires=3600,

    include=["veritas.workers.tasks"],
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    """Use the application's log format in workers instead of Celery's."""
    configure_logging()
