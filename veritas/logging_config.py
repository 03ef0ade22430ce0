# =============================================================================
# Logging Setup
# =============================================================================
# Modules log through `logging.getLogger(__name__)`. This module configures
# the root logger once, for both the FastAPI process and Celery workers.
# =============================================================================

import logging

from veritas.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=_LOG_FORMAT,
    )
    # The HTTP client logs every request at INFO; embedding runs issue many.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
