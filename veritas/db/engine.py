# =============================================================================
# Database Engines and Sessions
# =============================================================================
#
# One PostgreSQL database, two drivers:
#
#   FastAPI handlers ── asyncpg ──── get_async_session()   (per request)
#   Celery tasks ────── psycopg2 ─── get_sync_session()    (per block)
#
# Both session helpers commit when the caller finishes normally and roll
# back if it raises. The psycopg2 engine is built on first use, so the API
# process never opens a sync pool.
# =============================================================================

from collections.abc import AsyncGenerator, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from veritas.config import settings

POOL_SIZE = 5
MAX_OVERFLOW = 10

async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=POOL_SIZE,
    max_overflow=MAX_OVERFLOW,
)

# Loaded attributes must stay readable after commit: async sessions cannot
# lazy-load on attribute access.
async_session_factory = async_sessionmaker(async_engine, expire_on_commit=False)

_sync_session_factory: sessionmaker[Session] | None = None


def sync_session_factory() -> sessionmaker[Session]:
    """Session factory bound to the psycopg2 engine, created once per process."""
    global _sync_session_factory
    if _sync_session_factory is None:
        engine = create_engine(
            settings.database_url_sync,
            echo=settings.debug,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            # Worker connections sit idle between documents
            pool_pre_ping=True,
        )
        _sync_session_factory = sessionmaker(engine, expire_on_commit=False)
    return _sync_session_factory


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """
    Transactional session for worker code:

        with get_sync_session() as session:
            session.add(chunk)
    """
    with sync_session_factory()() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one transactional session per request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
