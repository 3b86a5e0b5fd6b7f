# =============================================================================
# Database Engine & Session Factories
# =============================================================================
#
# Two engines over the same schema:
#   async_engine  (asyncpg)  — API request path: profile store reads,
#                              pgvector search, match cache reads/writes
#   sync engine   (psycopg2) — Celery workers: profile loading and
#                              embedding upserts during indexing
#
# There is no per-request session dependency. Every component opens its
# own short-lived session from `async_session_factory`; the match cache
# write in particular runs as a background task after the response has
# been returned, outside any request scope.
#
# Engines are bound to the event loop that first used them. Code that
# runs the pipeline under asyncio.run() (Celery tasks) must call
# `await async_engine.dispose()` before its loop closes.
# =============================================================================

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from netmatch.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

# Profiles and cache rows are read back after commit, outside the session
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Sync Engine — Celery Workers (lazy: psycopg2 is a worker-only driver)
# ---------------------------------------------------------------------------

_sync_session_factory: sessionmaker[Session] | None = None


def _build_sync_engine() -> Engine:
    return create_engine(
        settings.database_url_sync,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
    )


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """
    Sync session for Celery workers.

    Commits on exit, rolls back on exception:
        with get_sync_session() as session:
            users = session.scalars(select(User)).all()
    """
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(
            bind=_build_sync_engine(), expire_on_commit=False,
        )

    session = _sync_session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
