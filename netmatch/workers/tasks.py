# =============================================================================
# Celery Task Definitions — Bulk Matching & Profile Indexing
# =============================================================================
#
# batch_find_matches
#   Runs the agentic pipeline for many owners. Owners are processed ONE AT
#   A TIME with a pause between them (batch_inter_item_delay_seconds) so a
#   large batch cannot exhaust the LLM and embedding rate limits. Failures
#   for individual owners are recorded in the summary; the batch goes on.
#
# index_profiles
#   Embeds profile documents into the configured similarity index. Sync:
#   sync engine + sync embedding client, like any other worker code.
#
# IMPORTANT: Celery workers are SYNCHRONOUS. The matching pipeline is async,
# so batch_find_matches drives it with asyncio.run() and disposes the async
# engine before the loop closes (pooled asyncpg connections are bound to
# the loop that opened them).
#
# RETRY STRATEGY:
# max_retries=3, 60s default delay. Only whole-task failures (database or
# broker down, missing API key) are retried.
# =============================================================================

import asyncio
import logging

from sqlalchemy import select

from netmatch.config import settings
from netmatch.db.engine import async_engine, get_sync_session
from netmatch.db.models import User
from netmatch.services.profile_store import profile_from_row
from netmatch.services.similarity_index import get_similarity_index
from netmatch.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


async def _run_batch(
    owner_ids: list[str],
    max_results: int,
    min_compatibility: int,
) -> dict:
    # Imported here so the worker only builds LLM clients when it needs them
    from netmatch.agents.pipeline import build_pipeline
    from netmatch.services.llm import create_llm_provider
    from netmatch.services.match_cache import wait_for_pending_writes

    try:
        pipeline = build_pipeline(llm=create_llm_provider())
        batch = await pipeline.batch_find_matches(
            owner_ids,
            max_results=max_results,
            min_compatibility=min_compatibility,
            delay_seconds=settings.batch_inter_item_delay_seconds,
        )
        # Cache writes are background tasks; let them land before the loop ends
        await wait_for_pending_writes()
    finally:
        await async_engine.dispose()

    return {
        "requested": len(owner_ids),
        "succeeded": batch.succeeded,
        "failed": batch.failed,
        "results": [
            {
                "owner_id": item.owner_id,
                "ok": item.ok,
                "total_found": item.total_found,
                "cache_used": item.cache_used,
                "error": item.error,
            }
            for item in batch.items
        ],
    }


def _load_profiles(profile_ids: list[str] | None) -> list:
    with get_sync_session() as session:
        stmt = select(User).order_by(User.created_at)
        if profile_ids:
            stmt = stmt.where(User.id.in_(profile_ids))
        return [profile_from_row(u) for u in session.scalars(stmt).all()]


# ---------------------------------------------------------------------------
# Bulk Matching Task
# ---------------------------------------------------------------------------


@celery_app.task(
    bind=True,
    name="batch_find_matches",
    max_retries=3,
    default_retry_delay=60,
)
def batch_find_matches(
    self,
    owner_ids: list[str],
    max_results: int = 10,
    min_compatibility: int = 40,
) -> dict:
    """
    Compute and cache matches for many owners, serially.

    Returns:
        dict with per-owner outcomes and success/failure counts.
    """
    task_id = self.request.id
    logger.info(
        "[%s] Batch matching for %d owners (delay=%.1fs)",
        task_id, len(owner_ids), settings.batch_inter_item_delay_seconds,
    )

    try:
        summary = asyncio.run(_run_batch(owner_ids, max_results, min_compatibility))
    except Exception as exc:
        logger.exception("[%s] Batch matching failed: %s", task_id, exc)
        raise self.retry(exc=exc)

    logger.info(
        "[%s] Batch complete: %d succeeded, %d failed",
        task_id, summary["succeeded"], summary["failed"],
    )
    return summary


# ---------------------------------------------------------------------------
# Profile Indexing Task
# ---------------------------------------------------------------------------


@celery_app.task(
    bind=True,
    name="index_profiles",
    max_retries=3,
    default_retry_delay=60,
)
def index_profiles(self, profile_ids: list[str] | None = None) -> dict:
    """
    Embed profiles into the similarity index.

    Args:
        profile_ids: Profiles to (re)index. None indexes every profile.
    """
    task_id = self.request.id

    try:
        profiles = _load_profiles(profile_ids)
        logger.info(
            "[%s] Indexing %d profiles into %s",
            task_id, len(profiles), settings.similarity_index_type,
        )

        index = get_similarity_index()
        indexed = 0
        step = settings.embedding_batch_size
        for start in range(0, len(profiles), step):
            indexed += index.add_profiles(profiles[start:start + step])
    except Exception as exc:
        logger.exception("[%s] Profile indexing failed: %s", task_id, exc)
        raise self.retry(exc=exc)

    summary = {
        "requested": len(profile_ids) if profile_ids else None,
        "indexed": indexed,
        "similarity_index": settings.similarity_index_type,
    }
    logger.info("[%s] Indexing complete: %s", task_id, summary)
    return summary
