# =============================================================================
# Match Cache — Per-Owner, TTL-Bounded Match Lists
# =============================================================================
#
# One row per owner holding the last computed match list. Every write is a
# whole-row replace (INSERT ... ON CONFLICT (owner_id) DO UPDATE), so there
# is never more than one entry per owner and no entry is mutated in place.
#
# TWO CLOCKS:
#   expires_at  — hard TTL (24h). get() only returns entries with
#                 now < expires_at; anything else is a miss.
#   updated_at  — freshness (6h). A valid entry older than this is served
#                 only if the caller decides not to recompute
#                 (CacheEntry.is_fresh).
#
# WRITES ARE FIRE-AND-FORGET: schedule_upsert() starts the write as a
# background task and returns immediately. A failed write is logged and
# dropped; it never reaches the request that produced the matches.
#
# ARCHITECTURE:
#   MatchCache (Protocol)
#   ├── SqlMatchCache       — `matches_cache` table (PostgreSQL)
#   ├── InMemoryMatchCache  — dict, for local runs and tests
#   ├── get_match_cache()   — singleton factory, reads from config
#   └── schedule_upsert()   — background write helper
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError

from netmatch.config import settings
from netmatch.db.engine import async_session_factory
from netmatch.db.models import MatchCacheRow
from netmatch.errors import CacheError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class CacheMetadata:
    """Bookkeeping stored next to a match list."""

    processing_time_ms: int = 0
    candidates_analyzed: int = 0
    format_version: str = "1.0"

    def to_dict(self) -> dict[str, Any]:
        # camelCase keys keep the persisted shape stable across versions
        return {
            "processingTimeMs": self.processing_time_ms,
            "candidatesAnalyzed": self.candidates_analyzed,
            "formatVersion": self.format_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CacheMetadata:
        data = data or {}
        return cls(
            processing_time_ms=int(data.get("processingTimeMs", 0) or 0),
            candidates_analyzed=int(data.get("candidatesAnalyzed", 0) or 0),
            format_version=str(data.get("formatVersion", "1.0")),
        )


@dataclass
class CacheEntry:
    """
    A cached match list for one owner.

    `matches` holds serialised enriched matches (plain dicts) in rank order.
    """

    owner_id: str
    matches: list[dict[str, Any]]
    total_matches: int
    metadata: CacheMetadata = field(default_factory=CacheMetadata)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    expires_at: datetime = field(default_factory=utcnow)

    def is_valid(self, now: datetime) -> bool:
        """Hit rule: strictly before the expiry timestamp."""
        return now < self.expires_at

    def is_fresh(self, now: datetime, freshness_hours: float) -> bool:
        """True while the entry is younger than the freshness window."""
        return now - self.updated_at <= timedelta(hours=freshness_hours)

    def age_minutes(self, now: datetime) -> int:
        return max(int((now - self.updated_at).total_seconds() // 60), 0)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class MatchCache(Protocol):
    """Per-owner match list store. Backends raise CacheError on failure."""

    async def get(self, owner_id: str) -> CacheEntry | None:
        """Return the owner's entry if it has not expired, else None."""
        ...

    async def upsert(
        self,
        owner_id: str,
        matches: list[dict[str, Any]],
        metadata: CacheMetadata,
        ttl_hours: float,
    ) -> None:
        """Replace the owner's entry wholesale."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: PostgreSQL `matches_cache` table
# ---------------------------------------------------------------------------


class SqlMatchCache:
    """
    Match cache backed by the `matches_cache` table.

    The UNIQUE(owner_id) constraint makes each upsert an atomic single-row
    replace, so concurrent writers for the same owner need no extra locking:
    the last committed write wins.
    """

    def __init__(
        self,
        session_factory=async_session_factory,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def get(self, owner_id: str) -> CacheEntry | None:
        now = self._clock()
        stmt = select(MatchCacheRow).where(
            MatchCacheRow.owner_id == owner_id,
            MatchCacheRow.expires_at > now,
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                row = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise CacheError(f"cache read failed for {owner_id}: {exc}") from exc

        if row is None:
            return None

        return CacheEntry(
            owner_id=row.owner_id,
            matches=list(row.matches_json or []),
            total_matches=row.total_matches,
            metadata=CacheMetadata.from_dict(row.metadata_json),
            created_at=row.created_at,
            updated_at=row.updated_at,
            expires_at=row.expires_at,
        )

    async def upsert(
        self,
        owner_id: str,
        matches: list[dict[str, Any]],
        metadata: CacheMetadata,
        ttl_hours: float,
    ) -> None:
        now = self._clock()
        stmt = pg_insert(MatchCacheRow).values(
            owner_id=owner_id,
            matches_json=matches,
            total_matches=len(matches),
            metadata_json=metadata.to_dict(),
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )
        # created_at keeps the first write; everything else is replaced
        stmt = stmt.on_conflict_do_update(
            index_elements=[MatchCacheRow.owner_id],
            set_={
                "matches_json": stmt.excluded.matches_json,
                "total_matches": stmt.excluded.total_matches,
                "metadata_json": stmt.excluded.metadata_json,
                "updated_at": stmt.excluded.updated_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise CacheError(f"cache write failed for {owner_id}: {exc}") from exc

        logger.debug("Cached %d matches for %s", len(matches), owner_id)


# ---------------------------------------------------------------------------
# Implementation 2: In-Memory
# ---------------------------------------------------------------------------


class InMemoryMatchCache:
    """
    Process-local cache with the same semantics as SqlMatchCache.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, owner_id: str) -> CacheEntry | None:
        entry = self._entries.get(owner_id)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry

    async def upsert(
        self,
        owner_id: str,
        matches: list[dict[str, Any]],
        metadata: CacheMetadata,
        ttl_hours: float,
    ) -> None:
        now = self._clock()
        previous = self._entries.get(owner_id)
        self._entries[owner_id] = CacheEntry(
            owner_id=owner_id,
            matches=list(matches),
            total_matches=len(matches),
            metadata=metadata,
            created_at=previous.created_at if previous else now,
            updated_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_cache: SqlMatchCache | InMemoryMatchCache | None = None


def get_match_cache() -> SqlMatchCache | InMemoryMatchCache:
    """
    Factory that returns the configured cache backend (lazy singleton).

    Reads `match_cache_backend` from settings:
    - "postgres" → SqlMatchCache (default)
    - "memory" → InMemoryMatchCache
    """
    global _cache
    if _cache is None:
        if settings.match_cache_backend == "memory":
            logger.info("Using in-memory match cache")
            _cache = InMemoryMatchCache()
        else:
            logger.info("Using PostgreSQL match cache")
            _cache = SqlMatchCache()
    return _cache


# ---------------------------------------------------------------------------
# Background Writes
# ---------------------------------------------------------------------------
# Strong references to in-flight writes. The event loop only keeps weak
# references to tasks, so an unreferenced write could be garbage-collected
# before it finishes.
# ---------------------------------------------------------------------------

_pending_writes: set[asyncio.Task] = set()


async def _write_best_effort(
    cache: MatchCache,
    owner_id: str,
    matches: list[dict[str, Any]],
    metadata: CacheMetadata,
    ttl_hours: float,
) -> bool:
    try:
        await cache.upsert(owner_id, matches, metadata, ttl_hours)
    except Exception as exc:
        logger.warning("Cache write for %s dropped: %s", owner_id, exc)
        return False
    return True


def schedule_upsert(
    cache: MatchCache,
    owner_id: str,
    matches: list[dict[str, Any]],
    metadata: CacheMetadata,
    ttl_hours: float,
) -> asyncio.Task:
    """
    Start a cache write in the background and return immediately.

    The returned task resolves to True on success and False when the write
    failed. It never raises.
    """
    task = asyncio.create_task(
        _write_best_effort(cache, owner_id, matches, metadata, ttl_hours),
        name=f"match-cache-upsert:{owner_id}",
    )
    _pending_writes.add(task)
    task.add_done_callback(_pending_writes.discard)
    return task


async def wait_for_pending_writes() -> None:
    """Wait for background cache writes started on this loop to finish."""
    loop = asyncio.get_running_loop()
    pending = [t for t in _pending_writes if t.get_loop() is loop]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
