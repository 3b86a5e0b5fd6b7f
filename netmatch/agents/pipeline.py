# =============================================================================
# Matching Pipeline — findMatches End to End
# =============================================================================
#
#   request ─▶ validate ─▶ Match Cache ──hit & fresh──▶ response
#                              │ miss / stale / force_refresh
#                              ▼
#                        Orchestrator (reasoning ⇄ tools)
#                              ▼
#                        Response Extractor ─▶ Result Enricher
#                              ▼
#                        rank ─▶ cache write (background) ─▶ response
#
# ERROR POLICY: ValidationError is the only matching error that leaves
# find_matches(). Cache read failures are misses, cache write failures are
# logged by the background writer, orchestration problems end in an empty
# or partial result. A profile store that does not answer within
# store_timeout_seconds surfaces as TimeoutError, like any other outage.
#
# DESIGN DECISION: The cache holds the FULL ranked list. max_results,
# min_compatibility and category are applied on the way out, so a cached
# entry can serve any request parameters for the same owner.
#
# DESIGN DECISION: Every collaborator is injected. build_pipeline() is the
# only place that reads settings and picks concrete backends.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from netmatch.agents.enricher import EnrichedMatch, ResultEnricher
from netmatch.agents.extractor import ResponseExtractor
from netmatch.agents.orchestrator import Orchestrator
from netmatch.agents.prompts import MATCHMAKER_SYSTEM_PROMPT, build_task_prompt
from netmatch.agents.tools import ToolSet
from netmatch.config import settings
from netmatch.errors import CacheError, MatchingError, ValidationError
from netmatch.services.llm import LLMProvider
from netmatch.services.match_cache import (
    CacheMetadata,
    Clock,
    MatchCache,
    schedule_upsert,
    utcnow,
)
from netmatch.services.profile_store import Profile, ProfileStore
from netmatch.services.scorer import (
    MATCH_CATEGORIES,
    ScoredMatch,
    ScoringEngine,
    filter_by_category,
)

logger = logging.getLogger(__name__)

MAX_RESULTS_RANGE = (1, 50)
MIN_COMPATIBILITY_RANGE = (10, 100)

ALGORITHM_AGENT = "agentic-rag"
ALGORITHM_SCORING = "weighted-scoring"
ALGORITHM_FALLBACK = "agent-fallback-scoring"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class MatchResponse:
    """Result of one find_matches() call."""

    matches: list[EnrichedMatch]
    total_found: int
    processing_time_ms: int
    cache_used: bool = False
    cache_age_minutes: int | None = None
    algorithm: str = ALGORITHM_AGENT
    candidates_analyzed: int = 0
    stop_reason: str | None = None
    fallback_reason: str | None = None


@dataclass
class BatchItemResult:
    owner_id: str
    ok: bool
    total_found: int = 0
    cache_used: bool = False
    error: str | None = None


@dataclass
class BatchResult:
    items: list[BatchItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.ok)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class MatchingPipeline:
    """
    Cache-backed agentic matching, plus the deterministic scoring path.

    Args:
        profile_store: Authoritative profiles.
        orchestrator: Reasoning/tool loop.
        extractor: Parses the loop's final text into stubs.
        enricher: Joins stubs to profiles.
        cache: Per-owner match cache.
        scorer: Deterministic engine for the scoring-only path.
        cache_ttl_hours: Hard expiry for written entries.
        cache_freshness_hours: Entries older than this are recomputed.
        format_version: Written into cache metadata.
        clock: Source of "now" for freshness checks.
        store_timeout_seconds: Bound on each profile store read.
    """

    def __init__(
        self,
        profile_store: ProfileStore,
        orchestrator: Orchestrator,
        extractor: ResponseExtractor,
        enricher: ResultEnricher,
        cache: MatchCache,
        scorer: ScoringEngine | None = None,
        cache_ttl_hours: float = 24,
        cache_freshness_hours: float = 6,
        format_version: str = "1.0",
        clock: Clock = utcnow,
        store_timeout_seconds: float = 10.0,
    ) -> None:
        self._store = profile_store
        self._orchestrator = orchestrator
        self._extractor = extractor
        self._enricher = enricher
        self._cache = cache
        self._scorer = scorer or ScoringEngine()
        self.cache_ttl_hours = cache_ttl_hours
        self.cache_freshness_hours = cache_freshness_hours
        self.format_version = format_version
        self._clock = clock
        self.store_timeout_seconds = store_timeout_seconds

    # -----------------------------------------------------------------------
    # Agentic path
    # -----------------------------------------------------------------------

    async def find_matches(
        self,
        owner_id: str,
        max_results: int = 10,
        min_compatibility: int = 40,
        force_refresh: bool = False,
        category: str = "all",
    ) -> MatchResponse:
        """
        Ranked, explained matches for one owner.

        Raises:
            ValidationError: Out-of-range parameters, unknown owner or an
                incomplete requesting profile.
        """
        started = time.perf_counter()
        _validate_request(max_results, min_compatibility, category)
        owner = await self._load_owner(owner_id)

        if force_refresh:
            logger.info("Cache bypassed for %s (force_refresh)", owner_id)
        else:
            cached = await self._cached_response(
                owner_id, max_results, min_compatibility, category, started,
            )
            if cached is not None:
                return cached

        result = await self._orchestrator.run(
            MATCHMAKER_SYSTEM_PROMPT,
            build_task_prompt(owner, max_results, min_compatibility),
        )

        stubs = self._extractor.extract(result.final_text)
        try:
            enriched = await self._enricher.enrich(stubs, exclude_id=owner_id)
        except Exception as exc:
            logger.warning("Enrichment failed for %s: %s", owner_id, exc)
            enriched = []

        ranked = sorted(enriched, key=lambda m: m.score, reverse=True)
        elapsed_ms = _elapsed_ms(started)

        # Empty lists are not cached: they usually mean a failed run
        if ranked:
            schedule_upsert(
                self._cache,
                owner_id,
                [m.to_dict() for m in ranked],
                CacheMetadata(
                    processing_time_ms=elapsed_ms,
                    candidates_analyzed=result.candidates_analyzed,
                    format_version=self.format_version,
                ),
                self.cache_ttl_hours,
            )

        selected, total = _select(ranked, max_results, min_compatibility, category)
        logger.info(
            "Found %d matches for %s (%d returned) in %dms",
            total, owner_id, len(selected), elapsed_ms,
        )
        return MatchResponse(
            matches=selected,
            total_found=total,
            processing_time_ms=elapsed_ms,
            algorithm=ALGORITHM_AGENT,
            candidates_analyzed=result.candidates_analyzed,
            stop_reason=result.stop_reason,
        )

    async def get_networking_recommendations(self, owner_id: str) -> MatchResponse:
        """Broader, higher-bar variant of find_matches()."""
        return await self.find_matches(owner_id, max_results=15, min_compatibility=50)

    async def batch_find_matches(
        self,
        owner_ids: list[str],
        max_results: int = 10,
        min_compatibility: int = 40,
        delay_seconds: float = 2.0,
    ) -> BatchResult:
        """
        Run find_matches() for many owners, one at a time.

        Owners are never processed in parallel; `delay_seconds` separates
        consecutive runs to respect provider rate limits. A failure for one
        owner is recorded and the batch continues.
        """
        batch = BatchResult()
        for position, owner_id in enumerate(owner_ids):
            if position and delay_seconds > 0:
                await asyncio.sleep(delay_seconds)
            try:
                response = await self.find_matches(
                    owner_id,
                    max_results=max_results,
                    min_compatibility=min_compatibility,
                )
            except MatchingError as exc:
                logger.warning("Batch item %s failed: %s", owner_id, exc)
                batch.items.append(BatchItemResult(owner_id, ok=False, error=str(exc)))
                continue
            except Exception as exc:
                # Infrastructure errors are per owner too
                logger.exception("Batch item %s errored", owner_id)
                batch.items.append(BatchItemResult(owner_id, ok=False, error=str(exc)))
                continue
            batch.items.append(BatchItemResult(
                owner_id,
                ok=True,
                total_found=response.total_found,
                cache_used=response.cache_used,
            ))

        logger.info(
            "Batch complete: %d succeeded, %d failed",
            batch.succeeded, batch.failed,
        )
        return batch

    # -----------------------------------------------------------------------
    # Scoring-only path
    # -----------------------------------------------------------------------

    async def score_candidates(
        self,
        owner_id: str,
        limit: int = 20,
        category: str = "all",
    ) -> list[ScoredMatch]:
        """
        Deterministic matches against the stored population.

        Raises:
            ValidationError: Unknown owner or unknown category.
        """
        if category not in MATCH_CATEGORIES:
            raise ValidationError(f"unknown category '{category}'")
        owner = await self._load_owner(owner_id, require_complete=False)
        candidates = await self._read_store(
            self._store.list_profiles(exclude_id=owner_id), f"candidates for '{owner_id}'",
        )
        scored = self._scorer.score_all(owner, candidates)
        return filter_by_category(scored, category)[:limit]

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _load_owner(self, owner_id: str, require_complete: bool = True) -> Profile:
        owner = await self._read_store(self._store.get_by_id(owner_id), f"profile '{owner_id}'")
        if owner is None:
            raise ValidationError(f"profile '{owner_id}' not found", not_found=True)
        if require_complete and not (owner.name and (owner.title or owner.company)):
            raise ValidationError(
                "profile is incomplete: a name and a title or company are "
                "required for matching"
            )
        return owner

    async def _read_store(self, call, what: str):
        try:
            return await asyncio.wait_for(call, timeout=self.store_timeout_seconds)
        except TimeoutError as exc:
            raise TimeoutError(
                f"profile store did not return {what} within {self.store_timeout_seconds}s"
            ) from exc

    async def _cached_response(
        self,
        owner_id: str,
        max_results: int,
        min_compatibility: int,
        category: str,
        started: float,
    ) -> MatchResponse | None:
        try:
            entry = await self._cache.get(owner_id)
        except CacheError as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", owner_id, exc)
            return None

        if entry is None:
            logger.info("Cache miss for %s", owner_id)
            return None

        now = self._clock()
        if not entry.is_fresh(now, self.cache_freshness_hours):
            logger.info(
                "Cache entry for %s is stale (%d min old), recomputing",
                owner_id, entry.age_minutes(now),
            )
            return None

        try:
            matches = [EnrichedMatch.from_dict(d) for d in entry.matches]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Unreadable cache entry for %s: %s", owner_id, exc)
            return None

        logger.info("Cache hit for %s (%d matches)", owner_id, len(matches))
        selected, total = _select(matches, max_results, min_compatibility, category)
        return MatchResponse(
            matches=selected,
            total_found=total,
            processing_time_ms=_elapsed_ms(started),
            cache_used=True,
            cache_age_minutes=entry.age_minutes(now),
            algorithm=ALGORITHM_AGENT,
            candidates_analyzed=entry.metadata.candidates_analyzed,
        )


# ---------------------------------------------------------------------------
# Conversions & Factory
# ---------------------------------------------------------------------------


def enriched_from_scored(match: ScoredMatch) -> EnrichedMatch:
    """Present a deterministic match in the same shape as an agentic one."""
    return EnrichedMatch(
        profile=match.profile,
        score=match.score,
        reasoning="; ".join(match.reasons),
        shared_interests=list(match.shared_interests),
        complementary_skills=list(match.complementary_skills),
        match_types=list(match.match_types),
        recommendation_strength=match.recommendation_strength,
    )


def build_pipeline(
    profile_store: ProfileStore | None = None,
    cache: MatchCache | None = None,
    llm: LLMProvider | None = None,
) -> MatchingPipeline:
    """
    Assemble a pipeline from settings and the configured backends.

    Raises:
        ValueError: If the LLM provider has no API key.
    """
    from netmatch.services.llm import get_llm_provider
    from netmatch.services.match_cache import get_match_cache
    from netmatch.services.profile_store import SqlProfileStore
    from netmatch.services.similarity_index import get_similarity_index

    store = profile_store or SqlProfileStore()
    llm = llm or get_llm_provider()

    tools = ToolSet(
        similarity_index=get_similarity_index(),
        profile_store=store,
        llm=llm,
        fallback_similarity=settings.search_fallback_similarity,
        default_max_results=settings.search_default_max_results,
        timeout_seconds=settings.tool_timeout_seconds,
    )
    orchestrator = Orchestrator(
        llm=llm,
        tools=tools,
        max_iterations=settings.agent_max_iterations,
        reasoning_timeout_seconds=settings.reasoning_timeout_seconds,
    )

    return MatchingPipeline(
        profile_store=store,
        orchestrator=orchestrator,
        extractor=ResponseExtractor(),
        enricher=ResultEnricher(store, timeout_seconds=settings.profile_store_timeout_seconds),
        cache=cache or get_match_cache(),
        scorer=ScoringEngine(min_score=settings.scorer_min_compatibility),
        cache_ttl_hours=settings.cache_ttl_hours,
        cache_freshness_hours=settings.cache_freshness_hours,
        format_version=settings.cache_format_version,
        store_timeout_seconds=settings.profile_store_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _validate_request(max_results: int, min_compatibility: int, category: str) -> None:
    lo, hi = MAX_RESULTS_RANGE
    if not lo <= max_results <= hi:
        raise ValidationError(f"max_results must be between {lo} and {hi}")
    lo, hi = MIN_COMPATIBILITY_RANGE
    if not lo <= min_compatibility <= hi:
        raise ValidationError(f"min_compatibility must be between {lo} and {hi}")
    if category not in MATCH_CATEGORIES:
        raise ValidationError(f"unknown category '{category}'")


def _select(
    ranked: list[EnrichedMatch],
    max_results: int,
    min_compatibility: int,
    category: str,
) -> tuple[list[EnrichedMatch], int]:
    """Apply request filters to a ranked list. Returns (page, total)."""
    eligible = [m for m in ranked if m.score >= min_compatibility]
    eligible = filter_by_category(eligible, category)
    return eligible[:max_results], len(eligible)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
