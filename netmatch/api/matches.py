# =============================================================================
# Matches API — Connection Recommendation Endpoints
# =============================================================================
#
#   POST /matches/find                      agentic matching (cached)
#   GET  /matches/recommendations/{owner}   broader, higher-bar variant
#   POST /matches/score                     deterministic scoring only
#   POST /matches/batch                     queue matching for many owners
#   POST /matches/index                     queue profile (re)indexing
#
# FALLBACK: when the agentic pipeline comes back empty, /matches/find
# answers with the deterministic scorer instead and says so
# (algorithm="agent-fallback-scoring").
#
# Error mapping:
#   - ValidationError → 404 (unknown owner) / 400 (everything else)
#   - ValueError (missing API key) → 503
#   - anything else (database, provider outage) → 502
#
# This module is thin by design: validation, error mapping and response
# mapping only.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from netmatch.agents.enricher import EnrichedMatch
from netmatch.agents.pipeline import (
    ALGORITHM_FALLBACK,
    MatchingPipeline,
    MatchResponse,
    enriched_from_scored,
)
from netmatch.api.deps import get_pipeline
from netmatch.errors import ValidationError
from netmatch.models.requests import (
    BatchMatchRequest,
    FindMatchesRequest,
    IndexProfilesRequest,
    ScoreMatchesRequest,
)
from netmatch.models.responses import (
    FindMatchesResponse,
    MatchItem,
    ProfileSummary,
    ScoredMatchItem,
    ScoreMatchesResponse,
    TaskQueuedResponse,
)
from netmatch.services.scorer import ScoredMatch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matches", tags=["Matching"])


# ---------------------------------------------------------------------------
# POST /matches/find
# ---------------------------------------------------------------------------


@router.post(
    "/find",
    response_model=FindMatchesResponse,
    summary="Find professional connections for a profile",
)
async def find_matches_endpoint(
    request: FindMatchesRequest,
    pipeline: MatchingPipeline = Depends(get_pipeline),
) -> FindMatchesResponse:
    logger.info(
        "Find matches: owner=%s, max_results=%d, min_compatibility=%d, "
        "force_refresh=%s, category=%s",
        request.owner_id, request.max_results, request.min_compatibility,
        request.force_refresh, request.category,
    )

    try:
        result = await pipeline.find_matches(
            request.owner_id,
            max_results=request.max_results,
            min_compatibility=request.min_compatibility,
            force_refresh=request.force_refresh,
            category=request.category,
        )
        if result.matches:
            return _to_find_response(result)

        scored = await pipeline.score_candidates(
            request.owner_id,
            limit=request.max_results,
            category=request.category,
        )
    except ValidationError as e:
        raise _validation_http_error(e) from e
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except Exception as e:
        logger.exception("Matching failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Matching service error: {e}",
        ) from e

    logger.info(
        "Agent found no matches for %s, falling back to scoring (%d matches)",
        request.owner_id, len(scored),
    )
    return FindMatchesResponse(
        matches=[_match_item(enriched_from_scored(m)) for m in scored],
        total_found=len(scored),
        processing_time_ms=result.processing_time_ms,
        cache_used=False,
        algorithm=ALGORITHM_FALLBACK,
        fallback_reason="agent returned no matches",
    )


# ---------------------------------------------------------------------------
# GET /matches/recommendations/{owner_id}
# ---------------------------------------------------------------------------


@router.get(
    "/recommendations/{owner_id}",
    response_model=FindMatchesResponse,
    summary="Networking recommendations (up to 15, score >= 50)",
)
async def recommendations_endpoint(
    owner_id: str,
    pipeline: MatchingPipeline = Depends(get_pipeline),
) -> FindMatchesResponse:
    try:
        result = await pipeline.get_networking_recommendations(owner_id)
    except ValidationError as e:
        raise _validation_http_error(e) from e
    except Exception as e:
        logger.exception("Recommendations failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Matching service error: {e}",
        ) from e

    return _to_find_response(result)


# ---------------------------------------------------------------------------
# POST /matches/score
# ---------------------------------------------------------------------------


@router.post(
    "/score",
    response_model=ScoreMatchesResponse,
    summary="Deterministic weighted scoring against all profiles",
)
async def score_endpoint(
    request: ScoreMatchesRequest,
    pipeline: MatchingPipeline = Depends(get_pipeline),
) -> ScoreMatchesResponse:
    try:
        scored = await pipeline.score_candidates(
            request.owner_id, limit=request.limit, category=request.category,
        )
    except ValidationError as e:
        raise _validation_http_error(e) from e
    except Exception as e:
        logger.exception("Scoring failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Scoring service error: {e}",
        ) from e

    return ScoreMatchesResponse(
        matches=[_scored_item(m) for m in scored],
        total_found=len(scored),
    )


# ---------------------------------------------------------------------------
# POST /matches/batch & /matches/index — Celery hand-off
# ---------------------------------------------------------------------------


@router.post(
    "/batch",
    response_model=TaskQueuedResponse,
    status_code=202,
    summary="Queue matching for many owners",
)
async def batch_endpoint(request: BatchMatchRequest) -> TaskQueuedResponse:
    from netmatch.workers.tasks import batch_find_matches

    owner_ids = list(dict.fromkeys(request.owner_ids))
    task = batch_find_matches.delay(
        owner_ids,
        max_results=request.max_results,
        min_compatibility=request.min_compatibility,
    )
    logger.info("Queued batch matching for %d owners (task=%s)", len(owner_ids), task.id)
    return TaskQueuedResponse(task_id=task.id, queued=len(owner_ids))


@router.post(
    "/index",
    response_model=TaskQueuedResponse,
    status_code=202,
    summary="Queue profile indexing for semantic search",
)
async def index_endpoint(request: IndexProfilesRequest) -> TaskQueuedResponse:
    from netmatch.workers.tasks import index_profiles

    task = index_profiles.delay(request.profile_ids)
    queued = len(request.profile_ids) if request.profile_ids else 0
    logger.info("Queued profile indexing (task=%s)", task.id)
    return TaskQueuedResponse(task_id=task.id, queued=queued)


# ---------------------------------------------------------------------------
# Response Mapping
# ---------------------------------------------------------------------------


def _validation_http_error(error: ValidationError) -> HTTPException:
    return HTTPException(status_code=404 if error.not_found else 400, detail=str(error))


def _to_find_response(result: MatchResponse) -> FindMatchesResponse:
    return FindMatchesResponse(
        matches=[_match_item(m) for m in result.matches],
        total_found=result.total_found,
        processing_time_ms=result.processing_time_ms,
        cache_used=result.cache_used,
        cache_age_minutes=result.cache_age_minutes,
        algorithm=result.algorithm,
        fallback_reason=result.fallback_reason,
    )


def _match_item(match: EnrichedMatch) -> MatchItem:
    return MatchItem(
        candidate_id=match.candidate_id,
        compatibility_score=match.score,
        reasoning=match.reasoning,
        shared_interests=match.shared_interests,
        complementary_skills=match.complementary_skills,
        match_types=match.match_types,
        recommendation_strength=match.recommendation_strength,
        profile=ProfileSummary(**match.profile.to_dict()),
    )


def _scored_item(match: ScoredMatch) -> ScoredMatchItem:
    return ScoredMatchItem(
        candidate_id=match.profile.id,
        compatibility_score=match.score,
        reasons=match.reasons,
        shared_interests=match.shared_interests,
        complementary_skills=match.complementary_skills,
        match_types=match.match_types,
        recommendation_strength=match.recommendation_strength,
        profile=ProfileSummary(**match.profile.to_dict()),
    )
