# =============================================================================
# API Dependencies — Matching Pipeline Injection
# =============================================================================
#
# Routes get the pipeline through Depends(get_pipeline), so tests can swap
# in a pipeline built from fakes via app.dependency_overrides.
#
# The pipeline is built lazily on first use: a missing API key then shows
# up as a 503 on the first matching request instead of a crash at startup.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import HTTPException

from netmatch.agents.pipeline import MatchingPipeline, build_pipeline

logger = logging.getLogger(__name__)

_pipeline: MatchingPipeline | None = None


def get_pipeline() -> MatchingPipeline:
    """
    FastAPI dependency returning the shared matching pipeline.

    Raises:
        HTTPException 503: The LLM provider is not configured.
    """
    global _pipeline
    if _pipeline is None:
        try:
            _pipeline = build_pipeline()
        except ValueError as e:
            logger.error("Configuration error: %s", e)
            raise HTTPException(
                status_code=503,
                detail=f"Service configuration error: {e}",
            ) from e
    return _pipeline
