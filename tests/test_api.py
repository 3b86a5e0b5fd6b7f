# =============================================================================
# Unit Tests — Matches API
# =============================================================================
#
# Route handlers are called directly with a stub pipeline, the same way the
# dependency functions are exercised: no server, no database.
# =============================================================================

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException

from netmatch.agents.enricher import EnrichedMatch
from netmatch.agents.pipeline import ALGORITHM_AGENT, ALGORITHM_FALLBACK, MatchResponse
from netmatch.api.matches import (
    batch_endpoint,
    find_matches_endpoint,
    index_endpoint,
    recommendations_endpoint,
    score_endpoint,
)
from netmatch.errors import ValidationError
from netmatch.models.requests import (
    BatchMatchRequest,
    FindMatchesRequest,
    IndexProfilesRequest,
    ScoreMatchesRequest,
)
from netmatch.services.scorer import ScoringEngine
from tests.fakes import _run, make_profile


class StubPipeline:
    def __init__(self, matches=None, scored=None, error=None):
        self.matches = matches or []
        self.scored = scored or []
        self.error = error
        self.score_calls = []

    async def find_matches(self, owner_id, **kwargs):
        if self.error is not None:
            raise self.error
        return MatchResponse(
            matches=self.matches,
            total_found=len(self.matches),
            processing_time_ms=12,
            algorithm=ALGORITHM_AGENT,
        )

    async def get_networking_recommendations(self, owner_id):
        return await self.find_matches(owner_id)

    async def score_candidates(self, owner_id, limit=20, category="all"):
        self.score_calls.append((owner_id, limit, category))
        return self.scored


def _enriched(candidate_id: str, score: int) -> EnrichedMatch:
    return EnrichedMatch(
        profile=make_profile(candidate_id),
        score=score,
        reasoning="Shared focus on climate tooling.",
        match_types=["Collaborator"],
        recommendation_strength="medium",
    )


def _scored():
    requester = make_profile("req", preferences={"mentor": True})
    candidate = make_profile("u9", preferences={"hire": False})
    return ScoringEngine().score_all(requester, [candidate])


class TestFindMatchesEndpoint:

    def test_agent_matches_are_returned(self):
        pipeline = StubPipeline(matches=[_enriched("u1", 72)])

        response = _run(find_matches_endpoint(FindMatchesRequest(owner_id="req"), pipeline))

        assert response.algorithm == ALGORITHM_AGENT
        assert response.total_found == 1
        item = response.matches[0]
        assert item.candidate_id == "u1"
        assert item.compatibility_score == 72
        assert item.profile.name == "Person u1"
        assert pipeline.score_calls == []

    def test_empty_agent_result_falls_back_to_scoring(self):
        pipeline = StubPipeline(scored=_scored())
        request = FindMatchesRequest(owner_id="req", max_results=5, category="mentorship")

        response = _run(find_matches_endpoint(request, pipeline))

        assert response.algorithm == ALGORITHM_FALLBACK
        assert response.fallback_reason == "agent returned no matches"
        assert [m.candidate_id for m in response.matches] == ["u9"]
        assert pipeline.score_calls == [("req", 5, "mentorship")]

    def test_unknown_owner_is_404(self):
        pipeline = StubPipeline(error=ValidationError("profile 'x' not found", not_found=True))

        with pytest.raises(HTTPException) as exc_info:
            _run(find_matches_endpoint(FindMatchesRequest(owner_id="x"), pipeline))

        assert exc_info.value.status_code == 404

    def test_incomplete_profile_is_400(self):
        pipeline = StubPipeline(error=ValidationError("profile is incomplete"))

        with pytest.raises(HTTPException) as exc_info:
            _run(find_matches_endpoint(FindMatchesRequest(owner_id="x"), pipeline))

        assert exc_info.value.status_code == 400

    def test_missing_configuration_is_503(self):
        pipeline = StubPipeline(error=ValueError("No Anthropic API key configured"))

        with pytest.raises(HTTPException) as exc_info:
            _run(find_matches_endpoint(FindMatchesRequest(owner_id="x"), pipeline))

        assert exc_info.value.status_code == 503

    def test_store_outage_is_502(self):
        pipeline = StubPipeline(error=ConnectionError("database unavailable"))

        with pytest.raises(HTTPException) as exc_info:
            _run(find_matches_endpoint(FindMatchesRequest(owner_id="x"), pipeline))

        assert exc_info.value.status_code == 502


class TestOtherEndpoints:

    def test_recommendations(self):
        pipeline = StubPipeline(matches=[_enriched("u1", 88)])

        response = _run(recommendations_endpoint("req", pipeline))

        assert response.matches[0].candidate_id == "u1"

    def test_score(self):
        pipeline = StubPipeline(scored=_scored())

        response = _run(score_endpoint(ScoreMatchesRequest(owner_id="req", limit=3), pipeline))

        assert response.total_found == 1
        item = response.matches[0]
        assert item.candidate_id == "u9"
        assert item.match_types == ["Mentor"]
        assert item.reasons
        assert pipeline.score_calls == [("req", 3, "all")]


class TestQueuedEndpoints:

    def test_batch_deduplicates_and_enqueues(self):
        task = MagicMock()
        task.delay.return_value = SimpleNamespace(id="task-1")
        request = BatchMatchRequest(owner_ids=["a", "b", "a"], min_compatibility=60)

        with patch("netmatch.workers.tasks.batch_find_matches", task):
            response = _run(batch_endpoint(request))

        task.delay.assert_called_once_with(["a", "b"], max_results=10, min_compatibility=60)
        assert response.task_id == "task-1"
        assert response.queued == 2
        assert response.status == "queued"

    def test_index_all_profiles(self):
        task = MagicMock()
        task.delay.return_value = SimpleNamespace(id="task-2")

        with patch("netmatch.workers.tasks.index_profiles", task):
            response = _run(index_endpoint(IndexProfilesRequest()))

        task.delay.assert_called_once_with(None)
        assert response.queued == 0


class TestRequestModels:
    """Tests for Pydantic request model validation."""

    def test_find_defaults(self):
        req = FindMatchesRequest(owner_id="req")
        assert (req.max_results, req.min_compatibility) == (10, 40)
        assert req.force_refresh is False
        assert req.category == "all"

    @pytest.mark.parametrize("field,value", [
        ("max_results", 0),
        ("max_results", 51),
        ("min_compatibility", 5),
        ("category", "friends"),
    ])
    def test_find_rejects_out_of_range(self, field, value):
        from pydantic import ValidationError as PydanticValidationError

        with pytest.raises(PydanticValidationError):
            FindMatchesRequest(owner_id="req", **{field: value})

    def test_batch_requires_owner_ids(self):
        from pydantic import ValidationError as PydanticValidationError

        with pytest.raises(PydanticValidationError):
            BatchMatchRequest(owner_ids=[])
