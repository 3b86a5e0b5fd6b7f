# =============================================================================
# Integration Tests — Matching Pipeline
# =============================================================================
#
# The full find_matches flow (validation → cache → orchestrator → extractor
# → enricher → ranking → background cache write) against in-memory fakes.
# =============================================================================

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from netmatch.agents.enricher import ResultEnricher
from netmatch.agents.extractor import ResponseExtractor
from netmatch.agents.orchestrator import STOP_COMPLETED, Orchestrator
from netmatch.agents.pipeline import (
    ALGORITHM_AGENT,
    MatchingPipeline,
    enriched_from_scored,
)
from netmatch.agents.tools import SEARCH_CANDIDATES, ToolSet
from netmatch.errors import CacheError, ValidationError
from netmatch.services.llm import ReasoningOutput
from netmatch.services.match_cache import (
    CacheMetadata,
    InMemoryMatchCache,
    wait_for_pending_writes,
)
from netmatch.services.similarity_index import SimilarityHit
from tests.fakes import (
    FakeClock,
    FakeProfileStore,
    FakeSimilarityIndex,
    ScriptedLLM,
    _run,
    make_profile,
    tool_call,
)

FINAL_TEXT = "Here are the best connections:\n```json\n" + json.dumps([
    {"user_id": "u2", "compatibilityScore": 55, "matchTypes": ["Collaborator"]},
    {"user_id": "u1", "compatibilityScore": 82, "matchTypes": ["Mentor"],
     "recommendationStrength": "low"},
    {"user_id": "req", "compatibilityScore": 90},
    {"user_id": "ghost", "compatibilityScore": 70},
    {"user_id": "u3", "compatibilityScore": 45},
]) + "\n```"

SCRIPT = [
    ReasoningOutput(text="", tool_calls=[
        tool_call("c1", SEARCH_CANDIDATES, query="climate founders", exclude_id="req"),
    ]),
    ReasoningOutput(text=FINAL_TEXT),
]


def _profiles():
    return [
        make_profile("req", name="Riley Park"),
        make_profile("u1"),
        make_profile("u2"),
        make_profile("u3"),
        make_profile("partial", title="", company=""),
    ]


class _UnreadableCache(InMemoryMatchCache):
    async def get(self, owner_id):
        raise CacheError("connection reset")


class _BrokenBatchStore(FakeProfileStore):
    async def get_many_by_id(self, profile_ids):
        raise RuntimeError("replica lag")


class _FlakyOwnerStore(FakeProfileStore):
    """Owner lookups fail for one id; records every lookup."""

    def __init__(self, profiles, failing_id, events=None):
        super().__init__(profiles)
        self.failing_id = failing_id
        self.events = events if events is not None else []

    async def get_by_id(self, profile_id):
        self.events.append(("load", profile_id))
        if profile_id == self.failing_id:
            raise RuntimeError("connection reset by peer")
        return await super().get_by_id(profile_id)


class _HangingStore(FakeProfileStore):
    async def get_by_id(self, profile_id):
        await asyncio.sleep(1)
        return await super().get_by_id(profile_id)


class _SlowListingStore(FakeProfileStore):
    async def list_profiles(self, exclude_id=None, limit=1000):
        await asyncio.sleep(1)
        return await super().list_profiles(exclude_id, limit)


@pytest.fixture
def clock():
    return FakeClock()


def _pipeline(clock, script=None, cache=None, store=None, **options):
    store = store or FakeProfileStore(_profiles())
    llm = ScriptedLLM(list(script or SCRIPT))
    index = FakeSimilarityIndex(hits=[
        SimilarityHit("u1", 0.91, "Founder"),
        SimilarityHit("u2", 0.84, "Designer"),
    ])
    orchestrator = Orchestrator(llm, ToolSet(index, store, llm), max_iterations=5)
    pipeline = MatchingPipeline(
        profile_store=store,
        orchestrator=orchestrator,
        extractor=ResponseExtractor(),
        enricher=ResultEnricher(store),
        cache=cache if cache is not None else InMemoryMatchCache(clock=clock),
        clock=clock,
        **options,
    )
    return pipeline, llm


# ---------------------------------------------------------------------------
# Test: Validation
# ---------------------------------------------------------------------------


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        {"max_results": 0},
        {"max_results": 51},
        {"min_compatibility": 9},
        {"min_compatibility": 101},
        {"category": "friends"},
    ])
    def test_out_of_range_parameters(self, clock, kwargs):
        pipeline, llm = _pipeline(clock)

        with pytest.raises(ValidationError) as exc_info:
            _run(pipeline.find_matches("req", **kwargs))

        assert exc_info.value.not_found is False
        assert llm.generate_calls == []

    def test_unknown_owner(self, clock):
        pipeline, _ = _pipeline(clock)

        with pytest.raises(ValidationError) as exc_info:
            _run(pipeline.find_matches("nobody"))

        assert exc_info.value.not_found is True

    def test_slow_owner_lookup_times_out(self, clock):
        pipeline, llm = _pipeline(
            clock, store=_HangingStore(_profiles()), store_timeout_seconds=0.05,
        )

        with pytest.raises(TimeoutError, match="profile store"):
            _run(pipeline.find_matches("req"))

        assert llm.generate_calls == []

    def test_incomplete_owner(self, clock):
        pipeline, llm = _pipeline(clock)

        with pytest.raises(ValidationError, match="incomplete"):
            _run(pipeline.find_matches("partial"))

        assert llm.generate_calls == []


# ---------------------------------------------------------------------------
# Test: Agentic Path
# ---------------------------------------------------------------------------


class TestFindMatches:

    def test_end_to_end(self, clock):
        pipeline, _ = _pipeline(clock)

        response = _run(pipeline.find_matches("req"))

        assert [m.candidate_id for m in response.matches] == ["u1", "u2", "u3"]
        assert response.total_found == 3
        assert response.cache_used is False
        assert response.cache_age_minutes is None
        assert response.algorithm == ALGORITHM_AGENT
        assert response.stop_reason == STOP_COMPLETED
        assert response.candidates_analyzed == 2
        assert response.matches[0].recommendation_strength == "high"

    def test_filters_are_applied_after_ranking(self, clock):
        pipeline, _ = _pipeline(clock)

        response = _run(pipeline.find_matches("req", max_results=1, min_compatibility=50))

        assert [m.candidate_id for m in response.matches] == ["u1"]
        assert response.total_found == 2

    def test_category_filter(self, clock):
        pipeline, _ = _pipeline(clock)

        response = _run(pipeline.find_matches("req", category="mentorship"))

        assert [m.candidate_id for m in response.matches] == ["u1"]

    def test_result_is_cached_in_full(self, clock):
        cache = InMemoryMatchCache(clock=clock)
        pipeline, _ = _pipeline(clock, cache=cache)

        async def _go():
            await pipeline.find_matches("req", max_results=1)
            await wait_for_pending_writes()
            return await cache.get("req")

        entry = _run(_go())

        assert entry.total_matches == 3
        assert [m["candidateId"] for m in entry.matches] == ["u1", "u2", "u3"]
        assert entry.metadata.candidates_analyzed == 2
        assert entry.expires_at == clock.now + timedelta(hours=24)

    def test_empty_result_is_not_cached(self, clock):
        cache = InMemoryMatchCache(clock=clock)
        pipeline, _ = _pipeline(
            clock, script=[ReasoningOutput(text="Nobody fits, sorry.")], cache=cache,
        )

        async def _go():
            response = await pipeline.find_matches("req")
            await wait_for_pending_writes()
            return response

        response = _run(_go())

        assert response.matches == []
        assert response.total_found == 0
        assert len(cache) == 0

    def test_enrichment_failure_yields_empty_result(self, clock):
        store = _BrokenBatchStore(_profiles())
        pipeline, _ = _pipeline(clock, store=store)

        response = _run(pipeline.find_matches("req"))

        assert response.matches == []

    def test_non_finite_model_score_is_dropped(self, clock):
        text = (
            '[{"user_id": "u1", "compatibilityScore": 1e999},'
            ' {"user_id": "u2", "compatibilityScore": 61}]'
        )
        pipeline, _ = _pipeline(clock, script=[ReasoningOutput(text=text)])

        response = _run(pipeline.find_matches("req"))

        assert [m.candidate_id for m in response.matches] == ["u2"]

    def test_only_non_finite_scores_give_empty_result(self, clock):
        text = '[{"user_id": "u1", "compatibilityScore": Infinity}]'
        pipeline, _ = _pipeline(clock, script=[ReasoningOutput(text=text)])

        response = _run(pipeline.find_matches("req"))

        assert response.matches == []
        assert response.total_found == 0

    def test_recommendations_use_broader_higher_bar(self, clock):
        pipeline, _ = _pipeline(clock)

        response = _run(pipeline.get_networking_recommendations("req"))

        assert [m.candidate_id for m in response.matches] == ["u1", "u2"]


# ---------------------------------------------------------------------------
# Test: Cache Behaviour
# ---------------------------------------------------------------------------


class TestCaching:

    def test_fresh_entry_is_served(self, clock):
        pipeline, llm = _pipeline(clock)

        async def _go():
            await pipeline.find_matches("req")
            await wait_for_pending_writes()
            clock.now += timedelta(minutes=30)
            return await pipeline.find_matches("req", min_compatibility=50)

        response = _run(_go())

        assert response.cache_used is True
        assert response.cache_age_minutes == 30
        assert [m.candidate_id for m in response.matches] == ["u1", "u2"]
        assert len(llm.generate_calls) == 2

    def test_stale_entry_is_recomputed(self, clock):
        pipeline, llm = _pipeline(clock)

        async def _go():
            await pipeline.find_matches("req")
            await wait_for_pending_writes()
            clock.now += timedelta(hours=7)
            return await pipeline.find_matches("req")

        response = _run(_go())

        assert response.cache_used is False
        assert len(llm.generate_calls) == 3

    def test_force_refresh_bypasses_cache(self, clock):
        pipeline, llm = _pipeline(clock)

        async def _go():
            await pipeline.find_matches("req")
            await wait_for_pending_writes()
            return await pipeline.find_matches("req", force_refresh=True)

        response = _run(_go())

        assert response.cache_used is False
        assert len(llm.generate_calls) == 3

    def test_cache_read_failure_is_a_miss(self, clock):
        pipeline, _ = _pipeline(clock, cache=_UnreadableCache(clock=clock))

        response = _run(pipeline.find_matches("req"))

        assert response.cache_used is False
        assert response.total_found == 3

    def test_corrupt_cache_entry_is_a_miss(self, clock):
        cache = InMemoryMatchCache(clock=clock)
        pipeline, llm = _pipeline(clock, cache=cache)

        async def _go():
            await cache.upsert("req", ["not-a-dict"], CacheMetadata(), 24)
            return await pipeline.find_matches("req")

        response = _run(_go())

        assert response.cache_used is False
        assert response.total_found == 3
        assert len(llm.generate_calls) == 2


# ---------------------------------------------------------------------------
# Test: Batch & Scoring-only Paths
# ---------------------------------------------------------------------------


class TestBatch:

    def test_failures_are_recorded_and_batch_continues(self, clock):
        pipeline, _ = _pipeline(clock)

        batch = _run(pipeline.batch_find_matches(
            ["req", "nobody", "partial"], delay_seconds=0,
        ))

        assert [(i.owner_id, i.ok) for i in batch.items] == [
            ("req", True), ("nobody", False), ("partial", False),
        ]
        assert batch.items[0].total_found == 3
        assert "not found" in batch.items[1].error
        assert (batch.succeeded, batch.failed) == (1, 2)

    def test_store_error_for_one_owner_is_recorded(self, clock):
        store = _FlakyOwnerStore(_profiles(), failing_id="u1")
        pipeline, _ = _pipeline(clock, store=store)

        batch = _run(pipeline.batch_find_matches(["req", "u1", "u2"], delay_seconds=0))

        assert [(i.owner_id, i.ok) for i in batch.items] == [
            ("req", True), ("u1", False), ("u2", True),
        ]
        assert "connection reset" in batch.items[1].error

    def test_owners_are_spaced_by_delay(self, clock):
        events = []
        store = _FlakyOwnerStore(_profiles(), failing_id=None, events=events)
        pipeline, _ = _pipeline(clock, script=[ReasoningOutput(text=FINAL_TEXT)], store=store)
        sleep = AsyncMock(side_effect=lambda seconds: events.append(("sleep", seconds)))

        with patch("netmatch.agents.pipeline.asyncio.sleep", sleep):
            batch = _run(pipeline.batch_find_matches(["req", "u1", "u2"], delay_seconds=2.5))

        assert batch.succeeded == 3
        assert events == [
            ("load", "req"),
            ("sleep", 2.5),
            ("load", "u1"),
            ("sleep", 2.5),
            ("load", "u2"),
        ]


class TestScoreCandidates:

    def _scoring_pipeline(self, clock):
        profiles = [
            make_profile("req", preferences={"mentor": True}, title="", company=""),
            make_profile("m1", preferences={"hire": False}, interests=["AI"]),
            make_profile("c1", preferences={"collaborate": True}),
        ]
        return _pipeline(clock, store=FakeProfileStore(profiles))[0]

    def test_scores_population_without_completeness_check(self, clock):
        pipeline = self._scoring_pipeline(clock)

        scored = _run(pipeline.score_candidates("req"))

        assert [m.profile.id for m in scored] == ["m1", "c1"]
        assert all(m.match_types == ["Mentor"] for m in scored)

    def test_category_and_limit(self, clock):
        pipeline = self._scoring_pipeline(clock)

        assert _run(pipeline.score_candidates("req", category="hiring")) == []
        assert len(_run(pipeline.score_candidates("req", limit=1))) == 1

    def test_unknown_category(self, clock):
        pipeline = self._scoring_pipeline(clock)

        with pytest.raises(ValidationError):
            _run(pipeline.score_candidates("req", category="friends"))

    def test_slow_population_listing_times_out(self, clock):
        profiles = [make_profile("req"), make_profile("m1")]
        pipeline = _pipeline(
            clock, store=_SlowListingStore(profiles), store_timeout_seconds=0.05,
        )[0]

        with pytest.raises(TimeoutError, match="candidates for 'req'"):
            _run(pipeline.score_candidates("req"))

    def test_scored_match_presented_as_enriched(self, clock):
        pipeline = self._scoring_pipeline(clock)

        scored = _run(pipeline.score_candidates("req"))[0]
        enriched = enriched_from_scored(scored)

        assert enriched.candidate_id == scored.profile.id
        assert enriched.score == scored.score
        assert enriched.recommendation_strength == scored.recommendation_strength
        assert "They can mentor you" in enriched.reasoning
