# =============================================================================
# Unit Tests — Agent Orchestrator
# =============================================================================
#
# The loop is driven by ScriptedLLM, which replays reasoning turns, so every
# transition of the Reasoning ⇄ ToolExecution machine can be forced.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from netmatch.agents.orchestrator import (
    STOP_BUDGET,
    STOP_COMPLETED,
    STOP_REASONING_FAILED,
    Orchestrator,
)
from netmatch.agents.tools import FETCH_PROFILE, SEARCH_CANDIDATES, ToolSet
from netmatch.services.llm import ReasoningOutput
from netmatch.services.similarity_index import SimilarityHit
from tests.fakes import (
    FakeProfileStore,
    FakeSimilarityIndex,
    ScriptedLLM,
    _run,
    make_profile,
    tool_call,
)


def _search(call_id: str = "c1"):
    return tool_call(call_id, SEARCH_CANDIDATES, query="climate founders")


def _orchestrator(llm, max_iterations=25, **kwargs) -> Orchestrator:
    tools = ToolSet(
        similarity_index=FakeSimilarityIndex(hits=[
            SimilarityHit("u1", 0.9, "Founder"),
            SimilarityHit("u2", 0.8, "Designer"),
        ]),
        profile_store=FakeProfileStore([make_profile("u1"), make_profile("u2")]),
        llm=llm,
    )
    return Orchestrator(llm, tools, max_iterations=max_iterations, **kwargs)


class TestTransitions:

    def test_no_tool_calls_terminates_after_one_step(self):
        llm = ScriptedLLM([ReasoningOutput(text='[{"user_id": "u1", "score": 80}]')])

        result = _run(_orchestrator(llm).run("system", "find matches"))

        assert result.stop_reason == STOP_COMPLETED
        assert result.iterations == 1
        assert result.tool_calls_made == 0
        assert result.final_text == '[{"user_id": "u1", "score": 80}]'
        assert result.budget_error is None

    def test_tool_round_trip(self):
        llm = ScriptedLLM([
            ReasoningOutput(text="Searching.", tool_calls=[_search()],
                            input_tokens=10, output_tokens=5),
            ReasoningOutput(text="done", input_tokens=20, output_tokens=7),
        ])

        result = _run(_orchestrator(llm).run("system", "find matches"))

        assert result.stop_reason == STOP_COMPLETED
        assert result.iterations == 2
        assert result.tool_calls_made == 1
        assert result.candidates_analyzed == 2
        assert result.final_text == "done"
        assert (result.input_tokens, result.output_tokens) == (30, 12)
        assert [m["role"] for m in result.messages] == [
            "user", "assistant", "tool", "assistant",
        ]

    def test_second_step_sees_tool_results(self):
        llm = ScriptedLLM([
            ReasoningOutput(text="", tool_calls=[_search("call-7")]),
            ReasoningOutput(text="done"),
        ])

        _run(_orchestrator(llm).run("system", "task"))

        history = llm.generate_calls[1]
        assert history[0] == {"role": "user", "content": "task"}
        assert history[-1]["role"] == "tool"
        assert history[-1]["tool_call_id"] == "call-7"
        assert '"candidateId": "u1"' in history[-1]["content"]

    def test_tool_results_appended_in_request_order(self):
        llm = ScriptedLLM([
            ReasoningOutput(text="", tool_calls=[
                tool_call("a", FETCH_PROFILE, profile_id="u2"),
                tool_call("b", "unknown_tool"),
                tool_call("c", FETCH_PROFILE, profile_id="u1"),
            ]),
            ReasoningOutput(text="done"),
        ])

        result = _run(_orchestrator(llm).run("system", "task"))

        tool_ids = [m["tool_call_id"] for m in result.messages if m["role"] == "tool"]
        assert tool_ids == ["a", "b", "c"]
        assert result.tool_calls_made == 3

    def test_each_run_starts_fresh(self):
        llm = ScriptedLLM([ReasoningOutput(text="[]")])
        orchestrator = _orchestrator(llm)

        _run(orchestrator.run("system", "first"))
        _run(orchestrator.run("system", "second"))

        assert llm.generate_calls[1] == [{"role": "user", "content": "second"}]


class TestBudget:

    def test_ceiling_stops_the_loop(self):
        llm = ScriptedLLM([ReasoningOutput(text="still looking", tool_calls=[_search()])])

        result = _run(_orchestrator(llm, max_iterations=3).run("system", "task"))

        assert result.stop_reason == STOP_BUDGET
        assert result.iterations == 3
        assert len(llm.generate_calls) == 3
        assert result.tool_calls_made == 2
        assert result.budget_error is not None
        assert result.budget_error.iterations == 3
        assert result.final_text == "still looking"

    def test_tool_only_turn_keeps_previous_text(self):
        llm = ScriptedLLM([
            ReasoningOutput(text="partial answer", tool_calls=[_search()]),
            ReasoningOutput(text="", tool_calls=[_search()]),
        ])

        result = _run(_orchestrator(llm, max_iterations=2).run("system", "task"))

        assert result.stop_reason == STOP_BUDGET
        assert result.final_text == "partial answer"

    def test_single_iteration_budget(self):
        llm = ScriptedLLM([ReasoningOutput(text="x", tool_calls=[_search()])])

        result = _run(_orchestrator(llm, max_iterations=1).run("system", "task"))

        assert result.stop_reason == STOP_BUDGET
        assert result.tool_calls_made == 0

    def test_invalid_budget(self):
        with pytest.raises(ValueError):
            _orchestrator(ScriptedLLM(), max_iterations=0)


class TestReasoningFailure:

    def test_error_on_first_step(self):
        llm = ScriptedLLM([RuntimeError("overloaded")])

        result = _run(_orchestrator(llm).run("system", "task"))

        assert result.stop_reason == STOP_REASONING_FAILED
        assert result.iterations == 1
        assert result.final_text == ""

    def test_error_after_progress_keeps_last_text(self):
        llm = ScriptedLLM([
            ReasoningOutput(text="[{\"user_id\": \"u1\", \"score\": 70}]",
                            tool_calls=[_search()]),
            RuntimeError("overloaded"),
        ])

        result = _run(_orchestrator(llm).run("system", "task"))

        assert result.stop_reason == STOP_REASONING_FAILED
        assert result.iterations == 2
        assert "u1" in result.final_text

    def test_timeout(self):
        class _SlowLLM(ScriptedLLM):
            async def generate(self, messages, system=None, tools=None):
                await asyncio.sleep(1)
                return ReasoningOutput(text="too late")

        result = _run(_orchestrator(
            _SlowLLM(), reasoning_timeout_seconds=0.01,
        ).run("system", "task"))

        assert result.stop_reason == STOP_REASONING_FAILED
        assert result.final_text == ""
