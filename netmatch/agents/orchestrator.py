# =============================================================================
# Agent Orchestrator — Bounded Tool-Calling Loop (LangGraph)
# =============================================================================
#
# Drives the reasoning LLM and the tool set until the model stops asking
# for tools or the iteration budget runs out.
#
# GRAPH TOPOLOGY:
#
#   START ──▶ reasoning ──┬──▶ tools ──▶ reasoning   (tool calls requested)
#                         └──▶ END                   (Terminal)
#
# STATES:
#   reasoning  — one generate() call over the full accumulated history
#   tools      — every requested call, dispatched concurrently, results
#                appended in the order the model requested them
#   END        — Terminal. Reached when:
#                  * the model requested no tools        → "completed"
#                  * the iteration budget is exhausted   → "budget_exhausted"
#                  * the reasoning call failed/timed out → "reasoning_failed"
#                In every case final_text is the last text the model wrote.
#
# DESIGN DECISION: Plain TypedDict state, compiled once per Orchestrator.
# Nodes close over the injected LLM and tool set, so the graph is compiled
# in __init__ rather than at import time; the pipeline builds one
# orchestrator and reuses it across requests.
#
# Nothing persists between runs: each run() starts from a fresh history.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from netmatch.agents.tools import SEARCH_CANDIDATES, ToolResult, ToolSet
from netmatch.errors import OrchestrationBudgetExceeded
from netmatch.services.llm import LLMProvider, ToolCall

logger = logging.getLogger(__name__)

STOP_COMPLETED = "completed"
STOP_BUDGET = "budget_exhausted"
STOP_REASONING_FAILED = "reasoning_failed"


# ---------------------------------------------------------------------------
# Agent State Schema
# ---------------------------------------------------------------------------


class LoopState(TypedDict, total=False):
    """
    State that flows through the graph.

    total=False so nodes only return the keys they update.
    """

    system: str
    messages: list[dict[str, Any]]
    pending_calls: list[ToolCall]
    iterations: int
    tool_calls_made: int
    last_text: str
    stop_reason: str
    candidate_ids: list[str]
    input_tokens: int
    output_tokens: int


@dataclass
class OrchestrationResult:
    """Outcome of one orchestration run."""

    final_text: str
    stop_reason: str
    iterations: int
    tool_calls_made: int = 0
    candidates_analyzed: int = 0
    messages: list[dict[str, Any]] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    budget_error: OrchestrationBudgetExceeded | None = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class Orchestrator:
    """
    Reasoning ⇄ ToolExecution state machine with a hard iteration ceiling.

    Args:
        llm: Reasoning capability (must implement generate()).
        tools: Tool set the model can call.
        max_iterations: Maximum number of reasoning steps per run.
        reasoning_timeout_seconds: Timeout for each generate() call.
    """

    def __init__(
        self,
        llm: LLMProvider,
        tools: ToolSet,
        max_iterations: int = 25,
        reasoning_timeout_seconds: float = 60.0,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")

        self._llm = llm
        self._tools = tools
        self.max_iterations = max_iterations
        self.reasoning_timeout_seconds = reasoning_timeout_seconds

        builder = StateGraph(LoopState)
        builder.add_node("reasoning", self._reasoning_node)
        builder.add_node("tools", self._tools_node)
        builder.add_edge(START, "reasoning")
        builder.add_conditional_edges(
            "reasoning", self._route, {"tools": "tools", END: END},
        )
        builder.add_edge("tools", "reasoning")
        self._graph = builder.compile()

    async def run(self, system: str, task: str) -> OrchestrationResult:
        """
        Run one orchestration from a fresh history.

        Never raises for reasoning or tool failures; those end in Terminal.
        Cancellation of the calling task propagates.
        """
        initial: LoopState = {
            "system": system,
            "messages": [{"role": "user", "content": task}],
            "pending_calls": [],
            "iterations": 0,
            "tool_calls_made": 0,
            "last_text": "",
            "candidate_ids": [],
            "input_tokens": 0,
            "output_tokens": 0,
        }

        # Two supersteps per round trip, plus headroom for the final step
        config = {"recursion_limit": 2 * self.max_iterations + 5}
        state = await self._graph.ainvoke(initial, config=config)

        stop_reason = state.get("stop_reason", STOP_COMPLETED)
        budget_error = None
        if stop_reason == STOP_BUDGET:
            budget_error = OrchestrationBudgetExceeded(self.max_iterations)
            logger.warning(
                "Orchestration stopped early: %s; using last output", budget_error,
            )

        result = OrchestrationResult(
            final_text=state.get("last_text", ""),
            stop_reason=stop_reason,
            iterations=state.get("iterations", 0),
            tool_calls_made=state.get("tool_calls_made", 0),
            candidates_analyzed=len(state.get("candidate_ids", [])),
            messages=state.get("messages", []),
            input_tokens=state.get("input_tokens", 0),
            output_tokens=state.get("output_tokens", 0),
            budget_error=budget_error,
        )

        logger.info(
            "Orchestration finished: %s after %d iterations, %d tool calls",
            result.stop_reason, result.iterations, result.tool_calls_made,
        )
        return result

    # -----------------------------------------------------------------------
    # Node Functions
    # -----------------------------------------------------------------------

    async def _reasoning_node(self, state: LoopState) -> dict:
        iteration = state["iterations"] + 1

        try:
            output = await asyncio.wait_for(
                self._llm.generate(
                    messages=state["messages"],
                    system=state["system"],
                    tools=self._tools.specs,
                ),
                timeout=self.reasoning_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "Reasoning step %d timed out after %.1fs",
                iteration, self.reasoning_timeout_seconds,
            )
            return {
                "iterations": iteration,
                "pending_calls": [],
                "stop_reason": STOP_REASONING_FAILED,
            }
        except Exception as exc:
            logger.warning("Reasoning step %d failed: %s", iteration, exc)
            return {
                "iterations": iteration,
                "pending_calls": [],
                "stop_reason": STOP_REASONING_FAILED,
            }

        logger.info(
            "Reasoning step %d: %d tool call(s) requested",
            iteration, len(output.tool_calls),
        )

        update: dict = {
            "iterations": iteration,
            "messages": state["messages"] + [{
                "role": "assistant",
                "content": output.text,
                "tool_calls": output.tool_calls,
            }],
            "pending_calls": output.tool_calls,
            "input_tokens": state["input_tokens"] + output.input_tokens,
            "output_tokens": state["output_tokens"] + output.output_tokens,
        }
        # A turn that is only tool calls keeps the previous text as "last"
        if output.text:
            update["last_text"] = output.text

        if not output.tool_calls:
            update["stop_reason"] = STOP_COMPLETED
        elif iteration >= self.max_iterations:
            update["pending_calls"] = []
            update["stop_reason"] = STOP_BUDGET

        return update

    async def _tools_node(self, state: LoopState) -> dict:
        calls = state["pending_calls"]
        logger.debug("Executing tools: %s", [c.name for c in calls])

        results = await self._tools.execute_all(calls)

        tool_messages = [
            {
                "role": "tool",
                "tool_call_id": r.call_id,
                "name": r.name,
                "content": r.content,
            }
            for r in results
        ]

        return {
            "messages": state["messages"] + tool_messages,
            "pending_calls": [],
            "tool_calls_made": state["tool_calls_made"] + len(calls),
            "candidate_ids": _merge_candidate_ids(state["candidate_ids"], results),
        }

    @staticmethod
    def _route(state: LoopState) -> str:
        if state.get("stop_reason") or not state.get("pending_calls"):
            return END
        return "tools"


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _merge_candidate_ids(seen: list[str], results: list[ToolResult]) -> list[str]:
    """Distinct candidate ids surfaced by search results so far."""
    merged = list(seen)
    for result in results:
        if result.name != SEARCH_CANDIDATES or not isinstance(result.payload, list):
            continue
        for hit in result.payload:
            candidate_id = hit.get("candidateId")
            if candidate_id and candidate_id not in merged:
                merged.append(candidate_id)
    return merged
