# =============================================================================
# Tool Set — Capabilities Exposed to the Reasoning Loop
# =============================================================================
#
# Three tools, all idempotent and side-effect-free apart from outbound
# calls:
#
#   search_candidates    — Similarity Index, with an unranked fallback
#   fetch_profile        — Profile Store lookup
#   judge_compatibility  — single-shot LLM judgement of one pair
#
# FAILURE MODEL: a tool invocation that errors or times out never aborts
# the orchestration. execute() turns it into the tool's documented
# fallback result and the model sees that instead:
#
#   search_candidates    → []
#   fetch_profile        → {"found": false, ...}
#   judge_compatibility  → score 50, strength "medium", generic reasoning
#
# Results go back to the model as JSON strings; the decoded payload is kept
# on ToolResult for bookkeeping (candidates analysed).
# =============================================================================

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from netmatch.agents.prompts import JUDGE_SYSTEM_PROMPT, build_judge_prompt
from netmatch.errors import ToolFailureError
from netmatch.services.llm import LLMProvider, ToolCall, ToolSpec
from netmatch.services.profile_store import Profile, ProfileStore
from netmatch.services.scorer import normalize_match_types, round_half_up, strength_for_score
from netmatch.services.similarity_index import SimilarityIndex

logger = logging.getLogger(__name__)

SEARCH_CANDIDATES = "search_candidates"
FETCH_PROFILE = "fetch_profile"
JUDGE_COMPATIBILITY = "judge_compatibility"

# First {...} span in the judge's reply (greedy: outermost object)
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_STRENGTHS = {"high", "medium", "low"}


def default_judgement() -> dict[str, Any]:
    """Conservative result used whenever a judgement cannot be trusted."""
    return {
        "compatibilityScore": 50,
        "reasoning": "Basic professional compatibility detected.",
        "sharedInterests": [],
        "complementarySkills": [],
        "matchTypes": ["Professional"],
        "recommendationStrength": "medium",
    }


# ---------------------------------------------------------------------------
# Tool Schemas (JSON Schema, provider-neutral)
# ---------------------------------------------------------------------------

TOOL_SPECS: list[ToolSpec] = [
    ToolSpec(
        name=SEARCH_CANDIDATES,
        description=(
            "Semantic search over professional profiles. Returns candidate "
            "ids with a similarity in [0, 1] and a short profile summary."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "What kind of person to look for.",
                },
                "exclude_id": {
                    "type": "string",
                    "description": "Profile id to leave out (the requester).",
                },
                "min_similarity": {
                    "type": "number",
                    "description": "Drop results below this similarity.",
                },
                "max_results": {
                    "type": "integer",
                    "description": "Maximum number of candidates.",
                },
            },
            "required": ["query"],
        },
    ),
    ToolSpec(
        name=FETCH_PROFILE,
        description="Fetch the full profile of one user by id.",
        parameters={
            "type": "object",
            "properties": {
                "profile_id": {"type": "string"},
            },
            "required": ["profile_id"],
        },
    ),
    ToolSpec(
        name=JUDGE_COMPATIBILITY,
        description=(
            "Detailed compatibility analysis between the requester and one "
            "candidate: score, reasoning, shared interests, complementary "
            "skills and relationship types."
        ),
        parameters={
            "type": "object",
            "properties": {
                "requester_id": {"type": "string"},
                "candidate_id": {"type": "string"},
                "context": {
                    "type": "string",
                    "description": "Optional notes to weigh in the analysis.",
                },
            },
            "required": ["requester_id", "candidate_id"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class ToolResult:
    """Outcome of one tool call, ready to append to the conversation."""

    call_id: str
    name: str
    payload: Any
    fallback: bool = False

    @property
    def content(self) -> str:
        return json.dumps(self.payload)


# ---------------------------------------------------------------------------
# Tool Set
# ---------------------------------------------------------------------------


class ToolSet:
    """
    Tool adapters over the similarity index, profile store and LLM.

    Args:
        similarity_index: Semantic search backend.
        profile_store: Authoritative profiles.
        llm: Provider used by the compatibility judge.
        fallback_similarity: Similarity reported for unranked fallback hits.
        default_max_results: Search size when the model does not ask.
        timeout_seconds: Per-call timeout applied by execute().
    """

    def __init__(
        self,
        similarity_index: SimilarityIndex,
        profile_store: ProfileStore,
        llm: LLMProvider,
        fallback_similarity: float = 0.7,
        default_max_results: int = 20,
        timeout_seconds: float = 20.0,
    ) -> None:
        self._index = similarity_index
        self._store = profile_store
        self._llm = llm
        self.fallback_similarity = fallback_similarity
        self.default_max_results = default_max_results
        self.timeout_seconds = timeout_seconds

    @property
    def specs(self) -> list[ToolSpec]:
        return TOOL_SPECS

    # -----------------------------------------------------------------------
    # Tools
    # -----------------------------------------------------------------------

    async def search_candidates(
        self,
        query: str,
        exclude_id: str | None = None,
        min_similarity: float = 0.0,
        max_results: int | None = None,
    ) -> list[dict[str, Any]]:
        """
        Semantic candidate search.

        Falls back to an unranked listing of indexed profiles (same
        filters, similarity fixed to the sentinel) when the index finds
        nothing or the search itself fails.
        """
        limit = max_results or self.default_max_results
        # Ask for one extra so excluding the requester still fills the page
        k = limit + 1 if exclude_id else limit

        try:
            hits = await self._index.search(query, k)
        except Exception as exc:
            logger.warning("Similarity search failed (%s), listing instead", exc)
            hits = []

        ranked = True
        if not hits:
            ranked = False
            try:
                listed = await self._index.list_indexed(k)
            except Exception as exc:
                raise ToolFailureError(SEARCH_CANDIDATES, str(exc)) from exc
            for hit in listed:
                hit.similarity = self.fallback_similarity
            hits = listed

        candidates = [
            {
                "candidateId": hit.profile_id,
                "similarity": hit.similarity,
                "profileSummary": hit.summary,
            }
            for hit in hits
            if hit.profile_id != exclude_id and hit.similarity >= min_similarity
        ][:limit]

        logger.info(
            "search_candidates(%r): %d candidates (%s)",
            query[:80], len(candidates), "ranked" if ranked else "fallback listing",
        )
        return candidates

    async def fetch_profile(self, profile_id: str) -> Profile | None:
        return await self._store.get_by_id(profile_id)

    async def judge_compatibility(
        self,
        requester: Profile,
        candidate: Profile,
        context: str = "",
    ) -> dict[str, Any]:
        """
        Ask the LLM for a structured judgement of one pair.

        Malformed or out-of-shape output yields default_judgement().
        """
        response = await self._llm.complete(
            messages=[{
                "role": "user",
                "content": build_judge_prompt(requester, candidate, context),
            }],
            system=JUDGE_SYSTEM_PROMPT,
        )
        judgement = parse_judgement(response.content)
        judgement["candidateId"] = candidate.id
        return judgement

    # -----------------------------------------------------------------------
    # Dispatch
    # -----------------------------------------------------------------------

    async def execute(self, call: ToolCall) -> ToolResult:
        """
        Run one tool call with a timeout, never raising.

        Errors and timeouts become the tool's fallback result.
        """
        try:
            payload = await asyncio.wait_for(
                self._dispatch(call), timeout=self.timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "Tool %s timed out after %.1fs, using fallback",
                call.name, self.timeout_seconds,
            )
            return ToolResult(call.id, call.name, _fallback_for(call), fallback=True)
        except Exception as exc:
            logger.warning("Tool %s failed (%s), using fallback", call.name, exc)
            return ToolResult(call.id, call.name, _fallback_for(call), fallback=True)

        return ToolResult(call.id, call.name, payload)

    async def execute_all(self, calls: list[ToolCall]) -> list[ToolResult]:
        """Run calls concurrently; results come back in request order."""
        return list(await asyncio.gather(*(self.execute(c) for c in calls)))

    async def _dispatch(self, call: ToolCall) -> Any:
        args = call.arguments
        logger.debug("Dispatching %s(%s)", call.name, args)

        if call.name == SEARCH_CANDIDATES:
            query = str(args.get("query") or "").strip()
            if not query:
                raise ToolFailureError(call.name, "empty query")
            return await self.search_candidates(
                query=query,
                exclude_id=args.get("exclude_id"),
                min_similarity=float(args.get("min_similarity") or 0.0),
                max_results=_positive_int(args.get("max_results")),
            )

        if call.name == FETCH_PROFILE:
            profile_id = str(args.get("profile_id") or "")
            profile = await self.fetch_profile(profile_id)
            if profile is None:
                return {"found": False, "profileId": profile_id}
            return {"found": True, "profile": profile.to_dict()}

        if call.name == JUDGE_COMPATIBILITY:
            requester_id = str(args.get("requester_id") or "")
            candidate_id = str(args.get("candidate_id") or "")
            profiles = {
                p.id: p
                for p in await self._store.get_many_by_id([requester_id, candidate_id])
            }
            missing = [i for i in (requester_id, candidate_id) if i not in profiles]
            if missing:
                return {"found": False, "missingIds": missing}
            return await self.judge_compatibility(
                profiles[requester_id],
                profiles[candidate_id],
                context=str(args.get("context") or ""),
            )

        raise ToolFailureError(call.name, "unknown tool")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_judgement(text: str) -> dict[str, Any]:
    """Extract and validate the judge's JSON object."""
    match = _JSON_OBJECT_RE.search(text or "")
    if match is None:
        logger.warning("Judge reply had no JSON object, using default")
        return default_judgement()

    try:
        data = json.loads(match.group(0))
        raw_score = float(data["compatibilityScore"])
    except (
        json.JSONDecodeError, RecursionError, KeyError, TypeError, ValueError, OverflowError,
    ):
        logger.warning("Judge reply was malformed, using default: %.200s", text)
        return default_judgement()

    if not math.isfinite(raw_score):
        logger.warning("Judge score was not finite, using default: %.200s", text)
        return default_judgement()

    score = min(max(round_half_up(raw_score), 0), 100)
    strength = str(data.get("recommendationStrength", "")).lower()
    if strength not in _STRENGTHS:
        strength = strength_for_score(score)

    return {
        "compatibilityScore": score,
        "reasoning": str(data.get("reasoning") or ""),
        "sharedInterests": _string_list(data.get("sharedInterests")),
        "complementarySkills": _string_list(data.get("complementarySkills")),
        "matchTypes": normalize_match_types(data.get("matchTypes")),
        "recommendationStrength": strength,
    }


def _fallback_for(call: ToolCall) -> Any:
    if call.name == SEARCH_CANDIDATES:
        return []
    if call.name == FETCH_PROFILE:
        return {"found": False, "profileId": call.arguments.get("profile_id")}
    if call.name == JUDGE_COMPATIBILITY:
        judgement = default_judgement()
        judgement["candidateId"] = call.arguments.get("candidate_id")
        return judgement
    return {"error": f"unknown tool {call.name}"}


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


def _positive_int(value: Any) -> int | None:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None
