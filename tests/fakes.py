# =============================================================================
# Test Fakes — In-Memory Stand-ins for External Capabilities
# =============================================================================
#
# Every external collaborator of the matching engine is a Protocol, so the
# tests drive it with these small fakes instead of databases or APIs.
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from netmatch.services.llm import LLMResponse, ReasoningOutput, ToolCall
from netmatch.services.profile_store import Preferences, Profile
from netmatch.services.similarity_index import SimilarityHit


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def make_profile(profile_id: str, **overrides) -> Profile:
    """Complete profile with neutral defaults; override what a test needs."""
    prefs = overrides.pop("preferences", None)
    fields = {
        "name": f"Person {profile_id}",
        "title": "Engineer",
        "company": "Acme Software",
        "location": "Austin, TX",
        "bio": "",
        "skills": [],
        "interests": [],
        "connections": 0,
    }
    fields.update(overrides)
    preferences = prefs if isinstance(prefs, Preferences) else Preferences.from_dict(prefs)
    return Profile(id=profile_id, preferences=preferences, **fields)


class FakeClock:
    """Settable clock for cache expiry tests."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


class FakeProfileStore:
    def __init__(self, profiles: list[Profile]) -> None:
        self.profiles = {p.id: p for p in profiles}
        self.batch_calls: list[list[str]] = []

    async def get_by_id(self, profile_id: str) -> Profile | None:
        return self.profiles.get(profile_id)

    async def get_many_by_id(self, profile_ids) -> list[Profile]:
        ids = list(profile_ids)
        self.batch_calls.append(ids)
        return [self.profiles[i] for i in ids if i in self.profiles]

    async def list_profiles(self, exclude_id=None, limit=1000) -> list[Profile]:
        return [p for p in self.profiles.values() if p.id != exclude_id][:limit]


class FakeSimilarityIndex:
    def __init__(
        self,
        hits: list[SimilarityHit] | None = None,
        listed: list[SimilarityHit] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.hits = hits or []
        self.listed = listed or []
        self.error = error
        self.queries: list[tuple[str, int]] = []

    async def search(self, query_text: str, k: int = 20) -> list[SimilarityHit]:
        self.queries.append((query_text, k))
        if self.error is not None:
            raise self.error
        return [SimilarityHit(h.profile_id, h.similarity, h.summary) for h in self.hits[:k]]

    async def list_indexed(self, limit: int = 100) -> list[SimilarityHit]:
        return [SimilarityHit(h.profile_id, h.similarity, h.summary) for h in self.listed[:limit]]

    def add_profiles(self, profiles) -> int:
        return len(profiles)


class ScriptedLLM:
    """
    LLM whose generate() replays a script of outputs (or exceptions).

    When the script runs out the last entry repeats. complete() returns
    `judge_reply` for the compatibility judge.
    """

    def __init__(
        self,
        script: list[ReasoningOutput | Exception] | None = None,
        judge_reply: str = "",
    ) -> None:
        self.script = script or [ReasoningOutput(text="[]")]
        self.judge_reply = judge_reply
        self.generate_calls: list[list[dict]] = []
        self.complete_calls: list[list[dict]] = []

    async def generate(self, messages, system=None, tools=None) -> ReasoningOutput:
        self.generate_calls.append(list(messages))
        index = min(len(self.generate_calls) - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, Exception):
            raise step
        return step

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.complete_calls.append(list(messages))
        return LLMResponse(
            content=self.judge_reply, model="fake", input_tokens=1, output_tokens=1,
        )


def tool_call(call_id: str, name: str, **arguments) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)
