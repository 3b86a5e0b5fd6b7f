# =============================================================================
# Result Enricher — Join Match Stubs to Authoritative Profiles
# =============================================================================
#
# Stubs come from model output and may name people who do not exist (or
# no longer exist). The enricher fetches every distinct stub id from the
# profile store in ONE batch call and:
#
#   - drops stubs whose id is not in the fetch result (logged per id)
#   - drops repeated ids, keeping the first occurrence
#   - recomputes recommendation strength from the score, ignoring
#     whatever band the model claimed
#
# A batch fetch that outlives timeout_seconds enriches nothing.
#
# Stub order is preserved; ranking is the pipeline's job.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from netmatch.agents.extractor import MatchStub
from netmatch.services.profile_store import Profile, ProfileStore
from netmatch.services.scorer import strength_for_score

logger = logging.getLogger(__name__)


@dataclass
class EnrichedMatch:
    """A match stub joined with the candidate's profile snapshot."""

    profile: Profile
    score: int
    reasoning: str = ""
    shared_interests: list[str] = field(default_factory=list)
    complementary_skills: list[str] = field(default_factory=list)
    match_types: list[str] = field(default_factory=list)
    recommendation_strength: str = "low"

    @property
    def candidate_id(self) -> str:
        return self.profile.id

    def to_dict(self) -> dict[str, Any]:
        """Serialised form stored in matches_cache.matches_json."""
        return {
            "candidateId": self.profile.id,
            "compatibilityScore": self.score,
            "reasoning": self.reasoning,
            "sharedInterests": list(self.shared_interests),
            "complementarySkills": list(self.complementary_skills),
            "matchTypes": list(self.match_types),
            "recommendationStrength": self.recommendation_strength,
            "profile": self.profile.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnrichedMatch:
        if not isinstance(data, dict):
            raise TypeError(f"cached match must be an object, got {type(data).__name__}")
        score = int(data.get("compatibilityScore", 0))
        return cls(
            profile=Profile.from_dict(data["profile"]),
            score=score,
            reasoning=data.get("reasoning", ""),
            shared_interests=list(data.get("sharedInterests", [])),
            complementary_skills=list(data.get("complementarySkills", [])),
            match_types=list(data.get("matchTypes", [])),
            recommendation_strength=strength_for_score(score),
        )


class ResultEnricher:
    """Joins stubs to profiles through a ProfileStore."""

    def __init__(self, profile_store: ProfileStore, timeout_seconds: float = 10.0) -> None:
        self._store = profile_store
        self.timeout_seconds = timeout_seconds

    async def enrich(
        self,
        stubs: list[MatchStub],
        exclude_id: str | None = None,
    ) -> list[EnrichedMatch]:
        """
        Enrich stubs in order.

        Args:
            stubs: Extracted stubs.
            exclude_id: Id to drop outright (the requester matching itself).
        """
        wanted = [s for s in stubs if s.candidate_id != exclude_id]
        if len(wanted) < len(stubs):
            logger.warning("Dropped self-match for %s", exclude_id)
        if not wanted:
            return []

        ids = list(dict.fromkeys(s.candidate_id for s in wanted))
        try:
            fetched = await asyncio.wait_for(
                self._store.get_many_by_id(ids), timeout=self.timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "Profile fetch for %d stubs timed out after %.1fs, no matches enriched",
                len(ids), self.timeout_seconds,
            )
            return []
        profiles = {p.id: p for p in fetched}

        enriched: list[EnrichedMatch] = []
        seen: set[str] = set()
        for stub in wanted:
            if stub.candidate_id in seen:
                continue
            seen.add(stub.candidate_id)

            profile = profiles.get(stub.candidate_id)
            if profile is None:
                logger.warning("Dropped match for unknown profile %s", stub.candidate_id)
                continue

            enriched.append(EnrichedMatch(
                profile=profile,
                score=stub.score,
                reasoning=stub.reasoning,
                shared_interests=list(stub.shared_interests),
                complementary_skills=list(stub.complementary_skills),
                match_types=list(stub.match_types),
                recommendation_strength=strength_for_score(stub.score),
            ))

        logger.info("Enriched %d of %d stubs", len(enriched), len(stubs))
        return enriched
