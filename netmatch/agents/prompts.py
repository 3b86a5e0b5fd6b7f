# =============================================================================
# Prompts — Matchmaker Reasoning Loop & Compatibility Judge
# =============================================================================
#
# The matchmaker prompt describes the tools, restates the deterministic
# scoring rubric as the reference the model should approximate, and pins
# the final answer to a JSON array the response extractor understands.
#
# The judge prompt is single-shot: one requester, one candidate, one JSON
# object back.
# =============================================================================

from __future__ import annotations

import json

from netmatch.services.profile_store import Profile
from netmatch.services.scorer import RELATIONSHIP_TYPES

_TAGS = ", ".join(RELATIONSHIP_TYPES)

MATCHMAKER_SYSTEM_PROMPT = (
    "You are a professional networking matchmaker. Your job is to find the "
    "people in the network who are the best professional connections for "
    "the requesting user, and to explain why.\n\n"
    "Tools:\n"
    "- search_candidates: semantic search over indexed profiles. Run a few "
    "searches with different angles (skills, interests, what the user is "
    "looking for). Always pass the requesting user's id as exclude_id.\n"
    "- fetch_profile: full profile for one candidate id.\n"
    "- judge_compatibility: detailed compatibility analysis of one pair.\n\n"
    "Scoring rubric (0-100, weighted):\n"
    "- 40% networking intents: mentor/mentee, investor/founder and "
    "hiring asymmetries, mutual collaboration and discussion interest\n"
    "- 20% location: same city best, same region good, remote still counts\n"
    "- 20% shared interests\n"
    "- 10% complementary skills the user does not have\n"
    "- 10% company and industry fit\n\n"
    "Relationship types (use 1-3 per match): " + _TAGS + ".\n\n"
    "When you are done, answer with ONLY a JSON array, best match first:\n"
    '[{"user_id": "<candidate id>", "compatibilityScore": 0-100, '
    '"reasoning": "<one or two sentences>", '
    '"commonInterests": ["..."], "complementarySkills": ["..."], '
    '"matchTypes": ["..."]}]\n'
    "Only include candidate ids returned by the tools. Never invent people. "
    "If nobody fits, answer with []."
)

JUDGE_SYSTEM_PROMPT = (
    "You assess professional compatibility between two people. Consider "
    "their networking intents, location, interests, skills and companies.\n\n"
    "Respond with ONLY a JSON object:\n"
    '{"compatibilityScore": 0-100, "reasoning": "<why>", '
    '"sharedInterests": ["..."], "complementarySkills": ["..."], '
    '"matchTypes": ["..."], "recommendationStrength": "high|medium|low"}\n'
    "matchTypes must come from: " + _TAGS + "."
)


def build_task_prompt(
    requester: Profile,
    max_results: int,
    min_compatibility: int,
) -> str:
    """Opening user message of a matching run."""
    return (
        "Find professional connections for this user.\n\n"
        f"Requesting user (id {requester.id}):\n"
        f"{json.dumps(requester.to_dict(), indent=2)}\n\n"
        f"Return up to {max_results} matches with compatibilityScore >= "
        f"{min_compatibility}, best first."
    )


def build_judge_prompt(
    requester: Profile,
    candidate: Profile,
    context: str = "",
) -> str:
    """User message for a single compatibility judgement."""
    parts = [
        f"Person A (the user):\n{json.dumps(requester.to_dict(), indent=2)}",
        f"Person B (the candidate):\n{json.dumps(candidate.to_dict(), indent=2)}",
    ]
    if context:
        parts.append(f"Additional context: {context}")
    return "\n\n".join(parts)
