# =============================================================================
# Deterministic Scorer — Weighted Profile Compatibility
# =============================================================================
#
# Pure function of two profiles: no I/O, no clock, no randomness. It backs
# the scoring-only path (POST /matches/score, and the fallback when the
# agent finds nothing) and is the reference the reasoning prompt asks the
# LLM to approximate.
#
# SUB-SCORES (each normalised to 0–100 before weighting):
#   preferences  0.40  asymmetric / mutual networking intents, capped at 100
#   location     0.20  exact 100 | same trailing region 60 | otherwise 20
#   interests    0.20  shared / max(|A|, |B|), 20 when empty or disjoint
#   skills       0.10  candidate skills the requester lacks, 20 when empty
#   company      0.10  same company 100 | same industry bucket 60 | else 20
#
# Final score is rounded half-up. Matches scoring <= 30 are dropped, and
# the output is sorted by score descending with ties in input order.
# =============================================================================

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from netmatch.services.profile_store import Profile

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Relationship vocabulary & strength bands (shared with the agentic path)
# ---------------------------------------------------------------------------

RELATIONSHIP_TYPES: tuple[str, ...] = (
    "Mentor",
    "Mentee",
    "Collaborator",
    "Investor",
    "Investment Opportunity",
    "Hiring Manager",
    "Potential Hire",
    "Discussion Partner",
    "Professional",
)

DEFAULT_RELATIONSHIP = "Professional"
MAX_RELATIONSHIP_TAGS = 3

# Category → tag substrings (lower-case) that put a match in the category
CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "mentorship": ("mentor", "mentee"),
    "collaboration": ("collaborator", "discussion partner"),
    "investment": ("investor", "investment opportunity"),
    "hiring": ("hiring manager", "potential hire"),
    "discussion": ("discussion partner",),
}

MATCH_CATEGORIES: tuple[str, ...] = ("all", *CATEGORY_KEYWORDS)


def strength_for_score(score: int | float) -> str:
    """Recommendation band: high >= 80, medium 60–79, low < 60."""
    if score >= 80:
        return "high"
    if score >= 60:
        return "medium"
    return "low"


_CANONICAL_TYPES = {t.lower(): t for t in RELATIONSHIP_TYPES}


def normalize_match_types(raw: object) -> list[str]:
    """
    Map free-form tags onto the fixed vocabulary.

    Accepts a list or a comma-separated string. Unknown tags are dropped,
    duplicates removed, at most three kept. Falls back to ["Professional"].
    """
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return [DEFAULT_RELATIONSHIP]

    tags: list[str] = []
    for item in raw:
        canonical = _CANONICAL_TYPES.get(str(item).strip().lower())
        if canonical and canonical not in tags:
            tags.append(canonical)
    return tags[:MAX_RELATIONSHIP_TAGS] or [DEFAULT_RELATIONSHIP]


def matches_category(match_types: Iterable[str], category: str) -> bool:
    """True when any relationship tag belongs to the category."""
    keywords = CATEGORY_KEYWORDS.get(category)
    if keywords is None:
        return True
    lowered = [t.lower() for t in match_types]
    return any(kw in tag for tag in lowered for kw in keywords)


def filter_by_category(matches: Sequence, category: str) -> list:
    """
    Keep matches whose `match_types` fall in the category.

    Works for any object exposing `match_types` (ScoredMatch, EnrichedMatch).
    "all" and unknown categories return the input unchanged.
    """
    if category == "all" or category not in CATEGORY_KEYWORDS:
        return list(matches)
    return [m for m in matches if matches_category(m.match_types, category)]


# ---------------------------------------------------------------------------
# Industry buckets
# ---------------------------------------------------------------------------

# Ordered: the first bucket with a matching keyword wins
_INDUSTRY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("tech", ("tech", "software", "startup")),
    ("design", ("design", "creative", "agency")),
    ("consulting", ("consulting", "advisory", "partners")),
    ("investment", ("capital", "ventures", "investment")),
)


def company_category(company: str) -> str:
    """Coarse industry bucket from a company name (case-insensitive)."""
    name = company.lower()
    for bucket, keywords in _INDUSTRY_KEYWORDS:
        if any(kw in name for kw in keywords):
            return bucket
    return "other"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the five sub-scores. They should sum to 1.0."""

    preferences: float = 0.40
    location: float = 0.20
    interests: float = 0.20
    skills: float = 0.10
    company: float = 0.10


@dataclass
class SubScores:
    """The five normalised (0–100) sub-scores before weighting."""

    preferences: float
    location: float
    interests: float
    skills: float
    company: float


@dataclass
class ScoreResult:
    """Outcome of scoring one candidate against the requester."""

    score: int
    reasons: list[str]
    shared_interests: list[str] = field(default_factory=list)
    complementary_skills: list[str] = field(default_factory=list)
    match_types: list[str] = field(default_factory=list)
    breakdown: SubScores | None = None


@dataclass
class ScoredMatch:
    """A candidate profile with its deterministic score."""

    profile: Profile
    score: int
    reasons: list[str]
    shared_interests: list[str]
    complementary_skills: list[str]
    match_types: list[str]

    @property
    def recommendation_strength(self) -> str:
        return strength_for_score(self.score)


# ---------------------------------------------------------------------------
# Scoring Engine
# ---------------------------------------------------------------------------


class ScoringEngine:
    """
    Weighted, explainable compatibility scorer.

    Args:
        weights: Sub-score weights (defaults to 40/20/20/10/10).
        min_score: Matches scoring at or below this are excluded by
            score_all(). Defaults to 30.
    """

    def __init__(
        self,
        weights: ScoringWeights | None = None,
        min_score: int = 30,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.min_score = min_score

    def score(self, requester: Profile, candidate: Profile) -> ScoreResult:
        """Score one candidate. Always returns a value in [0, 100]."""
        reasons: list[str] = []
        tags: list[str] = []
        shared: list[str] = []
        complementary: list[str] = []

        subs = SubScores(
            preferences=self._preference_score(requester, candidate, reasons, tags),
            location=self._location_score(requester, candidate, reasons),
            interests=self._interest_score(requester, candidate, shared, reasons),
            skills=self._skill_score(requester, candidate, complementary, reasons),
            company=self._company_score(requester, candidate, reasons),
        )

        w = self.weights
        total = (
            w.preferences * subs.preferences
            + w.location * subs.location
            + w.interests * subs.interests
            + w.skills * subs.skills
            + w.company * subs.company
        )
        final = min(max(round_half_up(total), 0), 100)

        return ScoreResult(
            score=final,
            reasons=reasons,
            shared_interests=shared,
            complementary_skills=complementary,
            match_types=tags[:MAX_RELATIONSHIP_TAGS] or [DEFAULT_RELATIONSHIP],
            breakdown=subs,
        )

    def score_all(
        self,
        requester: Profile,
        candidates: Iterable[Profile],
    ) -> list[ScoredMatch]:
        """
        Score every candidate, drop weak matches and rank the rest.

        The requester itself is skipped if present. Sorting is stable, so
        equal scores keep the order the candidates were given in.
        """
        matches: list[ScoredMatch] = []
        considered = 0

        for candidate in candidates:
            if candidate.id == requester.id:
                continue
            considered += 1
            result = self.score(requester, candidate)
            if result.score <= self.min_score:
                continue
            matches.append(ScoredMatch(
                profile=candidate,
                score=result.score,
                reasons=result.reasons,
                shared_interests=result.shared_interests,
                complementary_skills=result.complementary_skills,
                match_types=result.match_types,
            ))

        matches.sort(key=lambda m: m.score, reverse=True)

        logger.info(
            "Scored %d candidates for %s: %d above threshold %d",
            considered, requester.id, len(matches), self.min_score,
        )
        return matches

    # -----------------------------------------------------------------------
    # Sub-scores
    # -----------------------------------------------------------------------

    @staticmethod
    def _preference_score(
        requester: Profile,
        candidate: Profile,
        reasons: list[str],
        tags: list[str],
    ) -> float:
        mine = requester.preferences
        theirs = candidate.preferences
        score = 0

        if mine.mentor and not theirs.mentor:
            score += 25
            reasons.append("They can mentor you and share their experience")
            tags.append("Mentor")
        if not mine.mentor and theirs.mentor:
            score += 25
            reasons.append("You can mentor them in your area of expertise")
            tags.append("Mentee")

        if mine.invest and not theirs.invest:
            score += 20
            reasons.append("Potential investment opportunity")
            tags.append("Investment Opportunity")
        if not mine.invest and theirs.invest:
            score += 20
            reasons.append("They might be interested in investing in your projects")
            tags.append("Investor")

        if mine.collaborate and theirs.collaborate:
            score += 20
            reasons.append("Both interested in collaboration opportunities")
            tags.append("Collaborator")

        if mine.hire and not theirs.hire:
            score += 15
            reasons.append("Potential hiring opportunity")
            tags.append("Potential Hire")
        if not mine.hire and theirs.hire:
            score += 15
            reasons.append("They might have job opportunities for you")
            tags.append("Hiring Manager")

        if mine.discuss and theirs.discuss:
            score += 10
            reasons.append("Both enjoy professional discussions")
            tags.append("Discussion Partner")

        return min(score, 100)

    @staticmethod
    def _location_score(
        requester: Profile,
        candidate: Profile,
        reasons: list[str],
    ) -> float:
        if requester.location == candidate.location:
            reasons.append("Located in the same area for in-person meetings")
            return 100

        if _region(requester.location) and (
            _region(requester.location) == _region(candidate.location)
        ):
            reasons.append("Located in the same state/region")
            return 60

        # Never zero: a virtual connection still has value
        return 20

    @staticmethod
    def _interest_score(
        requester: Profile,
        candidate: Profile,
        shared: list[str],
        reasons: list[str],
    ) -> float:
        if not requester.interests or not candidate.interests:
            return 20

        mine = set(requester.interests)
        overlap = [i for i in candidate.interests if i in mine]
        shared.extend(overlap)

        if not overlap:
            return 20

        reasons.append(f"Shared interests in {', '.join(overlap[:2])}")
        denominator = max(len(mine), len(set(candidate.interests)))
        return min(len(overlap) / denominator * 100, 100)

    @staticmethod
    def _skill_score(
        requester: Profile,
        candidate: Profile,
        complementary: list[str],
        reasons: list[str],
    ) -> float:
        if not requester.skills or not candidate.skills:
            return 20

        mine = set(requester.skills)
        theirs = [s for s in candidate.skills if s not in mine]
        complementary.extend(theirs[:3])

        if not theirs:
            return 20

        reasons.append(f"Complementary skills in {', '.join(theirs[:2])}")
        return min(len(theirs) / len(candidate.skills) * 100, 100)

    @staticmethod
    def _company_score(
        requester: Profile,
        candidate: Profile,
        reasons: list[str],
    ) -> float:
        if requester.company and requester.company == candidate.company:
            reasons.append("Works at the same company")
            return 100

        bucket = company_category(requester.company)
        if bucket == company_category(candidate.company):
            reasons.append(f"Both work in {bucket} companies")
            return 60

        return 20


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _region(location: str) -> str:
    """Trailing comma-separated token, e.g. 'CA' from 'Oakland, CA'."""
    return location.rsplit(",", 1)[-1].strip().casefold()


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; 44.5 must become 45
    return int(math.floor(value + 0.5))
