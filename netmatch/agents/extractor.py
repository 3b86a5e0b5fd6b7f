# =============================================================================
# Response Extractor — Match Stubs from Free-Form Model Output
# =============================================================================
#
# The model is asked for a bare JSON array but routinely wraps it in prose,
# code fences, or a labelled field, or emits loose objects. The extractor
# runs an ordered list of strategies and the first one that yields a
# VALID result wins:
#
#   1. whole_text      — the entire text is a JSON array
#   2. fenced_block    — a ```json ... ``` block holding an array
#   3. labelled_array  — "matches": [...] or an array closing the text
#   4. outer_brackets  — everything from the first '[' to the last ']'
#   5. loose_objects   — each {...} carrying an id field, parsed alone
#
# VALID means: the parsed value is a list and at least one element is an
# object with a plausible candidate identifier. A bare [] inside narrative
# text is therefore NOT accepted as "no matches" by an early strategy.
#
# Replies longer than MAX_RESPONSE_CHARS are Empty without being scanned.
#
# If every strategy fails the result is Empty: extract() never raises and
# never invents data.
#
# Output is a tagged variant:
#   Parsed(stubs, strategy) | Empty(reason)
# =============================================================================

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from netmatch.errors import ParseError
from netmatch.services.scorer import normalize_match_types, round_half_up, strength_for_score

logger = logging.getLogger(__name__)

# Keys accepted for each stub field, in priority order
_ID_KEYS = ("user_id", "candidateId", "candidate_id", "userId", "id")
_SCORE_KEYS = ("compatibilityScore", "compatibility_score", "score")
_REASONING_KEYS = ("reasoning", "aiReasoning", "explanation")
_INTEREST_KEYS = ("commonInterests", "sharedInterests", "shared_interests")
_SKILL_KEYS = ("complementarySkills", "complementary_skills")
_TYPE_KEYS = ("matchTypes", "match_types", "relationshipTypes")
_STRENGTH_KEYS = ("recommendationStrength", "recommendation_strength")

_STRENGTHS = {"high", "medium", "low"}

_FENCE_RE = re.compile(r"```[a-zA-Z]*\s*([\s\S]*?)```")
_LABEL_RE = re.compile(
    r"[\"']?(?:matches|results|recommendations)[\"']?\s*[:=]\s*(?=\[)",
    re.IGNORECASE,
)
_ID_FIELD_RE = re.compile(r"[\"'](?:" + "|".join(_ID_KEYS) + r")[\"']\s*:")

# How much trailing prose may follow an array that "closes" the text
_TRAILING_SLACK = 200

# Longer replies are not scanned at all; a reply of max_tokens is far shorter
MAX_RESPONSE_CHARS = 100_000

# Nesting levels searched for loose objects inside spans that do not parse
_MAX_SPAN_DEPTH = 8


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class MatchStub:
    """An unvalidated match produced by the extractor."""

    candidate_id: str
    score: int
    reasoning: str = ""
    shared_interests: list[str] = field(default_factory=list)
    complementary_skills: list[str] = field(default_factory=list)
    match_types: list[str] = field(default_factory=lambda: ["Professional"])
    recommendation_strength: str = "low"

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidateId": self.candidate_id,
            "compatibilityScore": self.score,
            "reasoning": self.reasoning,
            "sharedInterests": list(self.shared_interests),
            "complementarySkills": list(self.complementary_skills),
            "matchTypes": list(self.match_types),
            "recommendationStrength": self.recommendation_strength,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MatchStub | None:
        """
        Build a stub from one model-emitted object.

        Returns None when the object has no usable id or score.
        """
        candidate_id = _first(data, _ID_KEYS)
        if isinstance(candidate_id, bool) or not isinstance(candidate_id, (str, int)):
            return None
        candidate_id = str(candidate_id).strip()
        if not candidate_id:
            return None

        score = _coerce_score(_first(data, _SCORE_KEYS))
        if score is None:
            return None

        strength = str(_first(data, _STRENGTH_KEYS) or "").lower()
        if strength not in _STRENGTHS:
            strength = strength_for_score(score)

        return cls(
            candidate_id=candidate_id,
            score=score,
            reasoning=str(_first(data, _REASONING_KEYS) or ""),
            shared_interests=_string_list(_first(data, _INTEREST_KEYS)),
            complementary_skills=_string_list(_first(data, _SKILL_KEYS)),
            match_types=normalize_match_types(_first(data, _TYPE_KEYS)),
            recommendation_strength=strength,
        )


@dataclass
class Parsed:
    """At least one stub was extracted."""

    stubs: list[MatchStub]
    strategy: str


@dataclass
class Empty:
    """Nothing usable in the text."""

    reason: str


ExtractionResult = Parsed | Empty


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------


class ResponseExtractor:
    """
    Cascading parser with an ordered, replaceable strategy list.

    Each strategy takes the raw text and returns a list of candidate
    objects, or raises ParseError.
    """

    def __init__(
        self,
        strategies: list[tuple[str, Callable[[str], list[Any]]]] | None = None,
        max_chars: int = MAX_RESPONSE_CHARS,
    ) -> None:
        self.strategies = strategies if strategies is not None else list(DEFAULT_STRATEGIES)
        self.max_chars = max_chars

    def extract(self, raw_text: str) -> list[MatchStub]:
        """Stubs from the text, or [] when nothing usable is found."""
        result = self.extract_result(raw_text)
        return result.stubs if isinstance(result, Parsed) else []

    def extract_result(self, raw_text: str) -> ExtractionResult:
        if not raw_text or not raw_text.strip():
            return Empty("empty response")
        if len(raw_text) > self.max_chars:
            logger.warning(
                "Model output too large to scan (%d chars, limit %d)",
                len(raw_text), self.max_chars,
            )
            return Empty("response too large")

        for name, strategy in self.strategies:
            try:
                items = strategy(raw_text)
            except ParseError:
                continue
            if not _is_plausible(items):
                continue

            stubs = [s for s in (MatchStub.from_dict(i) for i in items if isinstance(i, dict)) if s]
            if not stubs:
                continue

            logger.debug("Extracted %d stubs with strategy %s", len(stubs), name)
            return Parsed(stubs=stubs, strategy=name)

        logger.warning(
            "No match list found in model output (%d chars): %.200r",
            len(raw_text), raw_text,
        )
        return Empty("no strategy matched")


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def parse_whole_text(text: str) -> list[Any]:
    return _load_array(text.strip())


def parse_fenced_block(text: str) -> list[Any]:
    for block in _FENCE_RE.findall(text):
        try:
            items = _load_array(block.strip())
        except ParseError:
            continue
        if _is_plausible(items):
            return items
    raise ParseError("no fenced block holds a match array")


def parse_labelled_array(text: str) -> list[Any]:
    # A labelled field wins over position
    pairs = _bracket_pairs(text, "[", "]")
    for label in _LABEL_RE.finditer(text):
        end = pairs.get(label.end())
        if end is None:
            continue
        try:
            return _load_array(text[label.end():end])
        except ParseError:
            continue

    # Otherwise the last top-level array, if only a little prose follows it
    spans = _top_level_spans(text, "[", "]")
    if spans:
        start, end = spans[-1]
        if len(text[end:].strip()) <= _TRAILING_SLACK:
            return _load_array(text[start:end])
    raise ParseError("no labelled or trailing array")


def parse_outer_brackets(text: str) -> list[Any]:
    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        raise ParseError("no bracketed span")
    return _load_array(text[start:end + 1])


def parse_loose_objects(text: str) -> list[Any]:
    objects: list[Any] = []
    for start, end in _all_spans(text, "{", "}"):
        chunk = text[start:end]
        if not _ID_FIELD_RE.search(chunk):
            continue
        try:
            value = json.loads(chunk)
        except (json.JSONDecodeError, RecursionError):
            continue
        if isinstance(value, dict):
            objects.append(value)
    if not objects:
        raise ParseError("no standalone match objects")
    return objects


DEFAULT_STRATEGIES: tuple[tuple[str, Callable[[str], list[Any]]], ...] = (
    ("whole_text", parse_whole_text),
    ("fenced_block", parse_fenced_block),
    ("labelled_array", parse_labelled_array),
    ("outer_brackets", parse_outer_brackets),
    ("loose_objects", parse_loose_objects),
)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _load_array(text: str) -> list[Any]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise ParseError(str(exc)) from exc
    # {"matches": [...]} is accepted as the array it wraps
    if isinstance(value, dict):
        for key in ("matches", "results", "recommendations"):
            if isinstance(value.get(key), list):
                return value[key]
    if not isinstance(value, list):
        raise ParseError("not a JSON array")
    return value


def _is_plausible(items: Any) -> bool:
    """A list with at least one object carrying a candidate id."""
    if not isinstance(items, list):
        return False
    for item in items:
        if not isinstance(item, dict):
            continue
        value = _first(item, _ID_KEYS)
        if isinstance(value, str) and value.strip():
            return True
        if isinstance(value, int) and not isinstance(value, bool):
            return True
    return False


def _bracket_pairs(text: str, open_ch: str, close_ch: str) -> dict[int, int]:
    """
    Map each balanced opening position to one past its closer, in one pass.

    String contents are skipped. A JSON string cannot hold a raw newline,
    so a newline also ends one; a stray quote in prose then only hides the
    rest of its own line.
    """
    pairs: dict[int, int] = {}
    stack: list[int] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"' or ch == "\n":
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_ch:
            stack.append(i)
        elif ch == close_ch and stack:
            start = stack.pop()
            pairs[start] = i + 1
    return pairs


def _top_level_spans(text: str, open_ch: str, close_ch: str) -> list[tuple[int, int]]:
    """Non-overlapping balanced spans, scanning left to right."""
    pairs = _bracket_pairs(text, open_ch, close_ch)
    spans: list[tuple[int, int]] = []
    covered_until = -1
    for start in sorted(pairs):
        if start < covered_until:
            continue
        end = pairs[start]
        spans.append((start, end))
        covered_until = end
    return spans


def _all_spans(text: str, open_ch: str, close_ch: str) -> list[tuple[int, int]]:
    """
    Outermost balanced spans that parse as JSON.

    A span that does not parse is searched again from its next opening
    character, so objects nested in a broken array are still found. Only
    the first _MAX_SPAN_DEPTH nesting levels are tried.
    """
    pairs = _bracket_pairs(text, open_ch, close_ch)
    spans: list[tuple[int, int]] = []
    covered_until = -1
    enclosing: list[int] = []  # ends of the balanced spans around `start`
    for start in sorted(pairs):
        end = pairs[start]
        while enclosing and enclosing[-1] <= start:
            enclosing.pop()
        depth = len(enclosing)
        enclosing.append(end)
        if start < covered_until or depth > _MAX_SPAN_DEPTH:
            continue
        # Only claim the span if it parses; otherwise look inside it
        try:
            json.loads(text[start:end])
        except (json.JSONDecodeError, RecursionError):
            continue
        spans.append((start, end))
        covered_until = end
    return spans


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _coerce_score(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    # json.loads reads 1e999 and Infinity as inf
    if not math.isfinite(number):
        return None
    return min(max(round_half_up(number), 0), 100)


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]
