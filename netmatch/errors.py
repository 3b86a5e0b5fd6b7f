# =============================================================================
# Error Taxonomy — Matching Engine
# =============================================================================
#
# Only ValidationError is allowed to reach a caller of the matching
# pipeline. Every other kind is recovered where it is raised:
#
#   ValidationError             → rejected request (HTTP 400/404)
#   ToolFailureError            → tool's documented fallback result
#   ParseError                  → empty match list (logged)
#   CacheError                  → read: cache miss / write: logged, dropped
#   OrchestrationBudgetExceeded → Terminal with the last produced text
# =============================================================================

from __future__ import annotations


class MatchingError(Exception):
    """Base class for all matching-engine errors."""


class ValidationError(MatchingError):
    """
    Malformed request parameters or an unusable requesting profile.

    `not_found` distinguishes an unknown owner from out-of-range
    parameters so the API can answer 404 instead of 400.
    """

    def __init__(self, message: str, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


class ToolFailureError(MatchingError):
    """A single tool invocation errored or timed out."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name


class ParseError(MatchingError):
    """The response extractor exhausted every strategy."""


class CacheError(MatchingError):
    """Read or write failure against the match cache backing store."""


class OrchestrationBudgetExceeded(MatchingError):
    """The orchestrator hit its iteration ceiling."""

    def __init__(self, iterations: int) -> None:
        super().__init__(f"iteration budget of {iterations} exhausted")
        self.iterations = iterations
