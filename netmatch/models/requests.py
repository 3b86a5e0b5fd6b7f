# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API. Range limits
# mirror the pipeline's own validation, so malformed requests are rejected
# with a 422 before any matching work starts.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

MatchCategory = Literal[
    "all", "mentorship", "collaboration", "investment", "hiring", "discussion",
]


class FindMatchesRequest(BaseModel):
    """
    Request body for POST /matches/find.

    Example:
        {"owner_id": "5b1c...", "max_results": 10, "min_compatibility": 40}
    """

    owner_id: str = Field(
        ...,
        min_length=1,
        max_length=36,
        description="Profile id of the person looking for connections",
    )
    max_results: int = Field(default=10, ge=1, le=50)
    min_compatibility: int = Field(
        default=40,
        ge=10,
        le=100,
        description="Minimum compatibility score (inclusive) of returned matches",
    )
    force_refresh: bool = Field(
        default=False,
        description="Ignore any cached result and recompute",
    )
    category: MatchCategory = Field(
        default="all",
        description="Restrict results to one kind of relationship",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "owner_id": "7f0c2a4e-1b7d-4c1e-9a58-3f2e1d6c9b10",
                    "max_results": 10,
                    "min_compatibility": 40,
                    "force_refresh": False,
                    "category": "all",
                }
            ]
        }
    )


class ScoreMatchesRequest(BaseModel):
    """Request body for POST /matches/score (deterministic scoring only)."""

    owner_id: str = Field(..., min_length=1, max_length=36)
    limit: int = Field(default=20, ge=1, le=100)
    category: MatchCategory = "all"


class BatchMatchRequest(BaseModel):
    """Request body for POST /matches/batch — queue matching for many owners."""

    owner_ids: list[str] = Field(..., min_length=1, max_length=100)
    max_results: int = Field(default=10, ge=1, le=50)
    min_compatibility: int = Field(default=40, ge=10, le=100)


class IndexProfilesRequest(BaseModel):
    """Request body for POST /matches/index — (re)embed profiles."""

    profile_ids: list[str] | None = Field(
        default=None,
        description="Profiles to index. Omit to index every profile.",
    )
