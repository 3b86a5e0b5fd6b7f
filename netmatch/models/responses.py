# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API. Profiles are
# exposed as a trimmed public view; embeddings and cache internals never
# leave the service.
# =============================================================================

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response for GET /health — confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class ProfilePreferences(BaseModel):
    mentor: bool = False
    invest: bool = False
    discuss: bool = False
    collaborate: bool = False
    hire: bool = False


class ProfileSummary(BaseModel):
    """Public view of a matched person."""

    id: str
    name: str
    title: str = ""
    company: str = ""
    location: str = ""
    bio: str = ""
    skills: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    preferences: ProfilePreferences = Field(default_factory=ProfilePreferences)
    connections: int = 0


class MatchItem(BaseModel):
    """One ranked, explained match."""

    candidate_id: str
    compatibility_score: int = Field(ge=0, le=100)
    reasoning: str = ""
    shared_interests: list[str] = Field(default_factory=list)
    complementary_skills: list[str] = Field(default_factory=list)
    match_types: list[str] = Field(default_factory=list)
    recommendation_strength: str
    profile: ProfileSummary


class FindMatchesResponse(BaseModel):
    """Response for POST /matches/find and GET /matches/recommendations/{id}."""

    matches: list[MatchItem]
    total_found: int
    processing_time_ms: int
    cache_used: bool = False
    cache_age_minutes: int | None = None
    algorithm: str = Field(
        description="'agentic-rag', or 'agent-fallback-scoring' when the "
        "deterministic scorer filled in for an empty agent result",
    )
    fallback_reason: str | None = None


class ScoredMatchItem(BaseModel):
    """One deterministic match with its human-readable reasons."""

    candidate_id: str
    compatibility_score: int = Field(ge=0, le=100)
    reasons: list[str] = Field(default_factory=list)
    shared_interests: list[str] = Field(default_factory=list)
    complementary_skills: list[str] = Field(default_factory=list)
    match_types: list[str] = Field(default_factory=list)
    recommendation_strength: str
    profile: ProfileSummary


class ScoreMatchesResponse(BaseModel):
    """Response for POST /matches/score."""

    matches: list[ScoredMatchItem]
    total_found: int
    algorithm: str = "weighted-scoring"


class TaskQueuedResponse(BaseModel):
    """Response for endpoints that hand work to a Celery worker."""

    task_id: str
    queued: int = Field(description="Number of items queued for processing")
    status: str = "queued"
