# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, kept separate from the ORM models
# (netmatch/db/models.py) and from the engine's dataclasses.
# =============================================================================
