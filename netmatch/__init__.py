# =============================================================================
# Professional Connection Matching Engine
# =============================================================================
# Recommends professional connections for a profile. Two paths:
#   - deterministic weighted scoring over structured profile attributes
#   - an agentic pipeline: semantic candidate search, LLM judgement with
#     tool calling, tolerant parsing of the model's answer, enrichment
#     against authoritative profiles, and a per-owner TTL cache
#
# Package structure:
#   netmatch/
#   ├── api/          → FastAPI route handlers (find, score, batch, index)
#   ├── agents/       → Tool set, LangGraph orchestrator, response extractor,
#   │                    result enricher, matching pipeline
#   ├── db/           → Database engine, sessions and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Leaf capabilities (LLM, embeddings, similarity
#   │                    index, profile store, scorer, match cache)
#   └── workers/      → Celery tasks (bulk matching, profile indexing)
# =============================================================================
