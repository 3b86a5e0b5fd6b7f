# =============================================================================
# Services Package — Leaf Capabilities
# =============================================================================
#   - llm.py: Multi-provider LLM abstraction with native tool calling
#   - embedder.py: OpenAI-compatible embedding generation
#   - similarity_index.py: Pluggable semantic profile search (pgvector, Chroma)
#   - profile_store.py: Read-only access to authoritative profiles
#   - scorer.py: Deterministic weighted compatibility scoring
#   - match_cache.py: Per-owner TTL cache with background writes
# =============================================================================
