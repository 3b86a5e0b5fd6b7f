# =============================================================================
# Agents Package — Agentic Matching Pipeline
# =============================================================================
#   - tools.py: search_candidates / fetch_profile / judge_compatibility
#   - orchestrator.py: LangGraph reasoning ⇄ tool loop with an iteration cap
#   - extractor.py: cascading parser from model text to match stubs
#   - enricher.py: joins stubs to profiles, drops unknown ids
#   - pipeline.py: find_matches with cache, plus the scoring-only path
#   - prompts.py: matchmaker and judge prompts
# =============================================================================
