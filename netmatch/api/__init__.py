# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - matches.py: find / recommendations / score / batch / index endpoints
#   - deps.py: pipeline dependency
# =============================================================================
