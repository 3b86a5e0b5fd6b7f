# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engine, session management, and ORM models.
#
# Key exports:
#   - async_session_factory: sessions for the profile store and match cache
#   - get_sync_session: sync sessions for Celery workers
#   - User, ProfileEmbedding, MatchCacheRow: ORM models
# =============================================================================
