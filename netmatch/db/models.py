# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────┐       ┌──────────────────────────────────┐
# │  users           │       │  profile_embeddings              │
# ├──────────────────┤       ├──────────────────────────────────┤
# │ id (PK, uuid)    │──1:1─▶│ id (PK)                          │
# │ name, title      │       │ user_id (FK → users.id, unique)  │
# │ company          │       │ content (text)                   │
# │ location, bio    │       │ embedding (vector(1536))         │
# │ skills[]         │       │ metadata_ (jsonb)                │
# │ interests[]      │       └──────────────────────────────────┘
# │ preferences      │
# │ connections      │       ┌──────────────────────────────────┐
# │ created_at       │──1:1─▶│  matches_cache                   │
# │ updated_at       │       ├──────────────────────────────────┤
# └──────────────────┘       │ owner_id (FK → users.id, unique) │
#                            │ matches_json (jsonb)             │
#                            │ total_matches                    │
#                            │ metadata_json (jsonb)            │
#                            │ created_at, updated_at           │
#                            │ expires_at                       │
#                            └──────────────────────────────────┘
#
# DESIGN DECISIONS:
#
# 1. `users` is owned by the profile CRUD side of the product. The matching
#    engine only reads it (see services/profile_store.py).
#
# 2. `matches_cache` keeps the persisted shape stable across engine
#    versions: matches and metadata are JSONB blobs, and
#    metadata_json.formatVersion tells readers which layout they hold.
#    The UNIQUE constraint on owner_id makes every write a single-row
#    replace (INSERT ... ON CONFLICT DO UPDATE).
# =============================================================================

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from netmatch.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all ORM models."""

    pass


class User(Base):
    """
    A professional profile, as stored by the profile side of the product.

    Preferences are a JSONB object with boolean flags
    {mentor, invest, discuss, collaborate, hire}.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)

    skills: Mapped[list[str] | None] = mapped_column(ARRAY(Text), nullable=True)
    interests: Mapped[list[str] | None] = mapped_column(ARRAY(Text), nullable=True)
    preferences: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    connections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', name='{self.name}')>"


class ProfileEmbedding(Base):
    """
    One embedded document per profile, used by the pgvector similarity index.

    `content` is the text that was embedded; the first 500 characters are
    returned to the reasoning loop as the profile summary.
    """

    __tablename__ = "profile_embeddings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)

    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    # Named `metadata_` to avoid collision with DeclarativeBase.metadata
    metadata_: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ProfileEmbedding(id={self.id}, user_id='{self.user_id}')>"


class MatchCacheRow(Base):
    """
    The last computed match list for one owner.

    Never updated in place by the engine: every write replaces the whole
    row. A row is served only while expires_at is in the future.
    """

    __tablename__ = "matches_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    matches_json: Mapped[list] = mapped_column(JSONB, nullable=False)
    total_matches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # {processingTimeMs, candidatesAnalyzed, formatVersion}
    metadata_json: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<MatchCacheRow(owner_id='{self.owner_id}', "
            f"total={self.total_matches}, expires_at={self.expires_at})>"
        )


# =============================================================================
# Database Indexes
# =============================================================================

# HNSW index for cosine similarity search over profile embeddings
profile_embedding_idx = Index(
    "idx_profile_embedding_hnsw",
    ProfileEmbedding.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

# Expired rows are swept by expires_at
matches_cache_expires_idx = Index(
    "idx_matches_cache_expires_at",
    MatchCacheRow.expires_at,
)
