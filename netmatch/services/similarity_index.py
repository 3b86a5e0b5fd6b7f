# =============================================================================
# Similarity Index — Pluggable Semantic Search over Profiles
# =============================================================================
#
# Given free-text (e.g. "founders in fintech looking for a design partner"),
# returns profile ids ranked by semantic closeness. An empty result is a
# valid answer, never an error.
#
# DESIGN DECISION: Protocol (structural typing) over ABC, with pgvector and
# ChromaDB implementations selected by config.
#
# DESIGN DECISION: Mixed sync/async interface.
# - add_profiles() is sync → called by the Celery indexing task
# - search() / list_indexed() are async → called by the search tool
#
# ARCHITECTURE:
#   SimilarityIndex (Protocol)
#   ├── PgVectorIndex  — profile_embeddings table, cosine distance
#   └── ChromaIndex    — ChromaDB collection (in-process or client/server)
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

import chromadb
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert

from netmatch.config import settings
from netmatch.db.engine import async_session_factory, get_sync_session
from netmatch.db.models import ProfileEmbedding
from netmatch.services.embedder import embed_batch, embed_query
from netmatch.services.profile_store import Profile

logger = logging.getLogger(__name__)

# Characters of the indexed document handed back to the reasoning loop
SUMMARY_CHARS = 500

CHROMA_COLLECTION = "netmatch_profiles"


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class SimilarityHit:
    """
    One search result.

    similarity is in [0, 1], higher is closer. Hits from list_indexed()
    are unranked and carry 0.0.
    """

    profile_id: str
    similarity: float
    summary: str = ""


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class SimilarityIndex(Protocol):
    """Semantic search over indexed profile documents."""

    async def search(self, query_text: str, k: int = 20) -> list[SimilarityHit]:
        """Return up to k hits sorted by similarity (highest first)."""
        ...

    async def list_indexed(self, limit: int = 100) -> list[SimilarityHit]:
        """Unranked listing of indexed profiles, for fallback discovery."""
        ...

    def add_profiles(self, profiles: Sequence[Profile]) -> int:
        """Embed and store (or replace) profile documents. Sync (for Celery)."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorIndex:
    """
    pgvector-backed profile index.

    Args:
        session_factory: Async session factory for reads.
        embed: Query embedding function (sync, run in a worker thread).
    """

    def __init__(
        self,
        session_factory=async_session_factory,
        embed: Callable[[str], list[float]] = embed_query,
    ) -> None:
        self._session_factory = session_factory
        self._embed = embed

    async def search(self, query_text: str, k: int = 20) -> list[SimilarityHit]:
        """
        Cosine similarity search.

        pgvector's cosine_distance() is in [0, 2]; similarity is
        1 - distance clamped into [0, 1].
        """
        query_embedding = await asyncio.to_thread(self._embed, query_text)
        distance = ProfileEmbedding.embedding.cosine_distance(query_embedding)

        async with self._session_factory() as session:
            stmt = (
                select(ProfileEmbedding, distance.label("distance"))
                .where(ProfileEmbedding.embedding.is_not(None))
                .order_by(distance)
                .limit(k)
            )
            result = await session.execute(stmt)
            rows = result.all()

        logger.debug("pgvector search returned %d rows (k=%d)", len(rows), k)

        return [
            SimilarityHit(
                profile_id=row.user_id,
                similarity=_to_similarity(dist),
                summary=row.content[:SUMMARY_CHARS],
            )
            for row, dist in rows
        ]

    async def list_indexed(self, limit: int = 100) -> list[SimilarityHit]:
        async with self._session_factory() as session:
            stmt = (
                select(ProfileEmbedding)
                .order_by(ProfileEmbedding.created_at)
                .limit(limit)
            )
            result = await session.execute(stmt)
            rows = result.scalars().all()

        return [
            SimilarityHit(
                profile_id=row.user_id,
                similarity=0.0,
                summary=row.content[:SUMMARY_CHARS],
            )
            for row in rows
        ]

    def add_profiles(self, profiles: Sequence[Profile]) -> int:
        """Embed profiles and upsert one row per profile id."""
        if not profiles:
            return 0

        documents = [profile_document(p) for p in profiles]
        embeddings = embed_batch(documents)

        with get_sync_session() as session:
            for profile, document, embedding in zip(
                profiles, documents, embeddings, strict=True
            ):
                stmt = pg_insert(ProfileEmbedding).values(
                    user_id=profile.id,
                    content=document,
                    embedding=embedding,
                    metadata_=_index_metadata(profile),
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[ProfileEmbedding.user_id],
                    set_={
                        "content": stmt.excluded.content,
                        "embedding": stmt.excluded.embedding,
                        "metadata_": stmt.excluded.metadata_,
                    },
                )
                session.execute(stmt)

        logger.info("Indexed %d profiles in pgvector", len(profiles))
        return len(profiles)


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaIndex:
    """
    ChromaDB-backed profile index.

    One collection, one document per profile id. Uses cosine space so
    similarities line up with the pgvector backend.
    """

    def __init__(
        self,
        client=None,
        embed: Callable[[str], list[float]] = embed_query,
    ) -> None:
        if client is None:
            if settings.chroma_url:
                client = chromadb.HttpClient(host=settings.chroma_url)
            else:
                client = chromadb.Client()

        self._collection = client.get_or_create_collection(
            name=CHROMA_COLLECTION,
            metadata={"hnsw:space": "cosine"},
        )
        self._embed = embed

    async def search(self, query_text: str, k: int = 20) -> list[SimilarityHit]:
        # Chroma's client is synchronous
        def _sync_search() -> list[SimilarityHit]:
            query_embedding = self._embed(query_text)
            results = self._collection.query(
                query_embeddings=[query_embedding],
                n_results=k,
                include=["documents", "distances"],
            )

            hits: list[SimilarityHit] = []
            if not results or not results["ids"] or not results["ids"][0]:
                return hits

            distances = results["distances"][0] if results["distances"] else []
            documents = results["documents"][0] if results["documents"] else []
            for i, profile_id in enumerate(results["ids"][0]):
                hits.append(SimilarityHit(
                    profile_id=profile_id,
                    similarity=_to_similarity(distances[i] if distances else 1.0),
                    summary=(documents[i] if documents else "")[:SUMMARY_CHARS],
                ))
            return hits

        return await asyncio.to_thread(_sync_search)

    async def list_indexed(self, limit: int = 100) -> list[SimilarityHit]:
        def _sync_list() -> list[SimilarityHit]:
            results = self._collection.get(limit=limit, include=["documents"])
            documents = results.get("documents") or []
            return [
                SimilarityHit(
                    profile_id=profile_id,
                    similarity=0.0,
                    summary=(documents[i] if i < len(documents) else "")[:SUMMARY_CHARS],
                )
                for i, profile_id in enumerate(results["ids"])
            ]

        return await asyncio.to_thread(_sync_list)

    def add_profiles(self, profiles: Sequence[Profile]) -> int:
        if not profiles:
            return 0

        documents = [profile_document(p) for p in profiles]
        embeddings = embed_batch(documents)

        # upsert() replaces documents with matching ids
        self._collection.upsert(
            ids=[p.id for p in profiles],
            documents=documents,
            embeddings=embeddings,
            metadatas=[_sanitise_chroma_metadata(_index_metadata(p)) for p in profiles],
        )

        logger.info("Indexed %d profiles in ChromaDB", len(profiles))
        return len(profiles)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_similarity_index(
    override_type: str | None = None,
) -> PgVectorIndex | ChromaIndex:
    """
    Factory that returns the configured similarity index backend.

    Reads `similarity_index_type` from settings:
    - "pgvector" → PgVectorIndex (default, no extra infra)
    - "chroma" → ChromaIndex
    """
    index_type = override_type or settings.similarity_index_type

    if index_type == "chroma":
        logger.info("Using ChromaDB similarity index")
        return ChromaIndex()

    logger.info("Using pgvector similarity index")
    return PgVectorIndex()


# ---------------------------------------------------------------------------
# Profile Documents
# ---------------------------------------------------------------------------


def profile_document(profile: Profile) -> str:
    """
    Text that gets embedded for a profile.

    Field order puts the most discriminating text first, since search
    results only carry the first SUMMARY_CHARS characters back.
    """
    lines = [f"Name: {profile.name}"]
    if profile.title:
        lines.append(f"Title: {profile.title}")
    if profile.company:
        lines.append(f"Company: {profile.company}")
    if profile.location:
        lines.append(f"Location: {profile.location}")
    if profile.bio:
        lines.append(f"Bio: {profile.bio}")
    if profile.skills:
        lines.append(f"Skills: {', '.join(profile.skills)}")
    if profile.interests:
        lines.append(f"Interests: {', '.join(profile.interests)}")
    looking_for = profile.preferences.active()
    if looking_for:
        lines.append(f"Looking for: {', '.join(looking_for)}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _to_similarity(distance: float) -> float:
    return round(min(max(1.0 - distance, 0.0), 1.0), 4)


def _index_metadata(profile: Profile) -> dict:
    return {
        "name": profile.name,
        "title": profile.title,
        "company": profile.company,
        "location": profile.location,
        "skills": list(profile.skills),
        "interests": list(profile.interests),
    }


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    ChromaDB metadata values must be str, int, float or bool.

    Lists become comma-separated strings and None becomes "".
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
