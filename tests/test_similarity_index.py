# =============================================================================
# Unit Tests — Similarity Index (ChromaDB backend)
# =============================================================================
#
# Uses ChromaDB's in-process mode (no external services needed) with a
# fixed toy embedding, so no embedding API is called.
# pgvector tests are skipped here — they require a running PostgreSQL instance.
# =============================================================================

from __future__ import annotations

from unittest.mock import patch

import chromadb

from netmatch.services.similarity_index import (
    ChromaIndex,
    SimilarityHit,
    _sanitise_chroma_metadata,
    _to_similarity,
    profile_document,
)
from tests.fakes import _run, make_profile

# Three-dimensional toy embeddings keyed on a word in the document
_AXES = {"Designer": [1.0, 0.0, 0.0], "Investor": [0.0, 1.0, 0.0]}


def _toy_embed(text: str) -> list[float]:
    for word, vector in _AXES.items():
        if word in text:
            return vector
    return [0.0, 0.0, 1.0]


def _toy_embed_batch(texts: list[str]) -> list[list[float]]:
    return [_toy_embed(t) for t in texts]


class TestChromaIndex:
    """Tests for ChromaIndex (in-process mode)."""

    _test_counter = 0

    def _make_index(self) -> ChromaIndex:
        """Fresh index with a unique collection per test."""
        TestChromaIndex._test_counter += 1
        client = chromadb.Client()
        index = ChromaIndex(client=client, embed=_toy_embed)
        index._collection = client.get_or_create_collection(
            name=f"test_profiles_{TestChromaIndex._test_counter}",
            metadata={"hnsw:space": "cosine"},
        )
        return index

    def _add(self, index: ChromaIndex, profiles) -> int:
        with patch("netmatch.services.similarity_index.embed_batch", _toy_embed_batch):
            return index.add_profiles(profiles)

    def test_add_profiles_returns_count(self):
        index = self._make_index()

        added = self._add(index, [
            make_profile("u1", title="Designer"),
            make_profile("u2", title="Investor"),
        ])

        assert added == 2
        assert self._add(index, []) == 0

    def test_search_ranks_closest_first(self):
        index = self._make_index()
        self._add(index, [
            make_profile("u1", title="Designer"),
            make_profile("u2", title="Investor"),
        ])

        hits = _run(index.search("Investor with a design eye", k=2))

        assert [h.profile_id for h in hits] == ["u2", "u1"]
        assert all(isinstance(h, SimilarityHit) for h in hits)
        assert hits[0].similarity >= hits[1].similarity
        assert "Title: Investor" in hits[0].summary

    def test_re_adding_replaces_document(self):
        index = self._make_index()
        self._add(index, [make_profile("u1", title="Designer")])
        self._add(index, [make_profile("u1", title="Investor")])

        listed = _run(index.list_indexed())

        assert [h.profile_id for h in listed] == ["u1"]
        assert listed[0].similarity == 0.0
        assert "Investor" in listed[0].summary

    def test_empty_collection(self):
        index = self._make_index()

        assert _run(index.list_indexed()) == []


class TestHelpers:

    def test_similarity_is_clamped(self):
        assert _to_similarity(0.0) == 1.0
        assert _to_similarity(0.25) == 0.75
        assert _to_similarity(1.7) == 0.0

    def test_profile_document(self):
        profile = make_profile(
            "u1",
            name="Dana Kim",
            title="Product Designer",
            skills=["Figma", "Research"],
            interests=["Climate"],
            preferences={"collaborate": True, "discuss": True},
        )

        document = profile_document(profile)

        assert document.splitlines()[0] == "Name: Dana Kim"
        assert "Skills: Figma, Research" in document
        assert "Looking for: discuss, collaborate" in document
        assert "Bio:" not in document

    def test_metadata_sanitisation(self):
        """ChromaDB metadata values must be scalars."""
        sanitised = _sanitise_chroma_metadata({
            "name": "Dana",
            "title": None,
            "skills": ["Figma", "Research"],
            "connections": 12,
        })

        assert sanitised == {
            "name": "Dana",
            "title": "",
            "skills": "Figma,Research",
            "connections": 12,
        }
