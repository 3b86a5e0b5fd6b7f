# =============================================================================
# Embedding Service — Profile & Query Vectors (Provider-Agnostic)
# =============================================================================
#
# Turns profile documents and free-text search queries into vectors through
# any OpenAI-compatible embeddings endpoint (EMBEDDING_BASE_URL).
#
# DESIGN DECISION: Sync client. Profile indexing runs in Celery workers
# (synchronous); query embedding on the request path is pushed to a worker
# thread with asyncio.to_thread() by the similarity index.
#
# DESIGN DECISION: No retry logic here. The indexing task retries at the
# Celery level, and a failed query embedding on the request path makes the
# search tool fall back to an unranked listing.
#
# The profile_embeddings column has a fixed width, so every vector coming
# back is checked against EMBEDDING_DIMENSIONS before anyone stores it.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence

from openai import OpenAI

from netmatch.config import settings

logger = logging.getLogger(__name__)

# Sparse profiles (no bio, no skills) still need a row in the index so the
# fallback listing and the vector search see the same population.
EMPTY_DOCUMENT = "(empty profile)"

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    """Build the embeddings client on first use; OPENAI_API_KEY wins over LLM_API_KEY."""
    global _client
    if _client is not None:
        return _client

    api_key = settings.openai_api_key or settings.llm_api_key
    if not api_key:
        raise ValueError(
            "No API key configured for embeddings. "
            "Set OPENAI_API_KEY or LLM_API_KEY in .env"
        )

    if settings.embedding_base_url:
        _client = OpenAI(api_key=api_key, base_url=settings.embedding_base_url)
    else:
        _client = OpenAI(api_key=api_key)

    logger.info(
        "Embedding client ready (model=%s, dimensions=%s, base_url=%s)",
        settings.embedding_model,
        settings.embedding_dimensions,
        settings.embedding_base_url or "default",
    )
    return _client


def _chunks(texts: Sequence[str], size: int) -> Iterator[tuple[int, list[str]]]:
    for start in range(0, len(texts), size):
        yield start, [t if t.strip() else EMPTY_DOCUMENT for t in texts[start : start + size]]


def embed_batch(
    texts: Sequence[str],
    batch_size: int | None = None,
    client: OpenAI | None = None,
) -> list[list[float]]:
    """
    Embed profile documents, one API call per `batch_size` documents.

    The result is aligned with `texts`: vectors are placed by the index the
    API reports, not by response order. Blank documents are embedded as a
    placeholder rather than dropped.

    Raises:
        ValueError: No embedding API key is configured, or the provider
            returned vectors of the wrong width.
        openai.APIError: The embeddings call itself failed.
    """
    if not texts:
        return []

    client = client or _get_client()
    size = batch_size or settings.embedding_batch_size
    vectors: list[list[float] | None] = [None] * len(texts)

    for start, chunk in _chunks(texts, size):
        logger.debug(
            "Embedding documents %d-%d of %d",
            start + 1, start + len(chunk), len(texts),
        )
        params: dict = {"model": settings.embedding_model, "input": chunk}
        if settings.embedding_dimensions:
            params["dimensions"] = settings.embedding_dimensions
        response = client.embeddings.create(**params)

        for item in response.data:
            vectors[start + item.index] = item.embedding

    missing = [i for i, v in enumerate(vectors) if v is None]
    if missing:
        raise ValueError(f"Embedding provider returned no vector for inputs {missing}")

    expected = settings.embedding_dimensions
    if expected:
        widths = {len(v) for v in vectors}
        if widths != {expected}:
            raise ValueError(
                f"Embedding width mismatch: expected {expected}, got {sorted(widths)}"
            )

    logger.info("Embedded %d documents (model=%s)", len(texts), settings.embedding_model)
    return vectors  # type: ignore[return-value]


def embed_query(text: str) -> list[float]:
    return embed_batch([text], batch_size=1)[0]
