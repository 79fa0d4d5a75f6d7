"""
Embedder module for generating OpenAI embeddings.

Embeds document chunks at ingestion time and individual queries at
retrieval time. Inputs are capped to EMBEDDING_INPUT_LIMIT characters
before the call; every provider error surfaces as EmbeddingFailure.
"""

import logging
import os
from typing import List, Optional

from openai import AsyncOpenAI

from capellan import config
from capellan.rag.errors import EmbeddingFailure

logger = logging.getLogger(__name__)

# OpenAI accepts up to 2048 inputs per request; keep batches well below that
EMBEDDING_BATCH_SIZE = 100


def _get_openai_client() -> AsyncOpenAI:
    """Get an AsyncOpenAI client using the configured API key.

    Returns:
        AsyncOpenAI client instance.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    api_key = os.environ.get("OPENAI_API_KEY") or config.OPENAI_API_KEY
    if not api_key:
        raise ValueError("OPENAI_API_KEY not found in environment or capellan.config")

    return AsyncOpenAI(api_key=api_key)


def _cap(text: str) -> str:
    return text[:config.EMBEDDING_INPUT_LIMIT]


async def embed_texts(
    texts: List[str],
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
) -> List[List[float]]:
    """Generate embeddings for a list of texts using OpenAI API.

    Args:
        texts: List of text strings to embed.
        client: Optional pre-existing AsyncOpenAI client.
        model: Embedding model, defaults to config.EMBEDDING_MODEL.

    Returns:
        List of embedding vectors (each a list of floats), in input order.

    Raises:
        EmbeddingFailure: If the call fails or returns the wrong number of vectors.
    """
    if not texts:
        return []

    model = model or config.EMBEDDING_MODEL
    embeddings: List[List[float]] = []
    total_tokens = 0

    try:
        if client is None:
            client = _get_openai_client()

        for start in range(0, len(texts), EMBEDDING_BATCH_SIZE):
            batch = [_cap(t) for t in texts[start:start + EMBEDDING_BATCH_SIZE]]
            response = await client.embeddings.create(model=model, input=batch)
            if not response.data or len(response.data) != len(batch):
                raise EmbeddingFailure(
                    f"Expected {len(batch)} embeddings, got {len(response.data or [])}"
                )
            embeddings.extend(list(item.embedding) for item in response.data)
            usage = getattr(response, "usage", None)
            total_tokens += getattr(usage, "total_tokens", 0) or 0
    except EmbeddingFailure:
        raise
    except Exception as e:
        logger.error(f"[EMBEDDER] Failed to generate embeddings: {e}")
        raise EmbeddingFailure(f"Failed to generate embeddings: {e}") from e

    logger.info(
        f"[EMBEDDER] Generated {len(embeddings)} embeddings ({model}), "
        f"usage: {total_tokens} tokens"
    )
    return embeddings


async def embed_query(
    query: str,
    client: Optional[AsyncOpenAI] = None,
    model: Optional[str] = None,
) -> List[float]:
    """Generate an embedding for a single query string.

    Args:
        query: The query text to embed.
        client: Optional pre-existing AsyncOpenAI client.
        model: Embedding model, defaults to config.EMBEDDING_MODEL.

    Returns:
        Embedding vector (list of floats).

    Raises:
        EmbeddingFailure: If the call fails or returns no vector.
    """
    model = model or config.EMBEDDING_MODEL
    try:
        if client is None:
            client = _get_openai_client()
        response = await client.embeddings.create(model=model, input=_cap(query))
    except Exception as e:
        logger.error(f"[EMBEDDER] Failed to embed query: {e}")
        raise EmbeddingFailure(f"Failed to generate embedding: {e}") from e

    if not response.data or not response.data[0].embedding:
        raise EmbeddingFailure("Embedding provider returned no vector")

    return list(response.data[0].embedding)
