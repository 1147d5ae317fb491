"""Embedding service using sentence-transformers.

Turns utterances and replies into fixed-length vectors for the
per-call context index.
"""

from __future__ import annotations

import asyncio
import re
import unicodedata
from functools import lru_cache
from typing import Any, Protocol

import numpy as np

from callbridge.errors import EmbeddingError, EmptyInputError
from callbridge.logging_config import get_logger

logger: Any = get_logger(__name__)

# all-MiniLM-L6-v2: fast, 80MB, 384 dimensions
DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class EmbeddingClient(Protocol):
    """Protocol for text embedding implementations."""

    async def embed(self, text: str) -> list[float]:
        """Embed one text. Empty text raises EmptyInputError."""
        ...

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts; fails as a whole if any text is invalid."""
        ...


class EmbeddingService:
    """Wrapper around sentence-transformers for text embeddings."""

    def __init__(self, model_name: str = DEFAULT_MODEL):
        self._model_name = model_name
        self._model = None
        self._dimension: int | None = None

    @property
    def model(self):
        """Lazy load the model on first use."""
        if self._model is None:
            self._model = _load_model(self._model_name)
            test_emb = self._model.encode(["test"])
            self._dimension = test_emb.shape[1]
            logger.info(
                f"Loaded embedding model {self._model_name} "
                f"(dimension={self._dimension})"
            )
        return self._model

    @property
    def dimension(self) -> int:
        """Get embedding dimension."""
        if self._dimension is None:
            _ = self.model
        return self._dimension or 384  # Default for MiniLM

    def encode(self, texts: list[str]) -> np.ndarray:
        """Encode texts to L2-normalized embeddings synchronously.

        Raises:
            EmptyInputError: If any text is empty after normalization
            EmbeddingError: If the model fails
        """
        normalized = [normalize_text(t) for t in texts]
        if not normalized:
            return np.array([])
        if any(not t for t in normalized):
            raise EmptyInputError("Cannot embed empty text")

        try:
            embeddings = self.model.encode(
                normalized,
                convert_to_numpy=True,
                normalize_embeddings=True,  # L2 normalize for cosine similarity
                show_progress_bar=False,
            )
        except Exception as e:
            logger.error(f"Embedding model failed: {e}")
            raise EmbeddingError(f"Failed to embed text: {e}") from e
        return embeddings  # type: ignore[no-any-return]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Encode texts asynchronously, off the event loop."""
        embeddings = await asyncio.to_thread(self.encode, texts)
        return [row.tolist() for row in embeddings]

    async def embed(self, text: str) -> list[float]:
        """Encode a single text asynchronously."""
        embeddings = await self.embed_many([text])
        return embeddings[0]


@lru_cache(maxsize=1)
def _load_model(model_name: str):
    """Load and cache the sentence-transformers model."""
    try:
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading sentence-transformers model: {model_name}")
        return SentenceTransformer(model_name)
    except ImportError:
        logger.error(
            "sentence-transformers not installed. "
            "Install with: pip install sentence-transformers"
        )
        raise
    except Exception as e:
        logger.error(f"Failed to load embedding model: {e}")
        raise EmbeddingError(f"Failed to load embedding model {model_name}: {e}") from e


def normalize_text(text: str) -> str:
    """Normalize text before embedding.

    Applies NFC normalization, lowercasing and whitespace collapsing.
    """
    text = unicodedata.normalize("NFC", text)
    text = text.lower()
    text = re.sub(r"\s+", " ", text)
    return text.strip()
