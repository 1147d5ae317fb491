"""ChromaDB vector index for conversation context.

One cosine-space collection holds every call's records; each record
carries its ``call_id`` in metadata and every query filters on it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from callbridge.logging_config import get_logger
from callbridge.services.knowledge.protocol import VectorMatch

logger: Any = get_logger(__name__)

DEFAULT_COLLECTION = "conversation-history"


class ChromaVectorIndex:
    """ChromaDB-backed implementation of the VectorIndex protocol."""

    def __init__(
        self,
        persist_directory: str | None = None,
        collection_name: str = DEFAULT_COLLECTION,
        client: Any | None = None,
    ):
        self._client = client
        self._persist_directory = persist_directory or "data/chromadb"
        self._collection_name = collection_name
        self._collection = None

    @property
    def client(self):
        """Lazy initialization of ChromaDB client."""
        if self._client is None:
            try:
                import chromadb
                from chromadb.config import Settings

                Path(self._persist_directory).mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(
                    path=self._persist_directory,
                    settings=Settings(anonymized_telemetry=False),
                )
                logger.info(f"ChromaDB initialized at {self._persist_directory}")
            except ImportError:
                logger.error("chromadb not installed. Install with: pip install chromadb")
                raise
        return self._client

    @property
    def collection(self):
        """Get or create the context collection."""
        if self._collection is None:
            self._collection = self.client.get_or_create_collection(
                name=self._collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collection

    def upsert(
        self,
        ids: list[str],
        vectors: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Write a batch of vectors in a single call."""
        self.collection.upsert(
            ids=ids,
            embeddings=vectors,
            documents=[str(m.get("text", "")) for m in metadatas],
            metadatas=metadatas,
        )
        logger.debug(f"Upserted {len(ids)} vectors into {self._collection_name}")

    def query(
        self,
        vector: list[float],
        top_k: int,
        where: dict[str, Any],
    ) -> list[VectorMatch]:
        """Nearest neighbours for ``vector`` restricted by ``where``."""
        results = self.collection.query(
            query_embeddings=[vector],
            n_results=top_k,
            where=where,
            include=["metadatas", "distances"],
        )

        matches: list[VectorMatch] = []
        if results["ids"] and results["ids"][0]:
            distances = results["distances"][0] if results["distances"] else []
            metadatas = results["metadatas"][0] if results["metadatas"] else []
            for i, item_id in enumerate(results["ids"][0]):
                # Cosine distance -> similarity
                distance = distances[i] if i < len(distances) else 1.0
                matches.append(
                    VectorMatch(
                        id=item_id,
                        score=1.0 - distance,
                        metadata=dict(metadatas[i]) if i < len(metadatas) else {},
                    )
                )

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def count(self) -> int:
        """Number of vectors in the collection."""
        return self.collection.count()

    def health_check(self) -> bool:
        """Check if ChromaDB is operational."""
        try:
            _ = self.client.heartbeat()
            return True
        except Exception as e:
            logger.warning(f"ChromaDB health check failed: {e}")
            return False
