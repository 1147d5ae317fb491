"""Conversation context services.

This package provides:
- ContextStore: per-call memory of embedded user/assistant turns
- ChromaVectorIndex: ChromaDB vector index partitioned by call_id
- EmbeddingService: sentence-transformers embeddings
"""

from callbridge.services.knowledge.chromadb_store import ChromaVectorIndex
from callbridge.services.knowledge.context_store import CONTEXT_TOP_K, ContextStore
from callbridge.services.knowledge.embeddings import EmbeddingClient, EmbeddingService
from callbridge.services.knowledge.protocol import (
    ContextRecord,
    ContextService,
    VectorIndex,
    VectorMatch,
)

__all__ = [
    "CONTEXT_TOP_K",
    "ChromaVectorIndex",
    "ContextRecord",
    "ContextService",
    "ContextStore",
    "EmbeddingClient",
    "EmbeddingService",
    "VectorIndex",
    "VectorMatch",
]
