"""Protocol and data types for per-call conversation context."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from callbridge.services.llm.protocol import Role


@dataclass(frozen=True)
class ContextRecord:
    """One stored conversation turn half (user or assistant).

    Records are immutable; the store attaches embeddings by producing
    a copy with ``embedding`` filled.
    """

    call_id: str
    role: Role
    text: str
    embedding: tuple[float, ...] | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    record_id: str = ""

    def __post_init__(self) -> None:
        if not self.record_id:
            object.__setattr__(
                self, "record_id", f"{self.role.value}-{self.call_id}-{uuid.uuid4().hex}"
            )

    def to_metadata(self) -> dict[str, Any]:
        """Flatten to vector-index metadata."""
        return {
            "call_id": self.call_id,
            "role": self.role.value,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_metadata(
        cls,
        record_id: str,
        metadata: dict[str, Any],
        embedding: Sequence[float] | None = None,
    ) -> ContextRecord:
        """Rebuild a record from vector-index metadata."""
        created_raw = metadata.get("created_at")
        created_at = (
            datetime.fromisoformat(created_raw) if created_raw else datetime.now(UTC)
        )
        return cls(
            call_id=str(metadata["call_id"]),
            role=Role(metadata.get("role", Role.USER.value)),
            text=str(metadata.get("text", "")),
            embedding=tuple(embedding) if embedding is not None else None,
            created_at=created_at,
            record_id=record_id,
        )


@dataclass(frozen=True)
class VectorMatch:
    """A single nearest-neighbour hit from the vector index."""

    id: str
    score: float
    metadata: dict[str, Any]


class VectorIndex(Protocol):
    """Backing vector index, partitioned by ``call_id`` metadata."""

    def upsert(
        self,
        ids: list[str],
        vectors: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Insert or replace vectors in one call."""
        ...

    def query(
        self,
        vector: list[float],
        top_k: int,
        where: dict[str, Any],
    ) -> list[VectorMatch]:
        """Return up to ``top_k`` matches, most similar first."""
        ...

    def health_check(self) -> bool:
        """Check if the index is reachable."""
        ...


class ContextService(Protocol):
    """Protocol for per-call context storage implementations."""

    async def retrieve(self, call_id: str, query_text: str, top_k: int) -> list[ContextRecord]:
        """Records for ``call_id`` ordered by decreasing similarity to the query."""
        ...

    async def store(self, records: Sequence[ContextRecord]) -> bool:
        """Embed and write all records, or none of them."""
        ...

    async def store_turn(self, call_id: str, user_text: str, assistant_text: str) -> bool:
        """Store one user/assistant pair."""
        ...
