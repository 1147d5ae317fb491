"""Per-call conversation memory backed by a vector index.

Every read and write is scoped by ``call_id``. Turn pairs are written
all-or-nothing: if any record in a batch cannot be embedded, nothing
from that batch reaches the index.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import replace
from typing import Any

from callbridge.errors import (
    EmbeddingError,
    EmptyInputError,
    PartialWriteError,
    RetrievalError,
)
from callbridge.logging_config import get_logger, truncate_for_log
from callbridge.observability.metrics import record_context_retrieval, record_context_write
from callbridge.services.knowledge.embeddings import EmbeddingClient
from callbridge.services.knowledge.protocol import ContextRecord, VectorIndex
from callbridge.services.llm.protocol import Role

logger: Any = get_logger(__name__)

# Prior records injected into each generation request
CONTEXT_TOP_K = 5


class ContextStore:
    """Stores and retrieves embedded utterances per call."""

    def __init__(
        self,
        embeddings: EmbeddingClient,
        index: VectorIndex,
        *,
        timeout: float = 5.0,
    ) -> None:
        self._embeddings = embeddings
        self._index = index
        self._timeout = timeout

    async def retrieve(
        self,
        call_id: str,
        query_text: str,
        top_k: int = CONTEXT_TOP_K,
    ) -> list[ContextRecord]:
        """Records for ``call_id`` ordered by decreasing similarity to ``query_text``.

        Raises:
            RetrievalError: If embedding the query or querying the index fails
        """
        start_time = time.perf_counter()

        try:
            async with asyncio.timeout(self._timeout):
                vector = await self._embeddings.embed(query_text)
                matches = await asyncio.to_thread(
                    self._index.query, vector, top_k, {"call_id": call_id}
                )
        except TimeoutError as e:
            raise RetrievalError(f"Context retrieval timed out after {self._timeout}s") from e
        except (EmptyInputError, EmbeddingError) as e:
            raise RetrievalError(f"Could not embed query: {e}") from e
        except Exception as e:
            raise RetrievalError(f"Context query failed: {e}") from e

        # The index filters by call_id already; re-check so a misbehaving
        # backend can never leak another call's turns.
        records = [
            ContextRecord.from_metadata(match.id, match.metadata)
            for match in matches
            if match.metadata.get("call_id") == call_id
        ][:top_k]

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        record_context_retrieval(elapsed_ms, len(records))
        logger.debug(
            f"Context retrieval: {len(records)} records in {elapsed_ms:.1f}ms "
            f"for query '{truncate_for_log(query_text)}'"
        )
        return records

    async def store(self, records: Sequence[ContextRecord]) -> bool:
        """Embed and write a batch of records, all or nothing.

        Returns:
            True if every record was written, False if none were.
        """
        if not records:
            return True

        try:
            async with asyncio.timeout(self._timeout):
                embedded = await self._embed_batch(records)
                await asyncio.to_thread(
                    self._index.upsert,
                    [r.record_id for r in embedded],
                    [list(r.embedding or ()) for r in embedded],
                    [r.to_metadata() for r in embedded],
                )
        except PartialWriteError as e:
            logger.warning(f"Context write skipped: {e}")
            record_context_write("partial")
            return False
        except TimeoutError:
            logger.warning(f"Context write timed out after {self._timeout}s")
            record_context_write("timeout")
            return False
        except Exception as e:
            logger.error(f"Context write failed: {e}")
            record_context_write("error")
            return False

        record_context_write("ok")
        logger.debug(f"Stored {len(records)} context records for call {records[0].call_id}")
        return True

    async def store_turn(self, call_id: str, user_text: str, assistant_text: str) -> bool:
        """Store one user/assistant exchange as an atomic pair."""
        return await self.store([
            ContextRecord(call_id=call_id, role=Role.USER, text=user_text),
            ContextRecord(call_id=call_id, role=Role.ASSISTANT, text=assistant_text),
        ])

    async def _embed_batch(self, records: Sequence[ContextRecord]) -> list[ContextRecord]:
        """Attach embeddings to every record or raise PartialWriteError."""
        embedded: list[ContextRecord] = []
        failures: list[str] = []

        for record in records:
            try:
                vector = await self._embeddings.embed(record.text)
            except (EmptyInputError, EmbeddingError) as e:
                failures.append(f"{record.role.value}: {e}")
                continue
            embedded.append(replace(record, embedding=tuple(vector)))

        if failures:
            raise PartialWriteError(
                f"{len(failures)} of {len(records)} records failed to embed "
                f"({'; '.join(failures)})",
                failed=len(failures),
                total=len(records),
            )
        return embedded

    def health_check(self) -> bool:
        """Check if the backing index is operational."""
        return self._index.health_check()
