"""Tests for per-call context storage."""

from __future__ import annotations

import uuid

import pytest

from callbridge.errors import RetrievalError
from callbridge.services.knowledge.chromadb_store import ChromaVectorIndex
from callbridge.services.knowledge.context_store import ContextStore
from callbridge.services.knowledge.protocol import ContextRecord
from callbridge.services.llm.protocol import Role


@pytest.fixture
def index(vector_index):
    return vector_index


@pytest.fixture
def store(index, embedder_factory) -> ContextStore:
    return ContextStore(embedder_factory(), index, timeout=1.0)


class TestContextRecord:
    """Tests for ContextRecord."""

    def test_record_id_generated(self) -> None:
        """Test ids combine role and call id and are unique."""
        first = ContextRecord(call_id="c1", role=Role.USER, text="hi")
        second = ContextRecord(call_id="c1", role=Role.USER, text="hi")

        assert first.record_id.startswith("user-c1-")
        assert first.record_id != second.record_id

    def test_metadata_round_trip(self) -> None:
        """Test metadata rebuilds an equivalent record."""
        record = ContextRecord(call_id="c1", role=Role.ASSISTANT, text="hello")

        rebuilt = ContextRecord.from_metadata(record.record_id, record.to_metadata())

        assert rebuilt == record


class TestContextStore:
    """Tests for ContextStore with in-memory fakes."""

    @pytest.mark.asyncio
    async def test_store_turn_then_retrieve(self, store: ContextStore) -> None:
        """Test a stored turn is retrievable for the same call."""
        assert await store.store_turn("c1", "my router is broken", "try restarting the router")

        records = await store.retrieve("c1", "router broken", top_k=5)

        assert {r.text for r in records} == {
            "my router is broken",
            "try restarting the router",
        }
        assert {r.role for r in records} == {Role.USER, Role.ASSISTANT}
        assert all(r.call_id == "c1" for r in records)

    @pytest.mark.asyncio
    async def test_call_isolation(self, store: ContextStore) -> None:
        """Test records never leak between calls."""
        await store.store_turn("c1", "billing question", "your bill is ready")
        await store.store_turn("c2", "billing question", "secret answer")

        records = await store.retrieve("c1", "billing question", top_k=10)

        assert "secret answer" not in {r.text for r in records}

    @pytest.mark.asyncio
    async def test_isolation_when_index_ignores_filter(self, index, embedder_factory) -> None:
        """Test results are re-filtered by call id."""
        index.ignore_where = True
        store = ContextStore(embedder_factory(), index)
        await store.store_turn("c1", "hello", "hi")
        await store.store_turn("c2", "hello", "other call")

        records = await store.retrieve("c1", "hello", top_k=10)

        assert {r.call_id for r in records} == {"c1"}

    @pytest.mark.asyncio
    async def test_ordering_by_similarity(self, store: ContextStore) -> None:
        """Test most similar records come first."""
        await store.store_turn("c1", "zzz zzz", "aaa bbb")

        records = await store.retrieve("c1", "zzz", top_k=2)

        assert records[0].text == "zzz zzz"

    @pytest.mark.asyncio
    async def test_top_k(self, store: ContextStore) -> None:
        """Test at most top_k records are returned."""
        for i in range(4):
            await store.store_turn("c1", f"question {i}", f"answer {i}")

        records = await store.retrieve("c1", "question", top_k=3)

        assert len(records) == 3

    @pytest.mark.asyncio
    async def test_unknown_call_empty(self, store: ContextStore) -> None:
        """Test an unseen call has no context."""
        assert await store.retrieve("nobody", "hello", top_k=5) == []

    @pytest.mark.asyncio
    async def test_partial_embedding_failure_writes_nothing(self, index, embedder_factory) -> None:
        """Test one failed embedding drops the whole pair."""
        store = ContextStore(embedder_factory(fail_on="poison"), index)

        stored = await store.store_turn("c1", "fine text", "poison reply")

        assert stored is False
        assert index.items == {}
        assert index.upsert_calls == 0

    @pytest.mark.asyncio
    async def test_empty_text_writes_nothing(self, store: ContextStore, index) -> None:
        """Test an empty half of a turn fails the batch."""
        assert await store.store_turn("c1", "hello", "   ") is False
        assert index.items == {}

    @pytest.mark.asyncio
    async def test_single_batch_upsert(self, store: ContextStore, index) -> None:
        """Test a turn is written in one index call."""
        await store.store_turn("c1", "hello", "hi there")

        assert index.upsert_calls == 1
        assert len(index.items) == 2

    @pytest.mark.asyncio
    async def test_empty_batch(self, store: ContextStore, index) -> None:
        """Test storing nothing succeeds without touching the index."""
        assert await store.store([]) is True
        assert index.upsert_calls == 0

    @pytest.mark.asyncio
    async def test_query_failure(self, store: ContextStore, index) -> None:
        """Test index errors raise RetrievalError."""
        index.query_error = RuntimeError("index offline")

        with pytest.raises(RetrievalError):
            await store.retrieve("c1", "hello", top_k=5)

    @pytest.mark.asyncio
    async def test_empty_query(self, store: ContextStore) -> None:
        """Test an empty query raises RetrievalError."""
        with pytest.raises(RetrievalError):
            await store.retrieve("c1", "  ", top_k=5)


class TestChromaVectorIndex:
    """Tests for ChromaVectorIndex on an in-memory client."""

    @pytest.fixture
    def chroma_index(self) -> ChromaVectorIndex:
        import chromadb
        from chromadb.config import Settings

        client = chromadb.EphemeralClient(settings=Settings(anonymized_telemetry=False))
        return ChromaVectorIndex(collection_name=f"test-{uuid.uuid4().hex}", client=client)

    def test_upsert_and_query(self, chroma_index: ChromaVectorIndex) -> None:
        """Test cosine query filtered by call id."""
        chroma_index.upsert(
            ["a", "b", "c"],
            [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 0.1, 0.0]],
            [
                {"call_id": "c1", "role": "user", "text": "first"},
                {"call_id": "c1", "role": "assistant", "text": "second"},
                {"call_id": "c2", "role": "user", "text": "other"},
            ],
        )

        matches = chroma_index.query([1.0, 0.0, 0.0], 2, {"call_id": "c1"})

        assert [m.id for m in matches] == ["a", "b"]
        assert matches[0].score == pytest.approx(1.0, abs=1e-3)
        assert matches[0].metadata["text"] == "first"
        assert chroma_index.count() == 3

    @pytest.mark.asyncio
    async def test_context_store_on_chroma(
        self, chroma_index: ChromaVectorIndex, embedder_factory
    ) -> None:
        """Test the store works end to end against ChromaDB."""
        store = ContextStore(embedder_factory(), chroma_index)

        assert await store.store_turn("c1", "where is my parcel", "it ships tomorrow")
        assert await store.store_turn("c2", "where is my parcel", "other call")

        records = await store.retrieve("c1", "parcel", top_k=5)

        assert {r.text for r in records} == {"where is my parcel", "it ships tomorrow"}

    def test_health_check(self, chroma_index: ChromaVectorIndex) -> None:
        assert chroma_index.health_check() is True
