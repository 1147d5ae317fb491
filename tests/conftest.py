"""Shared pytest fixtures for callbridge tests."""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator, Sequence
from typing import Any

# callbridge.main builds an app at import time from environment settings
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")
os.environ.setdefault("DEEPGRAM_API_KEY", "test-deepgram-key")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from callbridge.config import Settings  # noqa: E402
from callbridge.core.services import BridgeServices, SessionConfig  # noqa: E402
from callbridge.core.session import CallSession  # noqa: E402
from callbridge.errors import RetrievalError  # noqa: E402
from callbridge.services.knowledge.protocol import ContextRecord, VectorMatch  # noqa: E402
from callbridge.services.llm.protocol import (  # noqa: E402
    CompletionEvent,
    GenerationEvent,
    GenerationRequest,
    Role,
    StreamMetadata,
    TokenEvent,
)
from callbridge.services.stt.protocol import (  # noqa: E402
    RecognizerConfig,
    TranscriptMetadata,
    Utterance,
)
from callbridge.services.tts.protocol import AudioChunk, SynthesisMetadata  # noqa: E402


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "groq_api_key": "test-groq-key",
        "deepgram_api_key": "test-deepgram-key",
        "elevenlabs_api_key": "test-elevenlabs-key",
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    """Default Settings fixture."""
    return settings_factory()


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


# =============================================================================
# Upstream Fakes
# =============================================================================


class FakeStream:
    """In-memory recognizer stream driven by the test."""

    def __init__(self, script: Sequence[str] = ()) -> None:
        self.metadata = TranscriptMetadata(model="fake")
        self.audio: list[bytes] = []
        self.push_error: Exception | None = None
        self.script = list(script)  # Final transcripts emitted on first audio
        self._queue: asyncio.Queue[Utterance | BaseException | None] = asyncio.Queue()
        self._closed = False
        self._ended = False

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, text: str, *, is_final: bool = True) -> None:
        self._queue.put_nowait(Utterance(text=text, is_final=is_final))

    def fail(self, error: BaseException) -> None:
        self._queue.put_nowait(error)

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def push_audio(self, audio: bytes) -> None:
        if self.push_error is not None:
            raise self.push_error
        self.audio.append(audio)
        while self.script:
            self.emit(self.script.pop(0))

    async def receive(self, timeout: float | None = None) -> Utterance | None:
        if self._ended:
            return None
        item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is None:
            self._ended = True
            return None
        if isinstance(item, BaseException):
            self._ended = True
            raise item
        return item

    async def utterances(self) -> AsyncGenerator[Utterance, None]:
        while (utterance := await self.receive()) is not None:
            yield utterance

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)


class FakeRecognizer:
    """Hands out FakeStreams and records every open."""

    def __init__(self) -> None:
        self.streams: list[FakeStream] = []
        self.configs: list[RecognizerConfig] = []
        self.open_error: Exception | None = None
        self.script: list[str] = []

    @property
    def stream(self) -> FakeStream:
        """Most recently opened stream."""
        return self.streams[-1]

    async def open(self, config: RecognizerConfig) -> FakeStream:
        self.configs.append(config)
        if self.open_error is not None:
            raise self.open_error
        stream = FakeStream(self.script)
        self.script = []
        self.streams.append(stream)
        return stream

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True


class FakeGenerator:
    """Scripted token stream."""

    def __init__(self, tokens: Sequence[str] = ("Hello", " there")) -> None:
        self.tokens = list(tokens)
        self.error: Exception | None = None  # Raised after the tokens
        self.complete = True
        self.delay = 0.0  # Seconds before each token
        self.requests: list[GenerationRequest] = []
        self.closed_streams = 0

    async def generate(
        self, request: GenerationRequest
    ) -> tuple[AsyncGenerator[GenerationEvent, None], StreamMetadata]:
        self.requests.append(request)
        return self._events(), StreamMetadata(model="fake")

    async def _events(self) -> AsyncGenerator[GenerationEvent, None]:
        try:
            for token in self.tokens:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield TokenEvent(text=token)
            if self.error is not None:
                raise self.error
            if self.complete:
                yield CompletionEvent(text="".join(self.tokens), token_count=len(self.tokens))
        finally:
            self.closed_streams += 1

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True


class FakeSynthesizer:
    """Scripted audio stream."""

    def __init__(self, chunks: Sequence[bytes] = (b"\x01\x02", b"\x03\x04")) -> None:
        self.chunks = list(chunks)
        self.error: Exception | None = None  # Raised after the chunks
        self.delay = 0.0
        self.texts: list[str] = []

    async def synthesize(
        self, text: str, metadata: SynthesisMetadata | None = None
    ) -> AsyncGenerator[AudioChunk, None]:
        self.texts.append(text)
        for i, chunk in enumerate(self.chunks):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield AudioChunk(audio_bytes=chunk, sequence=i)
        if self.error is not None:
            raise self.error

    async def close(self) -> None:
        pass

    async def health_check(self) -> bool:
        return True


class FakeContextService:
    """In-memory ContextService keyed by call id."""

    def __init__(self) -> None:
        self.records: list[ContextRecord] = []
        self.retrieve_calls: list[tuple[str, str, int]] = []
        self.retrieve_error: Exception | None = None
        self.store_result = True
        self.turns: list[tuple[str, str, str]] = []

    async def retrieve(self, call_id: str, query_text: str, top_k: int) -> list[ContextRecord]:
        self.retrieve_calls.append((call_id, query_text, top_k))
        if self.retrieve_error is not None:
            raise self.retrieve_error
        return [r for r in self.records if r.call_id == call_id][:top_k]

    async def store(self, records: Sequence[ContextRecord]) -> bool:
        if self.store_result:
            self.records.extend(records)
        return self.store_result

    async def store_turn(self, call_id: str, user_text: str, assistant_text: str) -> bool:
        self.turns.append((call_id, user_text, assistant_text))
        return await self.store([
            ContextRecord(call_id=call_id, role=Role.USER, text=user_text),
            ContextRecord(call_id=call_id, role=Role.ASSISTANT, text=assistant_text),
        ])

    def health_check(self) -> bool:
        return True


class FakeEmbedder:
    """Deterministic bag-of-letters embeddings."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        from callbridge.errors import EmbeddingError, EmptyInputError

        self.calls.append(text)
        if not text.strip():
            raise EmptyInputError("Cannot embed empty text")
        if self.fail_on is not None and self.fail_on in text:
            raise EmbeddingError(f"cannot embed {text!r}")
        vector = [0.0] * 26
        for ch in text.lower():
            if "a" <= ch <= "z":
                vector[ord(ch) - ord("a")] += 1.0
        norm = sum(v * v for v in vector) ** 0.5 or 1.0
        return [v / norm for v in vector]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


class FakeIndex:
    """In-memory VectorIndex using dot-product similarity."""

    def __init__(self) -> None:
        self.items: dict[str, tuple[list[float], dict[str, Any]]] = {}
        self.upsert_calls = 0
        self.query_error: Exception | None = None
        self.ignore_where = False

    def upsert(
        self,
        ids: list[str],
        vectors: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        self.upsert_calls += 1
        for item_id, vector, metadata in zip(ids, vectors, metadatas, strict=True):
            self.items[item_id] = (vector, metadata)

    def query(self, vector: list[float], top_k: int, where: dict[str, Any]) -> list[VectorMatch]:
        if self.query_error is not None:
            raise self.query_error
        matches = []
        for item_id, (stored, metadata) in self.items.items():
            if not self.ignore_where and any(metadata.get(k) != v for k, v in where.items()):
                continue
            score = sum(a * b for a, b in zip(vector, stored, strict=True))
            matches.append(VectorMatch(id=item_id, score=score, metadata=metadata))
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def health_check(self) -> bool:
        return True


class RecordingSender:
    """GatewaySender that records outbound frames."""

    def __init__(self) -> None:
        self.frames: list[str | bytes] = []
        self.fail = False

    @property
    def texts(self) -> list[str]:
        return [f for f in self.frames if isinstance(f, str)]

    @property
    def audio(self) -> list[bytes]:
        return [f for f in self.frames if isinstance(f, bytes)]

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    async def send_bytes(self, data: bytes) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)


# =============================================================================
# Session Fixtures
# =============================================================================


@pytest.fixture
def session_config() -> SessionConfig:
    """Short timeouts so failure paths run quickly."""
    return SessionConfig(
        stt_timeout=5.0,
        stt_reopen_backoff=0.2,
        interim_finalize=0.2,
        llm_timeout=1.0,
        tts_timeout=1.0,
    )


@pytest.fixture
def bridge_services(session_config: SessionConfig) -> BridgeServices:
    """BridgeServices wired to in-memory fakes."""
    return BridgeServices(
        recognizer=FakeRecognizer(),
        generator=FakeGenerator(),
        synthesizer=FakeSynthesizer(),
        context=FakeContextService(),
        config=session_config,
    )


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def sender_factory() -> Callable[[], RecordingSender]:
    """Return a factory for extra gateway senders."""
    return RecordingSender


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds, failing the test after a timeout."""
    return _wait_until


@pytest.fixture
def embedder_factory() -> Callable[..., FakeEmbedder]:
    """Return a factory for deterministic embedders."""
    return FakeEmbedder


@pytest.fixture
def vector_index() -> FakeIndex:
    """Empty in-memory vector index."""
    return FakeIndex()


@pytest_asyncio.fixture
async def session(
    bridge_services: BridgeServices,
    sender: RecordingSender,
) -> AsyncGenerator[CallSession, None]:
    """An opened CallSession, closed after the test."""
    call_session = CallSession(bridge_services, sender, call_id="call-1")
    await call_session.on_open()
    yield call_session
    await call_session.on_close()


@pytest.fixture
def retrieval_failure() -> RetrievalError:
    return RetrievalError("index unavailable")


@pytest.fixture
def test_client(settings_factory, bridge_services) -> Generator:
    """FastAPI TestClient with fake upstream services."""
    from fastapi.testclient import TestClient

    from callbridge.main import create_app

    app = create_app(settings=settings_factory(max_concurrent_calls=2), services=bridge_services)

    with TestClient(app) as client:
        yield client
