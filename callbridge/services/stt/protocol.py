"""STT (Speech-to-Text) service protocol and data types."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class Utterance:
    """A transcribed piece of caller speech.

    The recognizer emits interim results that may still change,
    followed by a final result for each utterance.
    """

    text: str
    is_final: bool
    confidence: float = 0.0
    speech_final: bool = False  # True when the backend detected an endpoint
    forced: bool = False  # True when the session finalized a stale interim
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class RecognizerConfig:
    """Options for one live transcription stream."""

    punctuate: bool = True
    interim_results: bool = True
    sample_rate: int = 16000
    encoding: str = "linear16"
    channels: int = 1
    language: str = "en-US"
    model: str | None = None  # None uses the service default


@dataclass
class TranscriptMetadata:
    """Metadata collected during a transcription stream."""

    model: str = ""
    total_audio_seconds: float = 0.0
    total_utterances: int = 0
    first_word_ms: float | None = None  # Time to first word


class RecognizerStream(Protocol):
    """One live, duplex transcription stream.

    Not restartable: once closed, open a new stream.
    """

    metadata: TranscriptMetadata

    @property
    def closed(self) -> bool:
        """Whether the stream has been closed."""
        ...

    async def push_audio(self, audio: bytes) -> None:
        """Send a raw audio chunk, in arrival order."""
        ...

    async def receive(self, timeout: float | None = None) -> Utterance | None:
        """Wait for the next utterance.

        Returns None once the stream has ended.

        Raises:
            TimeoutError: When nothing arrives within ``timeout`` seconds
            STTConnectionError: When the backend failed
        """
        ...

    def utterances(self) -> AsyncGenerator[Utterance, None]:
        """Iterate utterances until the stream ends."""
        ...

    async def close(self) -> None:
        """Finalize the stream. Idempotent and never raises."""
        ...


class SpeechRecognizer(Protocol):
    """Protocol for streaming STT implementations."""

    async def open(self, config: RecognizerConfig) -> RecognizerStream:
        """Open a new live transcription stream."""
        ...

    async def close(self) -> None:
        """Close any open connections and clean up resources."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
