"""TTS (Text-to-Speech) service protocol and data types."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class AudioChunk:
    """A chunk of synthesized audio.

    Chunks are opaque to the session and forwarded to the gateway
    in the order they were produced.
    """

    audio_bytes: bytes
    sample_rate: int = 16000
    sequence: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class SynthesisMetadata:
    """Metadata collected during/after synthesis."""

    model: str = ""
    voice: str = ""
    output_format: str = ""
    input_chars: int = 0
    output_bytes: int = 0
    chunk_count: int = 0
    first_chunk_ms: float | None = None  # Latency to first audio
    total_synthesis_ms: float | None = None


class SpeechSynthesizer(Protocol):
    """Protocol for streaming TTS implementations."""

    def synthesize(
        self,
        text: str,
        metadata: SynthesisMetadata | None = None,
    ) -> AsyncGenerator[AudioChunk, None]:
        """Synthesize complete text into an ordered, finite chunk stream.

        Latency and size figures are written to ``metadata`` when given.

        Raises (from the generator):
            EmptyInputError: When text is empty
            TTSConnectionError: When the backend is unreachable
            TTSSynthesisError: When the backend returns no usable audio
        """
        ...

    async def close(self) -> None:
        """Close any open connections and clean up resources."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
