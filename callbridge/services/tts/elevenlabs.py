"""ElevenLabs TTS service implementation with streamed chunk output."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, Iterator
from typing import Any

from callbridge.config import Settings, get_settings
from callbridge.errors import EmptyInputError
from callbridge.logging_config import get_logger
from callbridge.services.tts.exceptions import TTSConnectionError, TTSSynthesisError
from callbridge.services.tts.protocol import AudioChunk, SynthesisMetadata

logger: Any = get_logger(__name__)

ELEVENLABS_DEFAULT_VOICE_ID = "9BWtsMINqrJLrRacOk9x"  # Aria
ELEVENLABS_DEFAULT_MODEL_ID = "eleven_multilingual_v2"


def sample_rate_for_format(output_format: str) -> int:
    """Sample rate encoded in an ElevenLabs output format name.

    pcm_16000 -> 16000, ulaw_8000 -> 8000, mp3_44100_128 -> 44100.
    """
    parts = output_format.split("_")
    if len(parts) >= 2 and parts[1].isdigit():
        return int(parts[1])
    return 0


class ElevenLabsTTSService:
    """ElevenLabs TTS service forwarding the streamed response body as chunks."""

    def __init__(
        self,
        settings: Settings | None = None,
        voice_id: str | None = None,
        model_id: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._voice_id = voice_id or self._settings.elevenlabs_voice_id or ELEVENLABS_DEFAULT_VOICE_ID
        self._model_id = model_id or self._settings.elevenlabs_model_id or ELEVENLABS_DEFAULT_MODEL_ID
        self._output_format = self._settings.elevenlabs_output_format
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self._settings.elevenlabs_api_key:
                raise TTSConnectionError("ElevenLabs API key is not configured")
            from elevenlabs import ElevenLabs

            self._client = ElevenLabs(
                api_key=self._settings.elevenlabs_api_key.get_secret_value()
            )
        return self._client

    def _open_stream(self, text: str) -> Iterator[bytes]:
        from elevenlabs import VoiceSettings

        client = self._get_client()
        return iter(
            client.text_to_speech.convert(
                text=text,
                voice_id=self._voice_id,
                model_id=self._model_id,
                output_format=self._output_format,
                voice_settings=VoiceSettings(
                    stability=self._settings.tts_stability,
                    similarity_boost=self._settings.tts_similarity_boost,
                ),
            )
        )

    async def synthesize(
        self,
        text: str,
        metadata: SynthesisMetadata | None = None,
    ) -> AsyncGenerator[AudioChunk, None]:
        """Synthesize text and yield audio chunks in the order received.

        Args:
            text: Complete response text
            metadata: Caller-owned object filled in while streaming
        """
        if not text or not text.strip():
            raise EmptyInputError("Cannot synthesize empty text")

        if metadata is None:
            metadata = SynthesisMetadata()
        metadata.model = self._model_id
        metadata.voice = self._voice_id
        metadata.output_format = self._output_format
        metadata.input_chars = len(text)
        sample_rate = sample_rate_for_format(self._output_format)
        start_time = time.perf_counter()

        try:
            # The SDK iterator blocks on the HTTP body; pull each chunk off-loop
            iterator = await asyncio.to_thread(self._open_stream, text)
            while True:
                data = await asyncio.to_thread(next, iterator, None)
                if data is None:
                    break
                if not data:
                    continue

                if metadata.first_chunk_ms is None:
                    metadata.first_chunk_ms = (time.perf_counter() - start_time) * 1000
                    logger.debug(f"First audio chunk latency: {metadata.first_chunk_ms:.1f}ms")

                yield AudioChunk(
                    audio_bytes=data,
                    sample_rate=sample_rate,
                    sequence=metadata.chunk_count,
                )
                metadata.chunk_count += 1
                metadata.output_bytes += len(data)

        except TTSConnectionError:
            raise
        except Exception as e:
            logger.error(f"ElevenLabs synthesis error: {e}")
            raise TTSConnectionError(f"ElevenLabs connection failed: {e}") from e

        if metadata.chunk_count == 0:
            raise TTSSynthesisError("No audio received from ElevenLabs")

        metadata.total_synthesis_ms = (time.perf_counter() - start_time) * 1000

    async def close(self) -> None:
        self._client = None

    async def health_check(self) -> bool:
        return bool(self._settings.elevenlabs_api_key)
