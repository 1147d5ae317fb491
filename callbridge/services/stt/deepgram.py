"""Deepgram STT service implementation with WebSocket streaming."""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING, Any

from callbridge.config import Settings, get_settings
from callbridge.logging_config import get_logger, truncate_for_log
from callbridge.services.stt.exceptions import STTConnectionError
from callbridge.services.stt.protocol import (
    RecognizerConfig,
    TranscriptMetadata,
    Utterance,
)

if TYPE_CHECKING:
    from deepgram import DeepgramClient
    from deepgram.clients.live import LiveClient

logger: Any = get_logger(__name__)

# Deepgram model optimized for real-time conversation
DEEPGRAM_MODEL = "nova-2"

# Max time to establish the live connection
CONNECT_TIMEOUT = 10.0


class DeepgramStream:
    """A single Deepgram live connection exposed as a pull-based stream.

    Deepgram delivers events on its own thread through callbacks; they are
    handed to the event loop through a queue so the caller can await them
    in order.
    """

    def __init__(
        self,
        live: LiveClient,
        loop: asyncio.AbstractEventLoop,
        *,
        model: str = DEEPGRAM_MODEL,
        sample_rate: int = 16000,
        channels: int = 1,
    ) -> None:
        self._live = live
        self._loop = loop
        self._queue: asyncio.Queue[Utterance | BaseException | None] = asyncio.Queue()
        self._sample_rate = sample_rate
        self._channels = channels
        self._closed = False
        self._ended = False
        self._abandon_task: asyncio.Task[None] | None = None
        self._start_time = time.perf_counter()
        self.metadata = TranscriptMetadata(model=model)

    @property
    def closed(self) -> bool:
        return self._closed

    def _enqueue(self, item: Utterance | BaseException | None) -> None:
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    def on_transcript(self, _live: Any, result: Any, **kwargs: Any) -> None:
        """Handle incoming transcription results."""
        try:
            alternatives = result.channel.alternatives
            if not alternatives:
                return

            alternative = alternatives[0]
            transcript = alternative.transcript or ""
            if not transcript.strip():
                return

            if self.metadata.first_word_ms is None:
                self.metadata.first_word_ms = (time.perf_counter() - self._start_time) * 1000
                logger.debug(f"First word latency: {self.metadata.first_word_ms:.1f}ms")

            is_final = bool(result.is_final)
            utterance = Utterance(
                text=transcript,
                is_final=is_final,
                confidence=getattr(alternative, "confidence", 0.0) or 0.0,
                speech_final=bool(getattr(result, "speech_final", False)),
            )
            if is_final:
                self.metadata.total_utterances += 1

            self._enqueue(utterance)

        except Exception as e:
            logger.error(f"Error processing transcription result: {e}")

    def on_error(self, _live: Any, error: Any, **kwargs: Any) -> None:
        """Handle WebSocket errors."""
        logger.error(f"Deepgram WebSocket error: {error}")
        self._enqueue(STTConnectionError(f"Deepgram stream error: {error}"))

    def on_close(self, _live: Any, close: Any, **kwargs: Any) -> None:
        """Handle WebSocket close."""
        logger.debug("Deepgram WebSocket closed")
        self._enqueue(None)

    async def push_audio(self, audio: bytes) -> None:
        """Send raw audio to Deepgram."""
        if self._closed:
            raise STTConnectionError("Deepgram stream is closed")

        try:
            await asyncio.to_thread(self._live.send, audio)
        except Exception as e:
            raise STTConnectionError(f"Failed to send audio to Deepgram: {e}") from e

        # 2 bytes per sample for linear16
        self.metadata.total_audio_seconds += len(audio) / (
            self._sample_rate * self._channels * 2
        )

    async def receive(self, timeout: float | None = None) -> Utterance | None:
        """Wait for the next utterance, None once the stream has ended."""
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
        """Yield utterances until the stream ends."""
        while True:
            utterance = await self.receive()
            if utterance is None:
                return
            logger.debug(
                f"{'Final' if utterance.is_final else 'Interim'} transcript: "
                f"{truncate_for_log(utterance.text)}"
            )
            yield utterance

    def abandon(self, _connect: asyncio.Future[Any] | None = None) -> None:
        """Close a stream whose opener gave up before the connect finished."""
        if self._closed or self._loop.is_closed():
            return
        self._abandon_task = self._loop.create_task(self.close())

    async def close(self) -> None:
        """Finish the Deepgram connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        try:
            await asyncio.to_thread(self._live.finish)
        except Exception as e:
            logger.warning(f"Error finishing Deepgram stream: {e}")
        finally:
            self._queue.put_nowait(None)


class DeepgramService:
    """Deepgram STT service with WebSocket streaming for real-time transcription."""

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.deepgram_model
        self._client: DeepgramClient | None = None

    @property
    def client(self) -> DeepgramClient:
        """Lazy initialization of Deepgram client."""
        if self._client is None:
            from deepgram import DeepgramClient

            self._client = DeepgramClient(
                api_key=self._settings.deepgram_api_key.get_secret_value(),
            )
        return self._client

    def default_config(self) -> RecognizerConfig:
        """Stream options derived from settings."""
        return RecognizerConfig(
            punctuate=self._settings.stt_punctuate,
            interim_results=self._settings.stt_interim_results,
            sample_rate=self._settings.gateway_sample_rate,
            language=self._settings.stt_language,
        )

    async def open(self, config: RecognizerConfig | None = None) -> DeepgramStream:
        """Open a live transcription stream.

        Raises:
            STTConnectionError: When the connection cannot be established
        """
        from deepgram import LiveOptions, LiveTranscriptionEvents

        config = config or self.default_config()
        model = config.model or self._model
        live: LiveClient = self.client.listen.live.v("1")
        stream = DeepgramStream(
            live,
            asyncio.get_running_loop(),
            model=model,
            sample_rate=config.sample_rate,
            channels=config.channels,
        )

        live.on(LiveTranscriptionEvents.Transcript, stream.on_transcript)
        live.on(LiveTranscriptionEvents.Error, stream.on_error)
        live.on(LiveTranscriptionEvents.Close, stream.on_close)

        options = LiveOptions(
            model=model,
            language=config.language,
            punctuate=config.punctuate,
            interim_results=config.interim_results,
            encoding=config.encoding,
            sample_rate=config.sample_rate,
            channels=config.channels,
        )

        # live.start runs on a worker thread that cannot be interrupted
        connect = asyncio.ensure_future(asyncio.to_thread(live.start, options))
        try:
            started = await asyncio.wait_for(asyncio.shield(connect), timeout=CONNECT_TIMEOUT)
        except TimeoutError as e:
            connect.add_done_callback(stream.abandon)
            raise STTConnectionError("Timed out connecting to Deepgram") from e
        except asyncio.CancelledError:
            connect.add_done_callback(stream.abandon)
            raise
        except Exception as e:
            raise STTConnectionError(f"Failed to connect to Deepgram: {e}") from e

        if not started:
            raise STTConnectionError("Failed to connect to Deepgram")

        logger.debug("Deepgram WebSocket connected")
        return stream

    async def close(self) -> None:
        """Close the Deepgram client."""
        self._client = None

    async def health_check(self) -> bool:
        """Check if Deepgram API is accessible."""
        try:
            _ = self.client
            return True
        except Exception as e:
            logger.error(f"Deepgram health check failed: {e}")
            return False
