"""Per-connection call session.

Orchestrates one gateway connection:
- Audio in → recognizer stream → final utterances
- Final utterance → context retrieval → LLM tokens → TTS audio → context write
- Pipelines run one at a time, in the order their utterances became final
- Upstream failures become a single text notice; the call stays open
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import string
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum, auto
from typing import Any, Protocol

from callbridge.core.services import BridgeServices
from callbridge.errors import ConnectivityError, EmptyInputError, ProtocolError, RetrievalError
from callbridge.logging_config import get_logger, truncate_for_log
from callbridge.observability.metrics import (
    ACTIVE_CALLS,
    record_call_metrics,
    record_pipeline_metrics,
    record_upstream_error,
    record_utterance,
)
from callbridge.prompts.personas import DEFAULT_AGENT_ROLE, resolve_persona
from callbridge.services.knowledge.protocol import ContextRecord
from callbridge.services.llm.protocol import CompletionEvent, GenerationRequest, TokenEvent
from callbridge.services.stt.protocol import RecognizerStream, Utterance

logger: Any = get_logger(__name__)

# Sentinel text frames
END_OF_TEXT = "[DONE]"
END_OF_AUDIO = "[TTS_DONE]"

# Error notices sent to the gateway
GENERATION_ERROR_NOTICE = "Error occurred while generating a response."
SYNTHESIS_ERROR_NOTICE = "Error occurred while synthesizing audio."
TRANSCRIPTION_ERROR_NOTICE = "Error occurred while transcribing audio."


class ConnectionState(Enum):
    """Lifecycle of a gateway connection."""

    CONNECTING = auto()  # Socket accepted, session not started
    ACTIVE = auto()  # Accepting frames
    CLOSING = auto()  # Socket gone, draining in-flight pipeline
    CLOSED = auto()


class GatewaySender(Protocol):
    """Protocol for writing frames back to the gateway."""

    async def send_text(self, data: str) -> None:
        """Send a text frame."""
        ...

    async def send_bytes(self, data: bytes) -> None:
        """Send a binary frame."""
        ...


@dataclass
class SessionMetrics:
    """Metrics collected during a call."""

    audio_bytes_received: int = 0
    audio_bytes_sent: int = 0
    dropped_audio_frames: int = 0
    tokens_sent: int = 0
    total_turns: int = 0
    error_notices: int = 0

    # Latency tracking
    stt_first_word_ms: list[float] = field(default_factory=list)
    llm_first_token_ms: list[float] = field(default_factory=list)
    tts_first_chunk_ms: list[float] = field(default_factory=list)

    session_start: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        duration = (datetime.now(UTC) - self.session_start).total_seconds()
        return {
            "audio_bytes_received": self.audio_bytes_received,
            "audio_bytes_sent": self.audio_bytes_sent,
            "dropped_audio_frames": self.dropped_audio_frames,
            "tokens_sent": self.tokens_sent,
            "total_turns": self.total_turns,
            "error_notices": self.error_notices,
            "duration_seconds": duration,
            "avg_stt_first_word_ms": self._avg(self.stt_first_word_ms),
            "avg_llm_first_token_ms": self._avg(self.llm_first_token_ms),
            "avg_tts_first_chunk_ms": self._avg(self.tts_first_chunk_ms),
        }

    def _avg(self, values: list[float]) -> float:
        return sum(values) / len(values) if values else 0.0


def require_text(text: str) -> str:
    """Strip text, raising EmptyInputError when nothing is left."""
    stripped = text.strip()
    if not stripped:
        raise EmptyInputError("Text is empty")
    return stripped


def _words(text: str) -> list[str]:
    stripped = (word.strip(string.punctuation) for word in text.lower().split())
    return [word for word in stripped if word]


def extends_transcript(text: str, earlier: str) -> bool:
    """Whether text repeats or continues earlier, ignoring case and punctuation."""
    prefix = _words(earlier)
    return bool(prefix) and _words(text)[: len(prefix)] == prefix


class CallSession:
    """State and orchestration for one gateway connection.

    Lifecycle:
    1. on_open() starts the pipeline worker and opens a recognizer stream
    2. on_inbound_message() routes text frames to metadata and binary
       frames to the recognizer
    3. Each final utterance queues a pipeline:
       retrieve context → stream tokens + [DONE] → stream audio +
       [TTS_DONE] → store the turn
    4. on_close() releases the recognizer, lets an in-flight pipeline
       finish (its output is discarded) and drops queued ones
    """

    def __init__(
        self,
        services: BridgeServices,
        sender: GatewaySender,
        *,
        call_id: str | None = None,
    ) -> None:
        self.connection_id = uuid.uuid4().hex
        self.call_id = call_id or uuid.uuid4().hex
        self.agent_role = DEFAULT_AGENT_ROLE

        self._services = services
        self._config = services.config
        self._sender = sender
        self._state = ConnectionState.CONNECTING
        self._metrics = SessionMetrics()

        self._stream: RecognizerStream | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._reopen_task: asyncio.Task[bool] | None = None
        self._last_open_attempt: float | None = None

        self._pipeline_queue: asyncio.Queue[Utterance | None] = asyncio.Queue()
        self._worker_task: asyncio.Task[None] | None = None
        self._sender_failed = False

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def metrics(self) -> SessionMetrics:
        """Session metrics."""
        return self._metrics

    @property
    def recognizer_open(self) -> bool:
        """Whether a recognizer stream is currently attached."""
        return self._stream is not None and not self._stream.closed

    # -------------------------------------------------------------------------
    # Connection events
    # -------------------------------------------------------------------------

    async def on_open(self) -> None:
        """Start the session: pipeline worker plus a recognizer stream."""
        if self._state is not ConnectionState.CONNECTING:
            return

        self._state = ConnectionState.ACTIVE
        ACTIVE_CALLS.inc()
        logger.info(f"Call session started: {self.call_id}")

        self._worker_task = asyncio.create_task(
            self._pipeline_worker(), name=f"pipeline-{self.connection_id}"
        )
        await self._open_recognizer()

    async def on_inbound_message(self, frame: str | bytes) -> None:
        """Route one gateway frame.

        Text frames carry JSON metadata; binary frames carry audio.
        """
        if self._state is not ConnectionState.ACTIVE:
            logger.debug(f"Ignoring frame for call {self.call_id} in state {self._state.name}")
            return

        if isinstance(frame, str):
            self._apply_metadata(frame)
        else:
            await self._forward_audio(frame)

    async def on_close(self) -> dict[str, Any]:
        """Tear down the session and return call metrics.

        Safe to call more than once.
        """
        if self._state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return self.get_metrics()

        was_active = self._state is ConnectionState.ACTIVE
        self._state = ConnectionState.CLOSING
        logger.info(f"Closing call session: {self.call_id}")

        if self._stream is not None:
            await self._release_stream(self._stream)

        for task in (self._reopen_task, self._listener_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        # In-flight pipeline finishes; queued ones are skipped by the worker
        if self._worker_task is not None:
            self._pipeline_queue.put_nowait(None)
            await self._worker_task

        self._state = ConnectionState.CLOSED
        metrics = self.get_metrics()

        if was_active:
            ACTIVE_CALLS.dec()
            record_call_metrics(
                outcome="completed" if self._metrics.total_turns else "dropped",
                duration_seconds=metrics["duration_seconds"],
                stt_latency_ms=metrics["avg_stt_first_word_ms"] or None,
            )

        logger.info(
            f"Call session closed: {self.call_id} "
            f"(turns={metrics['total_turns']}, duration={metrics['duration_seconds']:.1f}s)"
        )
        return metrics

    def get_metrics(self) -> dict[str, Any]:
        """Current metrics without closing."""
        return {
            "call_id": self.call_id,
            "connection_id": self.connection_id,
            **self._metrics.to_dict(),
        }

    # -------------------------------------------------------------------------
    # Inbound handling
    # -------------------------------------------------------------------------

    def _apply_metadata(self, text: str) -> None:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed metadata on call {self.call_id}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Ignoring non-object metadata on call {self.call_id}")
            return

        call_id = data.get("call_id")
        if call_id:
            logger.info(f"Call id set: {self.call_id} -> {call_id}")
            self.call_id = str(call_id)

        agent = data.get("agent")
        if agent:
            self.agent_role = resolve_persona(str(agent))
            logger.info(f"Agent persona set for call {self.call_id}: {agent}")

    async def _forward_audio(self, audio: bytes) -> None:
        stream = self._stream
        if stream is None or stream.closed:
            # Dropped, not buffered; the frame only triggers a reopen
            self._metrics.dropped_audio_frames += 1
            self._maybe_reopen()
            return

        try:
            await stream.push_audio(audio)
        except Exception as e:
            await self._fail_stream(stream, e)
            return

        self._metrics.audio_bytes_received += len(audio)

    # -------------------------------------------------------------------------
    # Recognizer stream
    # -------------------------------------------------------------------------

    async def _open_recognizer(self) -> bool:
        self._last_open_attempt = time.monotonic()
        try:
            stream = await self._services.recognizer.open(self._config.recognizer)
        except Exception as e:
            logger.error(f"Recognizer open failed for call {self.call_id}: {e}")
            record_upstream_error("stt", e)
            await self._notify(TRANSCRIPTION_ERROR_NOTICE)
            return False

        if self._state is not ConnectionState.ACTIVE:
            await stream.close()
            return False

        self._stream = stream
        self._listener_task = asyncio.create_task(
            self._listen(stream), name=f"recognizer-{self.connection_id}"
        )
        logger.debug(f"Recognizer stream open for call {self.call_id}")
        return True

    def _maybe_reopen(self) -> None:
        if self._reopen_task is not None and not self._reopen_task.done():
            return
        if (
            self._last_open_attempt is not None
            and time.monotonic() - self._last_open_attempt < self._config.stt_reopen_backoff
        ):
            return

        logger.info(f"Reopening recognizer stream for call {self.call_id}")
        self._reopen_task = asyncio.create_task(
            self._open_recognizer(), name=f"reopen-{self.connection_id}"
        )

    async def _listen(self, stream: RecognizerStream) -> None:
        """Consume utterances from one recognizer stream.

        An interim not refined within ``interim_finalize`` seconds is
        promoted to a forced final. Later results that only extend that
        forced text belong to the same utterance and are not answered
        again. The stream is closed after ``stt_timeout`` seconds without
        any result.
        """
        pending: Utterance | None = None
        answered: str | None = None  # text of the last forced final
        try:
            while True:
                if pending is not None and self._config.interim_finalize is not None:
                    timeout = self._config.interim_finalize
                else:
                    timeout = self._config.stt_timeout

                try:
                    utterance = await stream.receive(timeout=timeout)
                except TimeoutError:
                    if pending is not None:
                        self._submit(replace(pending, is_final=True, forced=True))
                        answered = pending.text
                        pending = None
                        continue
                    logger.info(
                        f"Recognizer idle for {self._config.stt_timeout}s on call "
                        f"{self.call_id}, closing stream"
                    )
                    await self._release_stream(stream)
                    return

                if utterance is None:
                    if pending is not None:
                        self._submit(replace(pending, is_final=True, forced=True))
                    logger.debug(f"Recognizer stream ended for call {self.call_id}")
                    await self._release_stream(stream)
                    return

                if answered is not None and extends_transcript(utterance.text, answered):
                    record_utterance("superseded")
                    logger.debug(
                        f"{'Final' if utterance.is_final else 'Interim'} continues answered "
                        f"speech: {truncate_for_log(utterance.text)}"
                    )
                    if utterance.is_final:
                        answered = None
                    continue
                answered = None

                if not utterance.is_final:
                    record_utterance("interim")
                    logger.debug(f"Interim: {truncate_for_log(utterance.text)}")
                    pending = utterance
                    continue

                pending = None
                self._submit(utterance)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._fail_stream(stream, e)

    async def _release_stream(self, stream: RecognizerStream) -> None:
        if stream is self._stream:
            self._stream = None
        already_closed = stream.closed
        await stream.close()
        if not already_closed and stream.metadata.first_word_ms is not None:
            self._metrics.stt_first_word_ms.append(stream.metadata.first_word_ms)

    async def _fail_stream(self, stream: RecognizerStream, error: BaseException) -> None:
        if stream is not self._stream:
            # Already handled by whoever noticed first
            return
        logger.error(f"Recognizer stream failed for call {self.call_id}: {error}")
        record_upstream_error("stt", error)
        await self._release_stream(stream)
        await self._notify(TRANSCRIPTION_ERROR_NOTICE)

    def _submit(self, utterance: Utterance) -> None:
        if self._state is not ConnectionState.ACTIVE:
            return
        record_utterance("forced" if utterance.forced else "final")
        logger.info(
            f"Final transcript on call {self.call_id}"
            f"{' (forced)' if utterance.forced else ''}: {truncate_for_log(utterance.text)}"
        )
        self._pipeline_queue.put_nowait(utterance)

    # -------------------------------------------------------------------------
    # Response pipeline
    # -------------------------------------------------------------------------

    async def _pipeline_worker(self) -> None:
        while True:
            utterance = await self._pipeline_queue.get()
            if utterance is None:
                return
            if self._state is not ConnectionState.ACTIVE:
                logger.debug(f"Dropping queued utterance for closed call {self.call_id}")
                continue

            try:
                await self._run_pipeline(utterance)
            except Exception as e:
                logger.exception(f"Pipeline crashed on call {self.call_id}: {e}")
                record_pipeline_metrics("crashed")
                await self._notify(GENERATION_ERROR_NOTICE)

    async def _run_pipeline(self, utterance: Utterance) -> None:
        # Later metadata must not change a pipeline that already started
        call_id = self.call_id
        persona = self.agent_role

        try:
            transcript = require_text(utterance.text)
        except EmptyInputError:
            logger.debug(f"Skipping empty final transcript on call {call_id}")
            record_pipeline_metrics("empty_input")
            return

        self._metrics.total_turns += 1
        context = await self._retrieve_context(call_id, transcript)
        request = GenerationRequest.build(
            persona, context, transcript, max_context=self._config.context_top_k
        )

        first_token_count = len(self._metrics.llm_first_token_ms)
        response = await self._stream_generation(request)
        if response is None:
            record_pipeline_metrics("llm_error")
            return

        llm_latency = (
            self._metrics.llm_first_token_ms[-1]
            if len(self._metrics.llm_first_token_ms) > first_token_count
            else None
        )
        try:
            response = require_text(response)
        except EmptyInputError:
            logger.info(f"Empty response on call {call_id}, skipping synthesis")
            record_pipeline_metrics("empty_response")
            return

        synthesized, tts_latency = await self._stream_synthesis(response)

        stored = await self._services.context.store_turn(call_id, transcript, response)
        if not stored:
            logger.warning(f"Turn not persisted to context for call {call_id}")

        record_pipeline_metrics(
            "completed" if synthesized else "tts_error",
            llm_latency_ms=llm_latency,
            tts_latency_ms=tts_latency,
        )

    async def _retrieve_context(self, call_id: str, transcript: str) -> list[ContextRecord]:
        try:
            return await self._services.context.retrieve(
                call_id, transcript, self._config.context_top_k
            )
        except RetrievalError as e:
            logger.warning(f"Context retrieval failed for call {call_id}, continuing without: {e}")
            record_upstream_error("context", e)
            return []

    async def _stream_generation(self, request: GenerationRequest) -> str | None:
        """Forward tokens as text frames, then END_OF_TEXT.

        Returns:
            The full response text, or None if generation failed.
        """
        parts: list[str] = []
        completed = False
        events = None
        start_time = time.perf_counter()

        try:
            async with asyncio.timeout(self._config.llm_timeout):
                events, _ = await self._services.generator.generate(request)
                async for event in events:
                    if isinstance(event, CompletionEvent):
                        completed = True
                    elif isinstance(event, TokenEvent) and event.text and not completed:
                        if not parts:
                            self._metrics.llm_first_token_ms.append(
                                (time.perf_counter() - start_time) * 1000
                            )
                        parts.append(event.text)
                        self._metrics.tokens_sent += 1
                        await self._send_text(event.text)

                if not completed:
                    raise ProtocolError("Generation stream ended without a completion event")
        except TimeoutError as e:
            error: BaseException = ConnectivityError(
                f"Generation timed out after {self._config.llm_timeout}s"
            )
            error.__cause__ = e
        except (ConnectivityError, ProtocolError) as e:
            error = e
        except Exception as e:
            logger.exception(f"Unexpected generation error on call {self.call_id}")
            error = e
        else:
            await self._send_text(END_OF_TEXT)
            return "".join(parts)
        finally:
            if events is not None:
                await events.aclose()

        logger.error(f"Generation failed on call {self.call_id}: {error}")
        record_upstream_error("llm", error)
        await self._notify(GENERATION_ERROR_NOTICE)
        return None

    async def _stream_synthesis(self, text: str) -> tuple[bool, float | None]:
        """Forward audio chunks as binary frames, then END_OF_AUDIO.

        Returns:
            Tuple of (success, first chunk latency in ms).
        """
        chunks = None
        first_chunk_ms: float | None = None
        start_time = time.perf_counter()

        try:
            async with asyncio.timeout(self._config.tts_timeout):
                chunks = self._services.synthesizer.synthesize(text)
                async for chunk in chunks:
                    if first_chunk_ms is None:
                        first_chunk_ms = (time.perf_counter() - start_time) * 1000
                        self._metrics.tts_first_chunk_ms.append(first_chunk_ms)
                    await self._send_bytes(chunk.audio_bytes)
        except TimeoutError as e:
            error: BaseException = ConnectivityError(
                f"Synthesis timed out after {self._config.tts_timeout}s"
            )
            error.__cause__ = e
        except (ConnectivityError, ProtocolError, EmptyInputError) as e:
            error = e
        except Exception as e:
            logger.exception(f"Unexpected synthesis error on call {self.call_id}")
            error = e
        else:
            await self._send_text(END_OF_AUDIO)
            return True, first_chunk_ms
        finally:
            if chunks is not None:
                await chunks.aclose()

        logger.error(f"Synthesis failed on call {self.call_id}: {error}")
        record_upstream_error("tts", error)
        await self._notify(SYNTHESIS_ERROR_NOTICE)
        return False, first_chunk_ms

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def _can_send(self) -> bool:
        return self._state is ConnectionState.ACTIVE and not self._sender_failed

    async def _send_text(self, data: str) -> None:
        if not self._can_send():
            return
        try:
            await self._sender.send_text(data)
        except Exception as e:
            self._sender_failed = True
            logger.debug(f"Gateway send failed on call {self.call_id}, discarding output: {e}")

    async def _send_bytes(self, data: bytes) -> None:
        if not self._can_send():
            return
        try:
            await self._sender.send_bytes(data)
        except Exception as e:
            self._sender_failed = True
            logger.debug(f"Gateway send failed on call {self.call_id}, discarding output: {e}")
            return
        self._metrics.audio_bytes_sent += len(data)

    async def _notify(self, message: str) -> None:
        self._metrics.error_notices += 1
        await self._send_text(message)
