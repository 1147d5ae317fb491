"""Process-wide service wiring.

Upstream clients are built once at startup and handed to every
CallSession by reference.
"""

from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import Any

from callbridge.config import Settings, get_settings
from callbridge.logging_config import get_logger
from callbridge.services.knowledge.chromadb_store import ChromaVectorIndex
from callbridge.services.knowledge.context_store import CONTEXT_TOP_K, ContextStore
from callbridge.services.knowledge.embeddings import EmbeddingService
from callbridge.services.knowledge.protocol import ContextService
from callbridge.services.llm.groq import GroqService
from callbridge.services.llm.protocol import ResponseGenerator
from callbridge.services.stt.deepgram import DeepgramService
from callbridge.services.stt.protocol import RecognizerConfig, SpeechRecognizer
from callbridge.services.tts.elevenlabs import ElevenLabsTTSService
from callbridge.services.tts.protocol import SpeechSynthesizer

logger: Any = get_logger(__name__)


@dataclass
class SessionConfig:
    """Per-call behaviour shared by all sessions."""

    recognizer: RecognizerConfig = field(default_factory=RecognizerConfig)
    context_top_k: int = CONTEXT_TOP_K

    # Timeouts (seconds)
    stt_timeout: float = 30.0  # Idle recognizer stream
    stt_reopen_backoff: float = 5.0
    interim_finalize: float | None = 2.0  # None disables force-finalization
    llm_timeout: float = 15.0
    tts_timeout: float = 15.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SessionConfig:
        """Create config from application settings."""
        s = settings or get_settings()
        return cls(
            recognizer=RecognizerConfig(
                punctuate=s.stt_punctuate,
                interim_results=s.stt_interim_results,
                sample_rate=s.gateway_sample_rate,
                language=s.stt_language,
            ),
            context_top_k=s.context_top_k,
            stt_timeout=s.stt_timeout_seconds,
            stt_reopen_backoff=s.stt_reopen_backoff_seconds,
            interim_finalize=s.interim_finalize_seconds if s.interim_finalize_seconds > 0 else None,
            llm_timeout=s.llm_timeout_seconds,
            tts_timeout=s.tts_timeout_seconds,
        )


@dataclass
class BridgeServices:
    """The four upstream services plus session behaviour."""

    recognizer: SpeechRecognizer
    generator: ResponseGenerator
    synthesizer: SpeechSynthesizer
    context: ContextService
    config: SessionConfig = field(default_factory=SessionConfig)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> BridgeServices:
        """Build the production service set (Deepgram, Groq, ElevenLabs, ChromaDB)."""
        s = settings or get_settings()
        context = ContextStore(
            EmbeddingService(model_name=s.embedding_model),
            ChromaVectorIndex(
                persist_directory=s.chroma_persist_directory,
                collection_name=s.chroma_collection,
            ),
            timeout=s.context_timeout_seconds,
        )
        return cls(
            recognizer=DeepgramService(settings=s),
            generator=GroqService(settings=s),
            synthesizer=ElevenLabsTTSService(settings=s),
            context=context,
            config=SessionConfig.from_settings(s),
        )

    async def health(self) -> dict[str, bool]:
        """Per-service health flags."""
        checks: dict[str, bool] = {}
        for name, service in (
            ("stt", self.recognizer),
            ("tts", self.synthesizer),
        ):
            try:
                checks[name] = await service.health_check()
            except Exception as e:
                logger.warning(f"{name} health check failed: {e}")
                checks[name] = False

        health_check = getattr(self.context, "health_check", None)
        checks["context"] = bool(health_check()) if health_check else True
        return checks

    async def close(self) -> None:
        """Release upstream clients (for shutdown)."""
        for service in (self.recognizer, self.generator, self.synthesizer):
            with contextlib.suppress(Exception):
                await service.close()
