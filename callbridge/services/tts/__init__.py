"""Text-to-Speech services (ElevenLabs)."""

from callbridge.services.tts.elevenlabs import ElevenLabsTTSService
from callbridge.services.tts.exceptions import (
    TTSConnectionError,
    TTSServiceError,
    TTSSynthesisError,
)
from callbridge.services.tts.protocol import AudioChunk, SpeechSynthesizer, SynthesisMetadata

__all__ = [
    # Services
    "ElevenLabsTTSService",
    # Protocol
    "SpeechSynthesizer",
    # Data types
    "AudioChunk",
    "SynthesisMetadata",
    # Exceptions
    "TTSServiceError",
    "TTSSynthesisError",
    "TTSConnectionError",
]
