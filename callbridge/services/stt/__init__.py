"""Speech-to-Text services (Deepgram)."""

from callbridge.services.stt.deepgram import DeepgramService, DeepgramStream
from callbridge.services.stt.exceptions import (
    STTConnectionError,
    STTProtocolError,
    STTServiceError,
)
from callbridge.services.stt.protocol import (
    RecognizerConfig,
    RecognizerStream,
    SpeechRecognizer,
    TranscriptMetadata,
    Utterance,
)

__all__ = [
    "DeepgramService",
    "DeepgramStream",
    "RecognizerConfig",
    "RecognizerStream",
    "SpeechRecognizer",
    "TranscriptMetadata",
    "Utterance",
    "STTServiceError",
    "STTConnectionError",
    "STTProtocolError",
]
