"""Custom exceptions for STT services."""

from callbridge.errors import BridgeError, ConnectivityError, ProtocolError


class STTServiceError(BridgeError):
    """Base exception for STT service errors."""

    pass


class STTConnectionError(STTServiceError, ConnectivityError):
    """Raised when the live transcription connection fails or drops."""

    pass


class STTProtocolError(STTServiceError, ProtocolError):
    """Raised when a transcription event cannot be understood."""

    pass
