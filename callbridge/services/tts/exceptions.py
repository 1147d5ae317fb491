"""Custom exceptions for TTS services."""

from callbridge.errors import BridgeError, ConnectivityError, ProtocolError


class TTSServiceError(BridgeError):
    """Base exception for TTS service errors."""

    pass


class TTSConnectionError(TTSServiceError, ConnectivityError):
    """Raised when unable to reach the TTS service."""

    pass


class TTSSynthesisError(TTSServiceError, ProtocolError):
    """Raised when synthesis fails."""

    pass
