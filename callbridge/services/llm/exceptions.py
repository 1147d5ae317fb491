"""Custom exceptions for LLM services."""

from callbridge.errors import BridgeError, ConnectivityError, ProtocolError


class LLMServiceError(BridgeError):
    """Base exception for LLM service errors."""

    pass


class LLMConnectionError(LLMServiceError, ConnectivityError):
    """Raised when unable to connect to LLM API."""

    pass


class LLMRateLimitError(LLMConnectionError):
    """Raised when rate limit is exceeded."""

    def __init__(self, message: str, retry_after: float = 60.0):
        super().__init__(message)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMConnectionError):
    """Raised when API key is invalid."""

    pass


class LLMProtocolError(LLMServiceError, ProtocolError):
    """Raised when the completion stream is malformed or rejected."""

    pass
