"""Error taxonomy shared by the call session and upstream services.

Service packages define their own exceptions on top of these so the
session can react by category without knowing the vendor.
"""


class BridgeError(Exception):
    """Base exception for all bridge errors."""

    pass


class ConnectivityError(BridgeError):
    """Upstream service unreachable or timed out."""

    pass


class ProtocolError(BridgeError):
    """Upstream service sent a malformed or unexpected event."""

    pass


class EmptyInputError(BridgeError):
    """Transcript or response text is empty."""

    pass


class PartialWriteError(BridgeError):
    """A context batch could not be written as a whole."""

    def __init__(self, message: str, failed: int = 0, total: int = 0) -> None:
        super().__init__(message)
        self.failed = failed
        self.total = total


class RetrievalError(BridgeError):
    """Context retrieval failed (embedding or index query)."""

    pass


class EmbeddingError(BridgeError):
    """The embedding model failed to encode text."""

    pass
