"""Core call-bridge components.

This module provides the orchestration for gateway calls:
- CallSession: Per-connection state and the STT → LLM → TTS pipeline
- BridgeServices: Upstream clients shared by all sessions
- CallSessionRegistry: Active sessions with a capacity limit
"""

from callbridge.core.registry import CallCapacityError, CallSessionRegistry
from callbridge.core.services import BridgeServices, SessionConfig
from callbridge.core.session import (
    END_OF_AUDIO,
    END_OF_TEXT,
    GENERATION_ERROR_NOTICE,
    SYNTHESIS_ERROR_NOTICE,
    TRANSCRIPTION_ERROR_NOTICE,
    CallSession,
    ConnectionState,
    GatewaySender,
    SessionMetrics,
)

__all__ = [
    # Session
    "CallSession",
    "ConnectionState",
    "GatewaySender",
    "SessionMetrics",
    "END_OF_TEXT",
    "END_OF_AUDIO",
    "GENERATION_ERROR_NOTICE",
    "SYNTHESIS_ERROR_NOTICE",
    "TRANSCRIPTION_ERROR_NOTICE",
    # Wiring
    "BridgeServices",
    "SessionConfig",
    "CallSessionRegistry",
    "CallCapacityError",
]
