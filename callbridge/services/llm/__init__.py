"""LLM services (Groq)."""

from callbridge.services.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMProtocolError,
    LLMRateLimitError,
    LLMServiceError,
)
from callbridge.services.llm.groq import GroqService
from callbridge.services.llm.protocol import (
    CompletionEvent,
    GenerationEvent,
    GenerationRequest,
    Message,
    ResponseGenerator,
    Role,
    StreamMetadata,
    TokenEvent,
)

__all__ = [
    # Protocol and types
    "ResponseGenerator",
    "GenerationRequest",
    "GenerationEvent",
    "TokenEvent",
    "CompletionEvent",
    "Message",
    "Role",
    "StreamMetadata",
    # Implementation
    "GroqService",
    # Exceptions
    "LLMServiceError",
    "LLMRateLimitError",
    "LLMConnectionError",
    "LLMAuthenticationError",
    "LLMProtocolError",
]
