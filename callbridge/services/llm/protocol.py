"""LLM service protocol and data types."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from callbridge.services.knowledge.protocol import ContextRecord


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Message:
    """A single message in a generation request."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class GenerationRequest:
    """Ordered messages for one reply.

    Layout: system persona, then prior context records (most relevant
    first), then the current user utterance.
    """

    messages: tuple[Message, ...]

    @classmethod
    def build(
        cls,
        persona: str,
        context: Sequence[ContextRecord],
        utterance: str,
        *,
        max_context: int | None = None,
    ) -> GenerationRequest:
        """Assemble a request from persona, retrieved context and the new utterance."""
        records = list(context)
        if max_context is not None:
            records = records[:max_context]

        messages = [Message(role=Role.SYSTEM, content=persona)]
        messages.extend(Message(role=r.role, content=r.text) for r in records)
        messages.append(Message(role=Role.USER, content=utterance))
        return cls(messages=tuple(messages))

    @property
    def system_prompt(self) -> str:
        return self.messages[0].content

    @property
    def utterance(self) -> str:
        return self.messages[-1].content

    def to_api_messages(self) -> list[dict[str, str]]:
        """Format messages for a chat-completions API."""
        return [{"role": m.role.value, "content": m.content} for m in self.messages]


@dataclass(frozen=True, slots=True)
class TokenEvent:
    """One streamed content delta."""

    text: str


@dataclass(frozen=True, slots=True)
class CompletionEvent:
    """Terminal event: the model finished the stream.

    Emitted exactly once per successful generation, even with zero tokens.
    """

    text: str
    finish_reason: str | None = None
    token_count: int = 0


GenerationEvent = TokenEvent | CompletionEvent


@dataclass
class StreamMetadata:
    """Metadata collected during/after streaming."""

    model: str = ""
    first_token_ms: float | None = None
    total_tokens: int | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    finish_reason: str | None = None


class ResponseGenerator(Protocol):
    """Protocol for streaming LLM implementations."""

    async def generate(
        self,
        request: GenerationRequest,
    ) -> tuple[AsyncGenerator[GenerationEvent, None], StreamMetadata]:
        """Stream a reply for the request.

        Returns:
            Tuple of (event generator, metadata object).
            Metadata is populated during generator consumption.
        """
        ...

    async def close(self) -> None:
        """Close any open connections."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
