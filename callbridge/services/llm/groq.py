"""Groq LLM service implementation with streaming support."""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from typing import Any

import groq
from groq import AsyncGroq

from callbridge.config import Settings, get_settings
from callbridge.logging_config import get_logger
from callbridge.services.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMProtocolError,
    LLMRateLimitError,
)
from callbridge.services.llm.protocol import (
    CompletionEvent,
    GenerationEvent,
    GenerationRequest,
    StreamMetadata,
    TokenEvent,
)

logger: Any = get_logger(__name__)


class GroqService:
    """Groq LLM service with async token streaming."""

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.groq_model
        self._client: AsyncGroq | None = None

    @property
    def client(self) -> AsyncGroq:
        """Lazy initialization of AsyncGroq client."""
        if self._client is None:
            self._client = AsyncGroq(
                api_key=self._settings.groq_api_key.get_secret_value(),
                timeout=30.0,
                max_retries=2,
            )
        return self._client

    async def generate(
        self,
        request: GenerationRequest,
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> tuple[AsyncGenerator[GenerationEvent, None], StreamMetadata]:
        """Stream a chat completion for the request.

        Args:
            request: Persona, context and utterance messages
            max_tokens: Maximum response tokens (keep low for voice)
            temperature: Response creativity

        Returns:
            Tuple of (async event generator, metadata object).
            The generator yields TokenEvent for each delta and one
            CompletionEvent at the end.

        Raises (from the generator):
            LLMRateLimitError: When rate limit exceeded
            LLMConnectionError: When API unreachable
            LLMAuthenticationError: When API key invalid
            LLMProtocolError: When the stream is malformed or rejected
        """
        metadata = StreamMetadata(model=self._model)
        generator = self._stream_with_metadata(
            request.to_api_messages(),
            max_tokens if max_tokens is not None else self._settings.llm_max_tokens,
            temperature if temperature is not None else self._settings.llm_temperature,
            metadata,
        )
        return generator, metadata

    async def _stream_with_metadata(
        self,
        api_messages: list[dict],
        max_tokens: int,
        temperature: float,
        metadata: StreamMetadata,
    ) -> AsyncGenerator[GenerationEvent, None]:
        """Internal generator that populates metadata during streaming."""
        start_time = time.perf_counter()
        parts: list[str] = []

        try:
            stream = await self.client.chat.completions.create(
                messages=api_messages,  # type: ignore[arg-type]
                model=self._model,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )

            async with stream:  # type: ignore[union-attr]
                async for chunk in stream:  # type: ignore[union-attr]
                    try:
                        choice = chunk.choices[0] if chunk.choices else None
                        content = choice.delta.content if choice else None
                        finish_reason = choice.finish_reason if choice else None
                    except AttributeError as e:
                        raise LLMProtocolError(f"Malformed completion chunk: {e}") from e

                    if content:
                        if metadata.first_token_ms is None:
                            metadata.first_token_ms = (time.perf_counter() - start_time) * 1000
                            logger.debug(f"First token latency: {metadata.first_token_ms:.1f}ms")
                        parts.append(content)
                        yield TokenEvent(text=content)

                    if finish_reason:
                        metadata.finish_reason = finish_reason

                    # Groq provides usage in x_groq extension
                    usage = getattr(getattr(chunk, "x_groq", None), "usage", None)
                    if usage:
                        metadata.prompt_tokens = usage.prompt_tokens
                        metadata.completion_tokens = usage.completion_tokens
                        metadata.total_tokens = usage.total_tokens

        except groq.RateLimitError as e:
            logger.warning(f"Groq rate limit hit: {e}")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                retry_after=self._extract_retry_after(e),
            ) from e

        except groq.APIConnectionError as e:
            logger.error(f"Groq connection error: {e.__cause__}")
            raise LLMConnectionError("Failed to connect to Groq API") from e

        except groq.AuthenticationError as e:
            logger.error("Groq authentication failed")
            raise LLMAuthenticationError("Invalid Groq API key") from e

        except groq.APIStatusError as e:
            logger.error(f"Groq API error: {e.status_code} - {e.message}")
            if e.status_code >= 500:
                raise LLMConnectionError(f"Groq API unavailable: {e.status_code}") from e
            raise LLMProtocolError(f"Groq API error: {e.status_code}") from e

        except groq.APIError as e:
            logger.error(f"Groq stream error: {e}")
            raise LLMProtocolError(f"Groq stream error: {e}") from e

        yield CompletionEvent(
            text="".join(parts),
            finish_reason=metadata.finish_reason,
            token_count=len(parts),
        )

    def _extract_retry_after(self, error: groq.RateLimitError) -> float:
        """Extract retry-after from rate limit error."""
        if hasattr(error, "response") and error.response:
            retry_after = error.response.headers.get("retry-after")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass
        return 60.0  # Default to 60 seconds

    async def health_check(self) -> bool:
        """Check if Groq API is reachable."""
        try:
            response = await self.client.chat.completions.create(
                messages=[{"role": "user", "content": "hi"}],
                model=self._model,
                max_tokens=1,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning(f"Groq health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the client connection."""
        if self._client:
            await self._client.close()
            self._client = None
