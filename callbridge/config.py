"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for required variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # API Keys
    # ==========================================================================
    groq_api_key: SecretStr = Field(description="Groq API key for LLM")
    deepgram_api_key: SecretStr = Field(description="Deepgram API key for STT")
    elevenlabs_api_key: SecretStr | None = Field(
        default=None, description="ElevenLabs API key for TTS"
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    log_dir: str = Field(default="logs", description="Directory for rotating call logs")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    max_concurrent_calls: int = Field(
        default=10, description="Maximum simultaneous gateway connections"
    )

    # ==========================================================================
    # Speech Recognition (Deepgram)
    # ==========================================================================
    deepgram_model: str = Field(default="nova-2", description="Deepgram model")
    stt_language: str = Field(default="en-US", description="Recognition language")
    stt_punctuate: bool = Field(default=True, description="Enable punctuation")
    stt_interim_results: bool = Field(default=True, description="Emit interim results")
    gateway_sample_rate: int = Field(
        default=16000,
        description="Sample rate of inbound gateway audio (linear16 mono)",
    )

    # ==========================================================================
    # Language Model (Groq)
    # ==========================================================================
    groq_model: str = Field(
        default="llama-3.3-70b-versatile", description="Chat completion model"
    )
    llm_max_tokens: int = Field(default=256, description="Maximum response tokens")
    llm_temperature: float = Field(default=0.7, description="Sampling temperature")

    # ==========================================================================
    # Speech Synthesis (ElevenLabs)
    # ==========================================================================
    elevenlabs_voice_id: str = Field(
        default="9BWtsMINqrJLrRacOk9x",
        description="Default ElevenLabs voice ID",
    )
    elevenlabs_model_id: str = Field(
        default="eleven_multilingual_v2",
        description="Default ElevenLabs model ID",
    )
    elevenlabs_output_format: str = Field(
        default="pcm_16000",
        description="ElevenLabs output format (pcm_16000 matches gateway audio)",
    )
    tts_stability: float = Field(default=0.75, description="Voice stability")
    tts_similarity_boost: float = Field(default=0.8, description="Voice similarity boost")

    # ==========================================================================
    # Conversation Context (embeddings + ChromaDB)
    # ==========================================================================
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="sentence-transformers model used for context embeddings",
    )
    chroma_persist_directory: str = Field(
        default="data/chromadb",
        description="ChromaDB persistence directory",
    )
    chroma_collection: str = Field(
        default="conversation-history",
        description="ChromaDB collection holding per-call context",
    )
    context_top_k: int = Field(
        default=5, description="Number of context records injected per turn"
    )

    # ==========================================================================
    # Timeouts (seconds)
    # ==========================================================================
    stt_timeout_seconds: float = Field(
        default=30.0, description="Idle time before a recognizer stream is closed"
    )
    stt_reopen_backoff_seconds: float = Field(
        default=5.0, description="Minimum delay between recognizer reopen attempts"
    )
    interim_finalize_seconds: float = Field(
        default=2.0,
        description="Silence after an interim result before it is force-finalized",
    )
    llm_timeout_seconds: float = Field(default=15.0, description="Generation timeout")
    tts_timeout_seconds: float = Field(default=15.0, description="Synthesis timeout")
    context_timeout_seconds: float = Field(
        default=5.0, description="Context retrieve/store timeout"
    )

    # ==========================================================================
    # Derived Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Use dependency injection in FastAPI:
        settings: Settings = Depends(get_settings)
    """
    return Settings()  # type: ignore[call-arg]  # loads from env
