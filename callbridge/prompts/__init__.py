"""Prompt templates for LLM interactions."""

from callbridge.prompts.personas import (
    DEFAULT_AGENT_ROLE,
    PERSONA_PROMPTS,
    AgentPersona,
    resolve_persona,
)

__all__ = [
    "AgentPersona",
    "DEFAULT_AGENT_ROLE",
    "PERSONA_PROMPTS",
    "resolve_persona",
]
