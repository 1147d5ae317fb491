"""Agent personas selectable by the gateway.

The gateway picks a persona with ``{"agent": "<name>"}`` metadata; the
persona text becomes the system message of every generation request.
"""

from __future__ import annotations

from enum import Enum


class AgentPersona(str, Enum):
    """Persona names accepted in gateway metadata."""

    GENERAL = "general"
    TECHNICAL = "technical"
    SALES = "sales"


DEFAULT_AGENT_ROLE = "You are a helpful assistant."

PERSONA_PROMPTS: dict[AgentPersona, str] = {
    AgentPersona.GENERAL: "You are a general helpful assistant.",
    AgentPersona.TECHNICAL: (
        "You are a technical support assistant specializing in troubleshooting."
    ),
    AgentPersona.SALES: (
        "You are a sales representative who provides product information."
    ),
}


def resolve_persona(agent: str | None) -> str:
    """System prompt for an agent name; unknown names get the general persona."""
    if not agent:
        return PERSONA_PROMPTS[AgentPersona.GENERAL]

    try:
        persona = AgentPersona(agent.strip().lower())
    except ValueError:
        persona = AgentPersona.GENERAL
    return PERSONA_PROMPTS[persona]
