"""Health check endpoints.

Provides:
- Basic health check (GET /health)
- Detailed health check with dependency status (GET /health/detailed)
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel

from callbridge.config import Settings, get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response."""

    status: str
    checks: dict[str, str]
    active_calls: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint.

    Returns:
        Simple status indicating the API is running.
    """
    return HealthResponse(status="healthy")


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    request: Request,
) -> DetailedHealthResponse:
    """Detailed health check including upstream status.

    Checks:
    - Recognizer, synthesizer and context store health
    - Upstream API key configuration of the running app

    Returns:
        Status with individual component checks.
    """
    settings: Settings = getattr(request.app.state, "settings", None) or get_settings()
    checks: dict[str, str] = {}

    services = getattr(request.app.state, "services", None)
    if services is not None:
        for name, ok in (await services.health()).items():
            checks[name] = "ok" if ok else "error"

    # Configuration only, no API calls
    checks["groq"] = "configured" if settings.groq_api_key.get_secret_value() else "missing"
    checks["deepgram"] = (
        "configured" if settings.deepgram_api_key.get_secret_value() else "missing"
    )
    checks["elevenlabs"] = "configured" if settings.elevenlabs_api_key else "missing"

    registry = getattr(request.app.state, "registry", None)
    active_calls = registry.active_count if registry is not None else 0

    degraded = any(value in ("error", "missing") for value in checks.values())
    return DetailedHealthResponse(
        status="degraded" if degraded else "healthy",
        checks=checks,
        active_calls=active_calls,
        version="0.1.0",
    )
