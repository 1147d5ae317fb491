"""FastAPI application entry point.

Callbridge - real-time voice call bridge between a telephony gateway
and streaming STT, LLM and TTS services.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from callbridge.api.routes import health, metrics
from callbridge.api.websocket.gateway import gateway_endpoint
from callbridge.config import Settings, get_settings
from callbridge.core.registry import CallSessionRegistry
from callbridge.core.services import BridgeServices
from callbridge.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup:
    - Initialize logging
    - Build upstream services (unless injected) and the session registry

    Shutdown:
    - Close active call sessions
    - Release upstream clients
    """
    settings: Settings = app.state.settings

    # Startup
    setup_logging(
        level=settings.log_level,
        log_dir=settings.log_dir,
        enable_file=settings.is_production,
        serialize=settings.is_production,
    )

    if getattr(app.state, "services", None) is None:
        app.state.services = BridgeServices.from_settings(settings)
    app.state.registry = CallSessionRegistry(max_sessions=settings.max_concurrent_calls)
    logger.info(
        f"Call bridge started ({settings.environment}, "
        f"max {settings.max_concurrent_calls} calls)"
    )

    yield

    # Shutdown
    await app.state.registry.close_all()
    await app.state.services.close()


def create_app(
    settings: Settings | None = None,
    services: BridgeServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title="Callbridge API",
        description="Voice call bridge for streaming STT, LLM and TTS",
        version="0.1.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check routes
    app.include_router(health.router, tags=["Health"])

    # Metrics endpoint for Prometheus scraping
    app.include_router(metrics.router, tags=["Observability"])

    # WebSocket endpoint for the gateway
    @app.websocket("/ws")
    async def gateway_ws(websocket: WebSocket, call_id: str | None = None):
        """WebSocket endpoint for gateway audio and metadata."""
        await gateway_endpoint(
            websocket,
            websocket.app.state.registry,
            websocket.app.state.services,
            call_id=call_id,
        )

    return app


# Application instance
app = create_app()
