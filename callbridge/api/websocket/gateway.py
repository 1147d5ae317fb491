"""WebSocket handler for the voice gateway.

Handles the gateway protocol:
- Text frames: JSON metadata ({"call_id": ..., "agent": ...})
- Binary frames: linear16 mono audio from the caller
- Outbound: token text frames, "[DONE]", audio binary frames,
  "[TTS_DONE]" and plain-text error notices
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect, status

from callbridge.core.registry import CallCapacityError, CallSessionRegistry
from callbridge.core.services import BridgeServices
from callbridge.core.session import CallSession, GatewaySender
from callbridge.logging_config import get_logger

logger: Any = get_logger(__name__)

# Sessions still closing after their handler was cancelled
_closing_sessions: set[asyncio.Task[Any]] = set()


class WebSocketSender(GatewaySender):
    """Writes session output to the gateway socket.

    Implements the GatewaySender protocol for CallSession.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def send_text(self, data: str) -> None:
        """Send a text frame to the gateway."""
        await self._websocket.send_text(data)

    async def send_bytes(self, data: bytes) -> None:
        """Send an audio frame to the gateway."""
        await self._websocket.send_bytes(data)


async def gateway_endpoint(
    websocket: WebSocket,
    registry: CallSessionRegistry,
    services: BridgeServices,
    call_id: str | None = None,
) -> None:
    """Handle one gateway WebSocket connection.

    Each connection gets its own CallSession, destroyed when the
    socket closes.
    """
    await websocket.accept()

    try:
        session = await registry.create(services, WebSocketSender(websocket), call_id=call_id)
    except CallCapacityError as e:
        logger.warning(f"Rejecting gateway connection: {e}")
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="At capacity")
        return

    logger.info(f"Gateway connected for call {session.call_id}")

    try:
        await session.on_open()

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                await session.on_inbound_message(message["bytes"])
            elif message.get("text") is not None:
                await session.on_inbound_message(message["text"])

    except WebSocketDisconnect:
        logger.info(f"Gateway disconnected for call {session.call_id}")

    except Exception as e:
        logger.error(f"WebSocket error for call {session.call_id}: {e}")

    finally:
        await _cleanup_session(registry, session)


async def _cleanup_session(registry: CallSessionRegistry, session: CallSession) -> None:
    """Close the session and drop it from the registry.

    The handler task may be cancelled while the session drains; the close
    keeps running in the background and the registry slot is freed
    regardless.
    """
    logger.info(f"Cleaning up call {session.call_id}")

    closing = asyncio.ensure_future(session.on_close())
    _closing_sessions.add(closing)
    closing.add_done_callback(_closing_sessions.discard)
    try:
        await asyncio.shield(closing)
    except asyncio.CancelledError:
        logger.warning(f"Cleanup interrupted for call {session.call_id}, closing in background")
        raise
    except Exception as e:
        logger.error(f"Error closing session: {e}")
    finally:
        await registry.remove(session.connection_id)
