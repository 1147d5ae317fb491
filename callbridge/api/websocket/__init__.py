"""WebSocket handlers for the voice gateway.

This module provides the gateway WebSocket endpoint:
- gateway_endpoint: Main WebSocket handler
- WebSocketSender: GatewaySender over a FastAPI WebSocket
"""

from callbridge.api.websocket.gateway import WebSocketSender, gateway_endpoint

__all__ = [
    "gateway_endpoint",
    "WebSocketSender",
]
