"""Transport layer: WebSocket connection and message iteration."""

from .ws import connect_websocket
from .ws_client import GatewayWsClient, GatewayWsMessage, GatewayWsMessageType

__all__ = [
    "GatewayWsClient",
    "GatewayWsMessage",
    "GatewayWsMessageType",
    "connect_websocket",
]
