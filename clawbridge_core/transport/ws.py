"""WebSocket helpers for the gateway transport."""

from __future__ import annotations

import asyncio

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import TransportError, TransportTimeout


async def connect_websocket(
    url: str,
    *,
    ping_interval: float | None = None,
    timeout: float = 15.0,
) -> ClientConnection:
    """Open a WebSocket to the gateway.

    Uses the websockets library which properly implements RFC 6455 frame masking.
    Keepalive is driven by the session, so the library's own pings are off
    unless ``ping_interval`` is given.

    Args:
        url: Gateway URL (ws:// or wss://)
        ping_interval: Interval for library-driven ping frames, None to disable
        timeout: Connection timeout
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TransportTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise TransportError(f"WebSocket upgrade failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise TransportError(f"WebSocket connection failed: {err}") from err
