"""WebSocket client wrapper for the gateway."""

from __future__ import annotations

import json
from collections.abc import Awaitable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..errors import TransportError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class GatewayWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class GatewayWsMessage:
    """Normalized WebSocket message payload."""

    type: GatewayWsMessageType
    data: str | None = None


class GatewayWsClient:
    """Wrapper around the websockets library for one gateway connection."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None
        self._closed = False

    async def connect(
        self,
        url: str,
        *,
        ping_interval: float | None = None,
        timeout: float = 15.0,
    ) -> None:
        """Open the websocket."""
        self._ws = await connect_websocket(
            url,
            ping_interval=ping_interval,
            timeout=timeout,
        )
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def close(self) -> None:
        """Close the websocket connection."""
        self._closed = True
        if self._ws is not None:
            await self._ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket."""
        if self._ws is None or self._closed:
            raise TransportError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise TransportError("WebSocket closed while sending") from err

    async def ping(self) -> Awaitable[float]:
        """Send a ping frame.

        Returns:
            Awaitable that completes when the matching pong arrives.
        """
        if self._ws is None or self._closed:
            raise TransportError("WebSocket is not connected")
        try:
            pong_waiter = await self._ws.ping()
        except ConnectionClosed as err:
            raise TransportError("WebSocket closed while pinging") from err
        return self._await_pong(pong_waiter)

    @staticmethod
    async def _await_pong(pong_waiter: Awaitable[float]) -> float:
        try:
            return await pong_waiter
        except ConnectionClosed as err:
            raise TransportError("WebSocket closed before pong") from err

    def __aiter__(self) -> AsyncIterator[GatewayWsMessage]:
        if self._ws is None:
            raise TransportError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[GatewayWsMessage]:
        if self._ws is None:
            raise TransportError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                normalized: GatewayWsMessage | None = self._normalize_message(msg)
                if normalized is None:
                    continue
                yield normalized
        except ConnectionClosed:
            yield GatewayWsMessage(type=GatewayWsMessageType.CLOSED)
        except Exception:
            yield GatewayWsMessage(type=GatewayWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield GatewayWsMessage(type=GatewayWsMessageType.CLOSED)
        finally:
            self._closed = True

    @staticmethod
    def _normalize_message(msg: str | bytes) -> GatewayWsMessage | None:
        """Text frames become TEXT messages; binary frames are skipped."""
        if isinstance(msg, str):
            return GatewayWsMessage(GatewayWsMessageType.TEXT, msg)
        return None
