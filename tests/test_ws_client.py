"""Tests for GatewayWsClient WebSocket wrapper."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import ConnectionClosed, InvalidURI

from clawbridge_core.errors import TransportError, TransportTimeout
from clawbridge_core.transport.ws import connect_websocket
from clawbridge_core.transport.ws_client import (
    GatewayWsClient,
    GatewayWsMessage,
    GatewayWsMessageType,
)

GATEWAY_URL = "ws://127.0.0.1:18789"


class AsyncIteratorMock:
    """Helper class to create a proper async iterator mock."""

    def __init__(self, items: list, *, raise_on_iter: Exception | None = None):
        self._items = items
        self._index = 0
        self._raise_on_iter = raise_on_iter
        self.close = AsyncMock()
        self.send = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._raise_on_iter is not None:
            raise self._raise_on_iter
        if self._index >= len(self._items):
            raise StopAsyncIteration
        item = self._items[self._index]
        self._index += 1
        return item


async def connected_client(mock_ws) -> GatewayWsClient:
    with patch(
        "clawbridge_core.transport.ws_client.connect_websocket",
        return_value=mock_ws,
    ):
        client = GatewayWsClient()
        await client.connect(GATEWAY_URL)
    return client


class TestGatewayWsMessage:
    """Tests for GatewayWsMessage dataclass."""

    def test_create_text_message(self):
        """Test creating a text message."""
        msg = GatewayWsMessage(type=GatewayWsMessageType.TEXT, data="hello")
        assert msg.type == GatewayWsMessageType.TEXT
        assert msg.data == "hello"

    def test_closed_message_has_no_data(self):
        """Test control messages carry no data."""
        msg = GatewayWsMessage(type=GatewayWsMessageType.CLOSED)
        assert msg.data is None

    def test_message_is_frozen(self):
        """Test that messages are immutable."""
        msg = GatewayWsMessage(type=GatewayWsMessageType.TEXT, data="test")
        with pytest.raises(AttributeError):
            msg.data = "modified"  # type: ignore[misc]


class TestConnectWebsocket:
    """Tests for connect_websocket() error translation."""

    @pytest.mark.asyncio
    async def test_invalid_uri(self):
        """Test a bad URL becomes a TransportError."""
        with patch(
            "clawbridge_core.transport.ws.websockets.connect",
            side_effect=InvalidURI("nope", "not a websocket URI"),
        ):
            with pytest.raises(TransportError, match="upgrade failed"):
                await connect_websocket("nope")

    @pytest.mark.asyncio
    async def test_refused(self):
        """Test OS-level failures become a TransportError."""
        with patch(
            "clawbridge_core.transport.ws.websockets.connect",
            side_effect=ConnectionRefusedError("refused"),
        ):
            with pytest.raises(TransportError, match="connection failed"):
                await connect_websocket(GATEWAY_URL)

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test an open that takes too long becomes TransportTimeout."""
        with patch(
            "clawbridge_core.transport.ws.websockets.connect",
            side_effect=TimeoutError(),
        ):
            with pytest.raises(TransportTimeout):
                await connect_websocket(GATEWAY_URL, timeout=0.01)


class TestGatewayWsClientConnect:
    """Tests for GatewayWsClient.connect()."""

    @pytest.mark.asyncio
    async def test_connect_success(self):
        """Test successful WebSocket connection."""
        mock_ws = AsyncMock()

        with patch(
            "clawbridge_core.transport.ws_client.connect_websocket",
            return_value=mock_ws,
        ) as mock_connect:
            client = GatewayWsClient()
            await client.connect(GATEWAY_URL, timeout=5.0)

            mock_connect.assert_called_once_with(
                GATEWAY_URL, ping_interval=None, timeout=5.0
            )
            assert client._ws is mock_ws
            assert client.is_open

    @pytest.mark.asyncio
    async def test_connect_propagates_errors(self):
        """Test that connection errors are propagated."""
        with patch(
            "clawbridge_core.transport.ws_client.connect_websocket",
            side_effect=TransportError("Connection failed"),
        ):
            client = GatewayWsClient()
            with pytest.raises(TransportError, match="Connection failed"):
                await client.connect(GATEWAY_URL)
            assert not client.is_open


class TestGatewayWsClientClose:
    """Tests for GatewayWsClient.close()."""

    @pytest.mark.asyncio
    async def test_close_connected(self):
        """Test closing a connected client."""
        mock_ws = AsyncMock()
        client = await connected_client(mock_ws)

        await client.close()

        mock_ws.close.assert_called_once()
        assert not client.is_open

    @pytest.mark.asyncio
    async def test_close_not_connected(self):
        """Test closing when not connected (no error)."""
        client = GatewayWsClient()
        await client.close()


class TestGatewayWsClientSend:
    """Tests for GatewayWsClient.send_json() and ping()."""

    @pytest.mark.asyncio
    async def test_send_json_success(self):
        """Test sending JSON payload."""
        mock_ws = AsyncMock()
        client = await connected_client(mock_ws)

        await client.send_json({"type": "req", "id": "cmd_1"})

        mock_ws.send.assert_called_once_with('{"type": "req", "id": "cmd_1"}')

    @pytest.mark.asyncio
    async def test_send_json_not_connected(self):
        """Test send_json raises when not connected."""
        client = GatewayWsClient()
        with pytest.raises(TransportError, match="not connected"):
            await client.send_json({"type": "req"})

    @pytest.mark.asyncio
    async def test_send_json_after_close(self):
        """Test ConnectionClosed during send becomes TransportError."""
        mock_ws = AsyncMock()
        mock_ws.send.side_effect = ConnectionClosed(None, None)
        client = await connected_client(mock_ws)

        with pytest.raises(TransportError, match="closed while sending"):
            await client.send_json({"type": "req"})

    @pytest.mark.asyncio
    async def test_ping_returns_pong_waiter(self):
        """Test the returned awaitable resolves with the pong latency."""
        mock_ws = AsyncMock()
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_result(0.25)
        mock_ws.ping.return_value = waiter
        client = await connected_client(mock_ws)

        pong = await client.ping()

        assert await pong == 0.25

    @pytest.mark.asyncio
    async def test_ping_after_close(self):
        """Test ConnectionClosed while pinging becomes TransportError."""
        mock_ws = AsyncMock()
        mock_ws.ping.side_effect = ConnectionClosed(None, None)
        client = await connected_client(mock_ws)

        with pytest.raises(TransportError, match="closed while pinging"):
            await client.ping()

    @pytest.mark.asyncio
    async def test_pong_waiter_fails_when_connection_drops(self):
        """Test a pong waiter failed by a drop raises TransportError."""
        mock_ws = AsyncMock()
        waiter = asyncio.get_running_loop().create_future()
        waiter.set_exception(ConnectionClosed(None, None))
        mock_ws.ping.return_value = waiter
        client = await connected_client(mock_ws)

        pong = await client.ping()

        with pytest.raises(TransportError, match="closed before pong"):
            await pong

    @pytest.mark.asyncio
    async def test_ping_not_connected(self):
        """Test ping raises when not connected."""
        client = GatewayWsClient()
        with pytest.raises(TransportError, match="not connected"):
            await client.ping()


class TestGatewayWsClientIteration:
    """Tests for GatewayWsClient async iteration."""

    def test_iter_not_connected(self):
        """Test iteration raises when not connected."""
        client = GatewayWsClient()
        with pytest.raises(TransportError, match="not connected"):
            client.__aiter__()

    @pytest.mark.asyncio
    async def test_iter_graceful_close(self):
        """Test iteration emits CLOSED on graceful completion."""
        client = await connected_client(AsyncIteratorMock(["hello"]))

        messages = [msg async for msg in client]

        assert [m.type for m in messages] == [
            GatewayWsMessageType.TEXT,
            GatewayWsMessageType.CLOSED,
        ]
        assert messages[0].data == "hello"
        assert not client.is_open

    @pytest.mark.asyncio
    async def test_iter_connection_closed(self):
        """Test iteration handles ConnectionClosed."""
        client = await connected_client(
            AsyncIteratorMock([], raise_on_iter=ConnectionClosed(None, None))
        )

        messages = [msg async for msg in client]

        assert len(messages) == 1
        assert messages[0].type == GatewayWsMessageType.CLOSED

    @pytest.mark.asyncio
    async def test_iter_unexpected_error(self):
        """Test iteration handles unexpected errors."""
        client = await connected_client(
            AsyncIteratorMock([], raise_on_iter=RuntimeError("Unexpected"))
        )

        messages = [msg async for msg in client]

        assert len(messages) == 1
        assert messages[0].type == GatewayWsMessageType.ERROR

    @pytest.mark.asyncio
    async def test_iter_skips_binary_messages(self):
        """Test iteration skips binary messages."""
        client = await connected_client(
            AsyncIteratorMock(["text1", b"\x00\x01\x02", "text2"])
        )

        messages = [msg async for msg in client]

        text_messages = [m.data for m in messages if m.type == GatewayWsMessageType.TEXT]
        assert text_messages == ["text1", "text2"]


class TestGatewayWsClientNormalization:
    """Tests for message normalization."""

    def test_normalize_string_message(self):
        """Test normalizing a plain string."""
        result = GatewayWsClient._normalize_message('{"type": "event"}')
        assert result == GatewayWsMessage(GatewayWsMessageType.TEXT, '{"type": "event"}')

    def test_normalize_bytes_returns_none(self):
        """Test normalizing bytes returns None (skipped)."""
        assert GatewayWsClient._normalize_message(b"\x00\x01\x02") is None

