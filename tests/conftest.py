"""Pytest configuration and fixtures for clawbridge_core tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterator
from typing import Any
from unittest.mock import patch

import pytest

from clawbridge_core.config import SessionTimings
from clawbridge_core.errors import TransportError
from clawbridge_core.transport.ws_client import GatewayWsMessage, GatewayWsMessageType

FAST_TIMINGS = SessionTimings(
    handshake_timeout=0.5,
    command_timeout=0.2,
    heartbeat_interval=60.0,
    heartbeat_timeout=0.1,
    reconnect_base_delay=0.01,
    reconnect_max_delay=0.05,
    reconnect_max_attempts=3,
    open_timeout=1.0,
)


class FakeWsClient:
    """In-memory GatewayWsClient; frames are fed through a queue."""

    def __init__(self, gateway: FakeGateway) -> None:
        self._gateway = gateway
        self._inbox: asyncio.Queue[GatewayWsMessage] = asyncio.Queue()
        self._open = False
        self.url: str | None = None
        self.sent: list[dict[str, Any]] = []
        self.closed_by_client = False
        self.pings = 0

    async def connect(
        self, url: str, *, ping_interval: float | None = None, timeout: float = 15.0
    ) -> None:
        self.url = url
        if self._gateway.fail_opens > 0:
            self._gateway.fail_opens -= 1
            raise TransportError("WebSocket connection failed: refused")
        self._open = True
        if self._gateway.send_challenge:
            self.feed(
                {
                    "type": "event",
                    "event": "connect.challenge",
                    "payload": {"nonce": self._gateway.nonce},
                }
            )

    @property
    def is_open(self) -> bool:
        return self._open

    async def close(self) -> None:
        self.closed_by_client = True
        self.drop()

    async def send_json(self, payload: dict[str, Any]) -> None:
        if not self._open:
            raise TransportError("WebSocket is not connected")
        self.sent.append(payload)
        self._gateway.handle_request(self, payload)

    async def ping(self) -> asyncio.Future[float]:
        if not self._open:
            raise TransportError("WebSocket is not connected")
        self.pings += 1
        pong: asyncio.Future[float] = asyncio.get_running_loop().create_future()
        if self._gateway.pong_error is not None:
            pong.set_exception(self._gateway.pong_error)
        elif self._gateway.answer_pings:
            pong.set_result(0.0)
        return pong

    def feed(self, frame: dict[str, Any]) -> None:
        self.feed_raw(json.dumps(frame))

    def feed_raw(self, data: str) -> None:
        self._inbox.put_nowait(GatewayWsMessage(GatewayWsMessageType.TEXT, data))

    def drop(self) -> None:
        """Simulate the socket closing underneath the session."""
        if self._open:
            self._open = False
            self._inbox.put_nowait(GatewayWsMessage(GatewayWsMessageType.CLOSED))

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("method") == method]

    def __aiter__(self):
        return self._iter_messages()

    async def _iter_messages(self):
        while True:
            msg = await self._inbox.get()
            yield msg
            if msg.type is not GatewayWsMessageType.TEXT:
                return


class FakeGateway:
    """Plays the gateway side for every FakeWsClient it creates."""

    def __init__(self) -> None:
        self.clients: list[FakeWsClient] = []
        self.nonce = "nonce-1"
        self.hello: dict[str, Any] = {
            "protocol": 3,
            "canvasHostUrl": "http://127.0.0.1:18793",
        }
        self.send_challenge = True
        self.accept_connect = True
        self.answer_connect = True
        self.answer_pings = True
        self.pong_error: Exception | None = None
        self.fail_opens = 0
        self._responses: dict[str, dict[str, Any]] = {}

    def __call__(self) -> FakeWsClient:
        client = FakeWsClient(self)
        self.clients.append(client)
        return client

    @property
    def current(self) -> FakeWsClient:
        return self.clients[-1]

    def respond(
        self,
        method: str,
        payload: Any = None,
        *,
        error: dict[str, Any] | None = None,
    ) -> None:
        """Answer every future request for ``method``."""
        if error is not None:
            self._responses[method] = {"ok": False, "error": error}
        else:
            self._responses[method] = {"ok": True, "payload": payload}

    def handle_request(self, client: FakeWsClient, frame: dict[str, Any]) -> None:
        method = frame.get("method")
        if method == "connect":
            if not self.answer_connect:
                return
            if self.accept_connect:
                response = {"ok": True, "payload": self.hello}
            else:
                response = {"ok": False, "error": {"message": "invalid token"}}
        elif method in self._responses:
            response = self._responses[method]
        else:
            return

        client.feed({"type": "res", "id": frame["id"], **response})


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll ``predicate`` until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("Condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def gateway() -> Iterator[FakeGateway]:
    """Patch the session transport with a scripted fake gateway."""
    fake = FakeGateway()
    with patch("clawbridge_core.session.GatewayWsClient", side_effect=fake):
        yield fake


class RecordingSink:
    """Collects everything the router or node hands to the host application."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.operations: list[list[dict[str, Any]]] = []
        self.diffs: list[tuple[str, str, str]] = []
        self.lines: list[str] = []

    def post_event(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def post_structured_operations(self, operations: list[dict[str, Any]]) -> None:
        self.operations.append(operations)

    def show_diff(self, original: str, modified: str, title: str) -> None:
        self.diffs.append((original, modified, title))

    def log(self, line: str) -> None:
        self.lines.append(line)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
