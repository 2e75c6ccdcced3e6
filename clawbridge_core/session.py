"""Connection session for one gateway role.

This module provides the state machine every gateway connection runs,
whatever its role. It handles:
- Transport open and the challenge/connect handshake
- Heartbeat pings once connected
- Reconnection with exponential backoff after unintentional drops
- Command/response correlation with per-command timeouts
- Fan-out of push events to subscribers

States: "disconnected" -> "connecting" -> "connected"; an unintentional
drop returns to "disconnected" and schedules a reconnect; exhausting the
reconnect budget, or a failed connect(), ends in "error". disconnect() is
always terminal.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .config import ClientDescriptor, RoleProfile, SessionTimings
from .errors import (
    CommandRejected,
    CommandTimeout,
    DisconnectedError,
    HandshakeError,
    ParseError,
    TransportError,
)
from .identity import DeviceIdentity
from .protocol import (
    CHALLENGE_EVENT,
    CONNECT_REQUEST_ID,
    FRAME_EVENT,
    FRAME_RESPONSE,
    HelloOk,
    build_connect_request,
    build_request,
    decode_frame,
    format_error,
    parse_hello_ok,
)
from .transport.ws_client import GatewayWsClient, GatewayWsMessageType

_LOGGER = logging.getLogger(__name__)

# Shared by every session in the process so ids never collide.
_COMMAND_IDS = itertools.count(1)

STATE_DISCONNECTED = "disconnected"
STATE_CONNECTING = "connecting"
STATE_CONNECTED = "connected"
STATE_ERROR = "error"


@dataclass(slots=True)
class _PendingRequest:
    """Track an outstanding command."""

    method: str
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle


def next_command_id() -> str:
    return f"cmd_{next(_COMMAND_IDS)}"


class ConnectionSession:
    """One authenticated gateway connection, parameterized by role.

    Usage:
        session = ConnectionSession("ws://127.0.0.1:18789", profile=OPERATOR_PROFILE)
        session.on_state_change(my_state_handler)
        session.on_event(my_event_handler)
        await session.connect()
        result = await session.send_command("session.list", {})
        await session.disconnect()
    """

    def __init__(
        self,
        url: str,
        *,
        profile: RoleProfile,
        token: str | None = None,
        identity: DeviceIdentity | None = None,
        client: ClientDescriptor | None = None,
        timings: SessionTimings | None = None,
    ) -> None:
        """Initialize session.

        Args:
            url: Gateway WebSocket URL
            profile: Role, scopes, caps and commands declared at handshake
            token: Optional bearer token
            identity: Optional device identity used to sign the handshake
            client: Client descriptor (defaults to the CLI descriptor)
            timings: Timer settings (defaults to protocol values)
        """
        self.url = url
        self.profile = profile
        self.token = token
        self._identity = identity
        self._client = client or ClientDescriptor()
        self._timings = timings or SessionTimings()

        # Connection state
        self._ws: GatewayWsClient | None = None
        self._state: str = STATE_DISCONNECTED
        self._listen_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._handshake: asyncio.Future[HelloOk] | None = None
        self._retry_attempts = 0
        self._shutdown_requested = False
        self._hello: HelloOk | None = None

        # Keepalive
        self._heartbeat_task: asyncio.Task[None] | None = None

        # Commands
        self._pending: dict[str, _PendingRequest] = {}

        # Callbacks
        self._state_callbacks: list[Callable[[str], None]] = []
        self._event_callbacks: list[Callable[[dict[str, Any]], None]] = []

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    @property
    def label(self) -> str:
        return self.profile.role

    @property
    def state(self) -> str:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == STATE_CONNECTED

    @property
    def hello(self) -> HelloOk | None:
        """Payload of the most recent successful handshake."""
        return self._hello

    @property
    def retry_attempts(self) -> int:
        return self._retry_attempts

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def connect(self) -> HelloOk:
        """Open the transport and complete the handshake.

        Returns:
            Parsed hello payload of the connect response

        Raises:
            TransportError: If the WebSocket could not be opened
            HandshakeError: If the gateway rejected the handshake or it timed out
            DisconnectedError: If disconnect() was called while connecting
        """
        self._shutdown_requested = False
        self._retry_attempts = 0
        self._cancel_reconnect()

        try:
            return await self._open()
        except (TransportError, HandshakeError) as err:
            _LOGGER.warning("[%s] Connect failed: %s", self.label, err)
            if not self._shutdown_requested:
                self._set_state(STATE_ERROR)
            raise

    async def disconnect(self) -> None:
        """Close the session for good.

        Pending commands are rejected and every task is cancelled before the
        first await, so nothing fires after this returns.
        """
        _LOGGER.info("[%s] Disconnecting", self.label)
        self._shutdown_requested = True

        tasks: list[asyncio.Task[None]] = []
        for task in (self._reconnect_task, self._heartbeat_task, self._listen_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                tasks.append(task)
        self._reconnect_task = None
        self._heartbeat_task = None
        self._listen_task = None

        self._reject_all_pending("Client disconnected")
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(DisconnectedError("Client disconnected"))

        ws, self._ws = self._ws, None
        self._state = STATE_DISCONNECTED
        self._notify_state(STATE_DISCONNECTED)

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if ws is not None:
            await self._close_ws(ws)

    # -------------------------------------------------------------------------
    # Public API: Callbacks
    # -------------------------------------------------------------------------

    def on_state_change(self, callback: Callable[[str], None]) -> Callable[[], None]:
        """Register callback for connection state changes.

        Callback receives state: "connecting", "connected", "disconnected", "error".
        Returns a function that removes the callback.
        """
        self._state_callbacks.append(callback)
        return lambda: self._remove(self._state_callbacks, callback)

    def on_event(
        self, callback: Callable[[dict[str, Any]], None]
    ) -> Callable[[], None]:
        """Register callback for push event frames received once connected.

        Returns a function that removes the callback.
        """
        self._event_callbacks.append(callback)
        return lambda: self._remove(self._event_callbacks, callback)

    @staticmethod
    def _remove(callbacks: list[Any], callback: Any) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    # -------------------------------------------------------------------------
    # Public API: Commands
    # -------------------------------------------------------------------------

    async def send_command(
        self, method: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Send a request and wait for its response.

        Returns:
            The response payload, or the whole response frame if it has none

        Raises:
            DisconnectedError: If the handshake has not completed, or the
                transport closes first
            CommandRejected: If the gateway answers ok=false
            CommandTimeout: If no response arrives within the command timeout
            TransportError: If the request could not be written
        """
        ws = self._ws
        if ws is None or not ws.is_open or not self.is_connected:
            raise DisconnectedError("Not connected to gateway")

        request_id = next_command_id()
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        timer = loop.call_later(
            self._timings.command_timeout, self._expire_pending, request_id
        )
        self._pending[request_id] = _PendingRequest(
            method=method, future=future, timer=timer
        )

        try:
            await ws.send_json(
                build_request(method=method, params=params, request_id=request_id)
            )
        except TransportError:
            pending = self._pending.pop(request_id, None)
            if pending is not None:
                pending.timer.cancel()
            raise

        _LOGGER.debug("[%s] Sent %s id=%s", self.label, method, request_id)
        return await future

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _set_state(self, state: str) -> None:
        """Update connection state and notify callbacks."""
        if self._state != state:
            _LOGGER.debug("[%s] State: %s → %s", self.label, self._state, state)
            self._state = state
            self._notify_state(state)

    def _notify_state(self, state: str) -> None:
        for callback in list(self._state_callbacks):
            try:
                callback(state)
            except Exception as err:
                _LOGGER.exception("[%s] State callback error: %s", self.label, err)

    async def _open(self) -> HelloOk:
        """Open a transport and run the handshake on it."""
        self._set_state(STATE_CONNECTING)
        await self._teardown_transport()

        _LOGGER.info(
            "[%s] Connecting to %s (attempt #%d)",
            self.label,
            self.url,
            self._retry_attempts + 1,
        )

        ws = GatewayWsClient()
        await ws.connect(self.url, timeout=self._timings.open_timeout)

        if self._shutdown_requested:
            await self._close_ws(ws)
            raise DisconnectedError("Client disconnected")

        self._ws = ws
        handshake: asyncio.Future[HelloOk] = asyncio.get_running_loop().create_future()
        self._handshake = handshake
        self._listen_task = asyncio.create_task(self._listen(ws, handshake))

        try:
            return await asyncio.wait_for(
                handshake, timeout=self._timings.handshake_timeout
            )
        except TimeoutError as err:
            _LOGGER.warning(
                "[%s] Handshake timed out after %.1fs",
                self.label,
                self._timings.handshake_timeout,
            )
            await self._teardown_transport()
            raise HandshakeError("Handshake timed out waiting for connect ok") from err
        except (TransportError, HandshakeError, DisconnectedError):
            await self._teardown_transport()
            raise
        finally:
            if self._handshake is handshake:
                self._handshake = None

    async def _teardown_transport(self) -> None:
        """Stop listener and heartbeat and close the current transport."""
        self._stop_heartbeat()
        self._reject_all_pending("Connection closed")

        listen_task, self._listen_task = self._listen_task, None
        ws, self._ws = self._ws, None

        if listen_task is not None and listen_task is not asyncio.current_task():
            listen_task.cancel()
            await asyncio.gather(listen_task, return_exceptions=True)

        if ws is not None:
            await self._close_ws(ws)

    async def _close_ws(self, ws: GatewayWsClient) -> None:
        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("[%s] WebSocket close timed out", self.label)

    def _on_connection_lost(
        self, ws: GatewayWsClient, handshake: asyncio.Future[HelloOk]
    ) -> None:
        """Handle a transport that closed or failed underneath the session."""
        if ws is not self._ws:
            return

        self._ws = None
        self._listen_task = None
        self._stop_heartbeat()
        self._reject_all_pending("Connection closed")

        if not handshake.done():
            handshake.set_exception(
                TransportError("Connection closed during handshake")
            )
            return

        # A failed handshake is reported by _open(), not retried from here.
        if handshake.cancelled() or handshake.exception() is not None:
            return

        if self._shutdown_requested:
            return

        self._set_state(STATE_DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Schedule reconnection attempt with exponential backoff."""
        if self._shutdown_requested or self._reconnect_task is not None:
            return

        if self._retry_attempts >= self._timings.reconnect_max_attempts:
            _LOGGER.error(
                "[%s] Giving up after %d reconnect attempts",
                self.label,
                self._retry_attempts,
            )
            self._set_state(STATE_ERROR)
            return

        delay = self._timings.reconnect_delay(self._retry_attempts)
        self._retry_attempts += 1

        _LOGGER.info(
            "[%s] Reconnecting in %.1fs (attempt %d)",
            self.label,
            delay,
            self._retry_attempts,
        )

        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(delay))

    async def _reconnect_after_delay(self, delay: float) -> None:
        """Reconnect after delay."""
        failed = False
        try:
            await asyncio.sleep(delay)
            await self._open()
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Reconnect cancelled", self.label)
        except (TransportError, HandshakeError) as err:
            _LOGGER.warning("[%s] Reconnect failed: %s", self.label, err)
            failed = True
        except DisconnectedError:
            pass
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

        if failed and not self._shutdown_requested:
            self._set_state(STATE_ERROR)
            self._schedule_reconnect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            if self._reconnect_task is not asyncio.current_task():
                self._reconnect_task.cancel()
            self._reconnect_task = None

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(
        self, ws: GatewayWsClient, handshake: asyncio.Future[HelloOk]
    ) -> None:
        """Consume frames from one transport until it closes."""
        message_count = 0
        connection_lost = False

        try:
            async for msg in ws:
                message_count += 1

                if msg.type == GatewayWsMessageType.TEXT:
                    await self._handle_text(ws, handshake, msg.data)

                elif msg.type == GatewayWsMessageType.CLOSED:
                    _LOGGER.info("[%s] WebSocket closed by gateway", self.label)
                    connection_lost = True
                    break

                elif msg.type == GatewayWsMessageType.ERROR:
                    _LOGGER.error("[%s] WebSocket error", self.label)
                    connection_lost = True
                    break
            else:
                connection_lost = True

        except asyncio.CancelledError:
            _LOGGER.debug(
                "[%s] Listener cancelled (%d messages)", self.label, message_count
            )
            raise
        except TransportError as err:
            _LOGGER.warning("[%s] Transport error: %s", self.label, err)
            connection_lost = True
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected error: %s", self.label, err)
            connection_lost = True
        finally:
            if connection_lost:
                self._on_connection_lost(ws, handshake)

    async def _handle_text(
        self,
        ws: GatewayWsClient,
        handshake: asyncio.Future[HelloOk],
        data: str | None,
    ) -> None:
        try:
            frame = decode_frame(data or "")
        except ParseError as err:
            _LOGGER.debug("[%s] Dropped malformed frame: %s", self.label, err)
            return

        if not handshake.done():
            await self._handle_handshake_frame(ws, handshake, frame)
            return

        if self._ws is not ws or not self.is_connected:
            return

        frame_type = frame.get("type")
        if frame_type == FRAME_RESPONSE:
            self._resolve_pending(frame)
        elif frame_type == FRAME_EVENT:
            self._emit_event(frame)
        else:
            _LOGGER.debug("[%s] Unknown frame type: %s", self.label, frame_type)

    # -------------------------------------------------------------------------
    # Internal: Handshake
    # -------------------------------------------------------------------------

    async def _handle_handshake_frame(
        self,
        ws: GatewayWsClient,
        handshake: asyncio.Future[HelloOk],
        frame: dict[str, Any],
    ) -> None:
        frame_type = frame.get("type")

        if frame_type == FRAME_EVENT and frame.get("event") == CHALLENGE_EVENT:
            payload = frame.get("payload")
            nonce = payload.get("nonce") if isinstance(payload, dict) else None
            await self._send_handshake(ws, nonce if isinstance(nonce, str) else None)
            return

        if frame_type == FRAME_RESPONSE and frame.get("id") == CONNECT_REQUEST_ID:
            if frame.get("ok") is True:
                try:
                    hello = parse_hello_ok(frame.get("payload"))
                except ValueError as err:
                    handshake.set_exception(
                        HandshakeError(f"Invalid connect response: {err}")
                    )
                    return
                self._complete_handshake(ws, handshake, hello)
            else:
                message = format_error(frame.get("error") or "Handshake rejected")
                _LOGGER.error("[%s] Handshake rejected: %s", self.label, message)
                handshake.set_exception(HandshakeError(message))
            return

        _LOGGER.debug(
            "[%s] Ignoring %s frame during handshake", self.label, frame_type
        )

    async def _send_handshake(self, ws: GatewayWsClient, nonce: str | None) -> None:
        """Answer the challenge with the connect request."""
        frame = build_connect_request(
            profile=self.profile,
            client=self._client,
            token=self.token,
            identity=self._identity,
            nonce=nonce,
        )
        await ws.send_json(frame)
        _LOGGER.debug(
            "[%s] Connect request sent (signed=%s)",
            self.label,
            self._identity is not None,
        )

    def _complete_handshake(
        self,
        ws: GatewayWsClient,
        handshake: asyncio.Future[HelloOk],
        hello: HelloOk,
    ) -> None:
        self._hello = hello
        self._retry_attempts = 0
        self._set_state(STATE_CONNECTED)
        _LOGGER.info("[%s] Connected (protocol v%s)", self.label, hello.protocol)

        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat(ws))
        handshake.set_result(hello)

    # -------------------------------------------------------------------------
    # Internal: Commands and Events
    # -------------------------------------------------------------------------

    def _resolve_pending(self, frame: dict[str, Any]) -> None:
        request_id = frame.get("id")
        if not isinstance(request_id, str):
            return

        pending = self._pending.pop(request_id, None)
        if pending is None:
            _LOGGER.debug("[%s] Response for unknown id=%s", self.label, request_id)
            return

        pending.timer.cancel()
        if pending.future.done():
            return

        if frame.get("ok") is False:
            pending.future.set_exception(
                CommandRejected(pending.method, format_error(frame.get("error")))
            )
        else:
            payload = frame.get("payload")
            pending.future.set_result(payload if payload is not None else frame)

    def _expire_pending(self, request_id: str) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        _LOGGER.warning(
            "[%s] Command %s id=%s timed out", self.label, pending.method, request_id
        )
        pending.future.set_exception(
            CommandTimeout(pending.method, f"Command '{pending.method}' timed out")
        )

    def _reject_all_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for entry in pending.values():
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(DisconnectedError(reason))

    def _emit_event(self, frame: dict[str, Any]) -> None:
        for callback in list(self._event_callbacks):
            try:
                callback(frame)
            except Exception as err:
                _LOGGER.exception("[%s] Event callback error: %s", self.label, err)

    # -------------------------------------------------------------------------
    # Internal: Keepalive
    # -------------------------------------------------------------------------

    async def _heartbeat(self, ws: GatewayWsClient) -> None:
        """Ping periodically; close the transport when a pong is late."""
        try:
            while ws.is_open:
                await asyncio.sleep(self._timings.heartbeat_interval)
                if not ws.is_open:
                    break

                try:
                    pong_waiter = await ws.ping()
                    await asyncio.wait_for(
                        pong_waiter, timeout=self._timings.heartbeat_timeout
                    )
                except TimeoutError:
                    _LOGGER.warning(
                        "[%s] No pong within %.1fs, closing connection",
                        self.label,
                        self._timings.heartbeat_timeout,
                    )
                    # The listener reacts to the close and schedules the reconnect.
                    await asyncio.shield(ws.close())
                    break
                except TransportError as err:
                    _LOGGER.debug("[%s] Ping failed: %s", self.label, err)
                    break

        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Heartbeat cancelled", self.label)

    def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
