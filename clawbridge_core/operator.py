"""Operator-role gateway client.

The operator connection carries the conversation: chat commands go out as
requests, and the gateway's push events come back translated into
canonical events.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from collections.abc import Callable
from typing import Any

from .config import (
    CLIENT_VERSION,
    NODE_PROFILE,
    OPERATOR_PROFILE,
    ClientDescriptor,
    SessionTimings,
)
from .errors import CommandError
from .events import CanonicalEvent, EventTranslator
from .identity import DeviceIdentity
from .protocol import HelloOk
from .session import ConnectionSession

_LOGGER = logging.getLogger(__name__)

UI_ACTION_TYPE = "a2ui_action"


class OperatorClient:
    """Conversational client on an operator-role session.

    Usage:
        client = OperatorClient("ws://127.0.0.1:18789", token="...")
        client.on_event(router.route)
        await client.connect()
        await client.chat_send("main", "hello")
    """

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        identity: DeviceIdentity | None = None,
        client: ClientDescriptor | None = None,
        timings: SessionTimings | None = None,
        translator: EventTranslator | None = None,
    ) -> None:
        self._identity = identity
        self._translator = translator or EventTranslator()
        self._session = ConnectionSession(
            url,
            profile=OPERATOR_PROFILE,
            token=token,
            identity=identity,
            client=client,
            timings=timings,
        )
        self._session_key: str | None = None
        self._event_callbacks: list[Callable[[CanonicalEvent], None]] = []
        self._session.on_event(self._handle_frame)

    @property
    def session(self) -> ConnectionSession:
        return self._session

    @property
    def state(self) -> str:
        return self._session.state

    @property
    def session_key(self) -> str | None:
        """Chat session most recently addressed by chat_send."""
        return self._session_key

    @property
    def canvas_host_url(self) -> str | None:
        """Auxiliary canvas endpoint advertised in the hello payload."""
        hello = self._session.hello
        return hello.canvas_host_url if hello is not None else None

    async def connect(self) -> HelloOk:
        return await self._session.connect()

    async def disconnect(self) -> None:
        await self._session.disconnect()

    def on_state_change(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._session.on_state_change(callback)

    def on_event(self, callback: Callable[[CanonicalEvent], None]) -> Callable[[], None]:
        """Register callback for translated push events.

        Returns a function that removes the callback.
        """
        self._event_callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._event_callbacks:
                self._event_callbacks.remove(callback)

        return _unsubscribe

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def chat_send(self, session_key: str, message: str) -> Any:
        """Send a user message; the result carries the run id."""
        self._session_key = session_key
        return await self._session.send_command(
            "chat.send",
            {
                "sessionKey": session_key,
                "message": message,
                "idempotencyKey": str(uuid.uuid4()),
            },
        )

    async def chat_abort(self, session_key: str, run_id: str) -> None:
        await self._session.send_command(
            "chat.abort", {"sessionKey": session_key, "runId": run_id}
        )

    async def chat_history(self, session_key: str) -> list[Any]:
        result = await self._session.send_command(
            "chat.history", {"sessionKey": session_key}
        )
        messages = result.get("messages") if isinstance(result, dict) else None
        return messages if isinstance(messages, list) else []

    async def send_ui_action(
        self, action: Any, context: dict[str, Any] | None = None
    ) -> Any:
        """Forward a rendered-surface interaction to the active chat session.

        Raises:
            CommandError: If no chat session has been addressed yet
        """
        if self._session_key is None:
            raise CommandError("chat.send", "No active chat session")
        message = json.dumps(
            {"type": UI_ACTION_TYPE, "action": action, "context": context or {}}
        )
        return await self.chat_send(self._session_key, message)

    # -------------------------------------------------------------------------
    # Sessions and pairing
    # -------------------------------------------------------------------------

    async def session_list(self) -> list[Any]:
        result = await self._session.send_command("session.list", {})
        sessions = result.get("sessions") if isinstance(result, dict) else None
        return sessions if isinstance(sessions, list) else []

    async def session_create(self, key: str, agent: str | None = None) -> Any:
        params: dict[str, Any] = {"key": key}
        if agent:
            params["agent"] = agent
        return await self._session.send_command("session.create", params)

    async def node_pair_request(self) -> Any:
        """Ask the gateway to pair this device as a canvas node."""
        node_id = (
            self._identity.fingerprint
            if self._identity is not None
            else str(uuid.uuid4())
        )
        return await self._session.send_command(
            "node.pair.request",
            {
                "nodeId": node_id,
                "displayName": f"Clawbridge ({sys.platform})",
                "platform": sys.platform,
                "version": CLIENT_VERSION,
                "caps": list(NODE_PROFILE.caps),
                "commands": list(NODE_PROFILE.commands),
            },
        )

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        event = self._translator.translate(frame)
        if event is None:
            return
        for callback in list(self._event_callbacks):
            try:
                callback(event)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Event callback error: %s", self._session.label, err
                )
