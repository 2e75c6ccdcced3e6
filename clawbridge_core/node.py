"""Node-role gateway client.

The node connection declares the ``canvas`` capability. The gateway invokes
canvas commands on it through ``node.invoke.request`` events; each one is
answered with a ``node.invoke.result`` request:

    {"id", "nodeId", "ok", "payloadJSON": str | None, "error": {"message"} | None}
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .config import DEFAULT_SURFACE_ID, NODE_PROFILE, ClientDescriptor, SessionTimings
from .errors import ClawbridgeError
from .identity import DeviceIdentity
from .protocol import HelloOk
from .router import RenderingSink
from .session import ConnectionSession
from .ui_graph import UIGraphConverter, delete_surface_operation

_LOGGER = logging.getLogger(__name__)

INVOKE_REQUEST_EVENT = "node.invoke.request"
INVOKE_RESULT_METHOD = "node.invoke.result"


@dataclass(frozen=True)
class InvokeResult:
    """Outcome of one invoked command."""

    ok: bool
    payload: Any = None
    error: str | None = None


InvokeHandler = Callable[[str, Any], Awaitable[InvokeResult]]


class NodeClient:
    """Canvas node on a node-role session.

    Invocations run as their own tasks so a slow handler never stalls the
    session's frame loop.
    """

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        identity: DeviceIdentity | None = None,
        client: ClientDescriptor | None = None,
        timings: SessionTimings | None = None,
        handler: InvokeHandler | None = None,
    ) -> None:
        self._session = ConnectionSession(
            url,
            profile=NODE_PROFILE,
            token=token,
            identity=identity,
            client=client,
            timings=timings,
        )
        self._handler = handler
        self._invoke_tasks: set[asyncio.Task[None]] = set()
        self._session.on_event(self._handle_frame)

    @property
    def session(self) -> ConnectionSession:
        return self._session

    @property
    def state(self) -> str:
        return self._session.state

    async def connect(self) -> HelloOk:
        return await self._session.connect()

    async def disconnect(self) -> None:
        tasks, self._invoke_tasks = self._invoke_tasks, set()
        for task in tasks:
            task.cancel()
        await self._session.disconnect()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def on_state_change(self, callback: Callable[[str], None]) -> Callable[[], None]:
        return self._session.on_state_change(callback)

    def on_invoke(self, handler: InvokeHandler) -> Callable[[], None]:
        """Set the invoke handler; returns a function that clears it."""
        self._handler = handler

        def _clear() -> None:
            if self._handler is handler:
                self._handler = None

        return _clear

    def _handle_frame(self, frame: dict[str, Any]) -> None:
        if frame.get("event") != INVOKE_REQUEST_EVENT:
            # Broadcast events belong to the operator connection
            return

        payload = frame.get("payload")
        if not isinstance(payload, dict):
            _LOGGER.warning("[%s] Invoke request without payload", self._session.label)
            return

        task = asyncio.create_task(self._handle_invoke(payload))
        self._invoke_tasks.add(task)
        task.add_done_callback(self._invoke_tasks.discard)

    async def _handle_invoke(self, request: dict[str, Any]) -> None:
        request_id = request.get("id")
        command = str(request.get("command") or "")
        params = self._decode_params(command, request.get("paramsJSON"))

        _LOGGER.debug(
            "[%s] Invoke %s id=%s", self._session.label, command, request_id
        )

        handler = self._handler
        if handler is None:
            result = InvokeResult(ok=False, error=f"no handler for {command}")
        else:
            try:
                result = await handler(command, params)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Invoke handler error for %s: %s",
                    self._session.label,
                    command,
                    err,
                )
                result = InvokeResult(ok=False, error=str(err))

        reply = {
            "id": request_id,
            "nodeId": request.get("nodeId"),
            "ok": result.ok,
            "payloadJSON": (
                json.dumps(result.payload) if result.payload is not None else None
            ),
            "error": {"message": result.error} if result.error else None,
        }

        try:
            await self._session.send_command(INVOKE_RESULT_METHOD, reply)
        except ClawbridgeError as err:
            _LOGGER.warning(
                "[%s] Failed to send invoke result id=%s: %s",
                self._session.label,
                request_id,
                err,
            )

    def _decode_params(self, command: str, params_json: Any) -> Any:
        if not params_json:
            return None
        try:
            return json.loads(params_json)
        except (TypeError, ValueError) as err:
            _LOGGER.warning(
                "[%s] Failed to parse paramsJSON for %s: %s",
                self._session.label,
                command,
                err,
            )
            return None


class CanvasCommandHandler:
    """Invoke handler for the canvas commands a node declares.

    UI pushes are converted and posted to the rendering sink; presentation
    commands are acknowledged.
    """

    PRESENTATION_COMMANDS = frozenset(
        {
            "canvas.present",
            "canvas.hide",
            "canvas.navigate",
            "canvas.eval",
            "canvas.snapshot",
        }
    )

    def __init__(
        self, rendering: RenderingSink, *, converter: UIGraphConverter | None = None
    ) -> None:
        self._rendering = rendering
        self._converter = converter or UIGraphConverter()

    async def __call__(self, command: str, params: Any) -> InvokeResult:
        args = params if isinstance(params, dict) else {}

        if command == "canvas.a2ui.push":
            messages = args.get("messages")
            if not isinstance(messages, list):
                return InvokeResult(ok=False, error="messages must be a list")
            return self._post(self._converter.convert(messages))

        if command == "canvas.a2ui.pushJSONL":
            jsonl = args.get("jsonl")
            if not isinstance(jsonl, str):
                return InvokeResult(ok=False, error="jsonl must be a string")
            return self._post(self._converter.convert_jsonl(jsonl))

        if command == "canvas.a2ui.reset":
            surface_id = args.get("surfaceId")
            return self._post(
                [delete_surface_operation(str(surface_id or DEFAULT_SURFACE_ID))]
            )

        if command in self.PRESENTATION_COMMANDS:
            _LOGGER.debug("Acknowledged %s", command)
            return InvokeResult(ok=True)

        return InvokeResult(ok=False, error=f"unsupported command: {command}")

    def _post(self, operations: list[dict[str, Any]]) -> InvokeResult:
        if operations:
            self._rendering.post_structured_operations(operations)
        return InvokeResult(ok=True, payload={"operations": len(operations)})
