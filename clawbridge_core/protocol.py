"""Frame helpers for the gateway wire protocol (v3).

Three JSON frame kinds travel over the socket:

- request:  ``{"type": "req", "id", "method", "params"}``
- response: ``{"type": "res", "id", "ok", "payload" | "error"}``
- event:    ``{"type": "event", "event", "payload", "seq"?}``

Unknown optional fields MUST be ignored by the recipient.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .config import PROTOCOL_VERSION, ClientDescriptor, RoleProfile
from .errors import ParseError
from .identity import DeviceIdentity, build_device_assertion

FRAME_REQUEST = "req"
FRAME_RESPONSE = "res"
FRAME_EVENT = "event"

CONNECT_REQUEST_ID = "connect"
CONNECT_METHOD = "connect"
CHALLENGE_EVENT = "connect.challenge"


def build_request(
    *,
    method: str,
    params: dict[str, Any] | None,
    request_id: str,
) -> dict[str, Any]:
    """Build a request frame."""
    return {
        "type": FRAME_REQUEST,
        "id": request_id,
        "method": method,
        "params": params if params is not None else {},
    }


def build_connect_params(
    *,
    profile: RoleProfile,
    client: ClientDescriptor,
    token: str | None = None,
    identity: DeviceIdentity | None = None,
    nonce: str | None = None,
    signed_at_ms: int | None = None,
) -> dict[str, Any]:
    """Build the params of the connect request.

    Args:
        profile: Role, scopes, caps and commands the session declares
        client: Client descriptor
        token: Optional bearer token
        identity: Optional device identity; adds a signed ``device`` block
        nonce: Challenge nonce the device assertion is bound to
        signed_at_ms: Epoch milliseconds override for the assertion

    Returns:
        Params dict for a ``connect`` request.
    """
    params: dict[str, Any] = {
        "minProtocol": PROTOCOL_VERSION,
        "maxProtocol": PROTOCOL_VERSION,
        "client": client.as_dict(),
        "role": profile.role,
        "scopes": list(profile.scopes),
        "caps": list(profile.caps),
        "commands": list(profile.commands),
        "permissions": {},
    }

    if token:
        params["auth"] = {"token": token}

    if identity is not None:
        params["device"] = build_device_assertion(
            identity,
            client_id=client.id,
            client_mode=client.mode,
            role=profile.role,
            scopes=profile.scopes,
            token=token,
            nonce=nonce,
            signed_at_ms=signed_at_ms,
        )

    return params


def build_connect_request(**kwargs: Any) -> dict[str, Any]:
    """Build the full connect request frame; see ``build_connect_params``."""
    return build_request(
        method=CONNECT_METHOD,
        params=build_connect_params(**kwargs),
        request_id=CONNECT_REQUEST_ID,
    )


def decode_frame(raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
    """Decode one text frame into a JSON object.

    Raises:
        ParseError: If the data is not JSON or not a JSON object
    """
    if isinstance(raw, dict):
        return raw
    try:
        frame = json.loads(raw)
    except (TypeError, ValueError) as err:
        raise ParseError("Frame is not valid JSON") from err
    if not isinstance(frame, dict):
        raise ParseError(f"Frame must be a JSON object, got {type(frame).__name__}")
    return frame


def format_error(error: Any) -> str:
    """Render the ``error`` field of a response as a message."""
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str):
            return message
        return json.dumps(error)
    if error is None:
        return "Unknown error"
    return str(error)


@dataclass(frozen=True)
class HelloOk:
    """Parsed payload of a successful connect response."""

    protocol: int | None = None
    canvas_host_url: str | None = None
    raw: dict[str, Any] = field(default_factory=lambda: {})


def parse_hello_ok(payload: Any) -> HelloOk:
    """Extract the fields the client uses from the connect ok payload.

    The payload is optional; a missing or non-object payload yields an
    empty HelloOk.

    Raises:
        ValueError: If ``protocol`` is present but not an integer
    """
    if not isinstance(payload, dict):
        return HelloOk()

    protocol = payload.get("protocol")
    # bool is an int subclass
    if protocol is not None and (
        isinstance(protocol, bool) or not isinstance(protocol, int)
    ):
        raise ValueError(
            f"protocol must be integer, got {type(protocol).__name__}"
        )

    canvas_host_url = payload.get("canvasHostUrl")
    if not isinstance(canvas_host_url, str):
        canvas_host_url = None

    return HelloOk(protocol=protocol, canvas_host_url=canvas_host_url, raw=payload)
