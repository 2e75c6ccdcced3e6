"""Connection timings, client descriptor and role profiles.

Values are plain frozen dataclasses; callers override them with keyword
arguments or ``dataclasses.replace``. Nothing here reads files.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field

PROTOCOL_VERSION = 3
CLIENT_VERSION = "0.1.0"
DEFAULT_SURFACE_ID = "main"


@dataclass(frozen=True, slots=True)
class SessionTimings:
    """Timers used by a connection session (seconds).

    Attributes:
        handshake_timeout: Budget from transport open to the connect ok response
        command_timeout: Time a command waits for its response
        heartbeat_interval: Interval between liveness pings once connected
        heartbeat_timeout: Time a ping waits for its pong
        reconnect_base_delay: First reconnect delay
        reconnect_max_delay: Reconnect delay cap
        reconnect_max_attempts: Automatic attempts before the session errors out
        open_timeout: Timeout for opening the WebSocket itself
    """

    handshake_timeout: float = 10.0
    command_timeout: float = 30.0
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 10.0
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_max_attempts: int = 10
    open_timeout: float = 15.0

    def reconnect_delay(self, attempt: int) -> float:
        """Return the backoff delay before reconnect attempt ``attempt`` (0-based)."""
        return min(
            self.reconnect_base_delay * (2**attempt),
            self.reconnect_max_delay,
        )


@dataclass(frozen=True, slots=True)
class ClientDescriptor:
    """Client block sent in the connect request."""

    id: str = "cli"
    mode: str = "cli"
    version: str = CLIENT_VERSION
    platform: str = field(default_factory=lambda: sys.platform)

    def as_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "version": self.version,
            "platform": self.platform,
            "mode": self.mode,
        }


@dataclass(frozen=True, slots=True)
class RoleProfile:
    """What a session declares about itself during the handshake."""

    role: str
    scopes: tuple[str, ...] = ()
    caps: tuple[str, ...] = ()
    commands: tuple[str, ...] = ()


CANVAS_COMMANDS: tuple[str, ...] = (
    "canvas.present",
    "canvas.hide",
    "canvas.navigate",
    "canvas.eval",
    "canvas.snapshot",
    "canvas.a2ui.push",
    "canvas.a2ui.pushJSONL",
    "canvas.a2ui.reset",
)

OPERATOR_PROFILE = RoleProfile(
    role="operator",
    scopes=("operator.admin", "operator.approvals", "operator.pairing"),
)

NODE_PROFILE = RoleProfile(
    role="node",
    caps=("canvas",),
    commands=CANVAS_COMMANDS,
)
