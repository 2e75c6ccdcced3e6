"""Error types for gateway sessions, commands and payload conversion."""

from __future__ import annotations


class ClawbridgeError(Exception):
    """Base error for gateway client failures."""


class TransportError(ClawbridgeError):
    """Opening or writing to the gateway connection failed."""


class TransportTimeout(TransportError):
    """Timeout while opening the gateway connection."""


class HandshakeError(ClawbridgeError):
    """The gateway rejected the connect request or the handshake timed out."""


class DisconnectedError(ClawbridgeError):
    """A command was issued, or still pending, while the session was down."""


class CommandError(ClawbridgeError):
    """Base error for a single failed command."""

    def __init__(self, method: str, message: str) -> None:
        super().__init__(message)
        self.method = method


class CommandTimeout(CommandError):
    """No response arrived for a command within the command timeout."""


class CommandRejected(CommandError):
    """The gateway answered a command with ok=false."""


class ParseError(ClawbridgeError):
    """A received frame was not valid JSON or not a JSON object."""


class IdentityKeyError(ClawbridgeError, KeyError):
    """Device key material is missing or malformed."""

    def __str__(self) -> str:
        # KeyError.__str__ repr()s its argument
        return str(self.args[0]) if self.args else ""
