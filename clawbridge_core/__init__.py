"""Client core for an agent-hosting gateway.

Authenticated WebSocket sessions, command correlation, event translation
and routing, and conversion of agent-authored UI into renderable surfaces.
"""

__version__ = "0.1.0"

from .config import (
    NODE_PROFILE,
    OPERATOR_PROFILE,
    PROTOCOL_VERSION,
    ClientDescriptor,
    RoleProfile,
    SessionTimings,
)
from .errors import (
    ClawbridgeError,
    CommandError,
    CommandRejected,
    CommandTimeout,
    DisconnectedError,
    HandshakeError,
    IdentityKeyError,
    ParseError,
    TransportError,
    TransportTimeout,
)
from .events import CanonicalEvent, EventTranslator
from .identity import DeviceIdentity, build_device_assertion, build_device_auth_payload
from .log import DiagnosticSink, DiagnosticSinkHandler, attach_diagnostic_sink
from .node import CanvasCommandHandler, InvokeResult, NodeClient
from .operator import OperatorClient
from .protocol import HelloOk
from .router import ConversationSink, EditorSink, EventRouter, RenderingSink
from .session import ConnectionSession
from .ui_graph import UIGraphConverter

__all__ = [
    "NODE_PROFILE",
    "OPERATOR_PROFILE",
    "PROTOCOL_VERSION",
    "CanonicalEvent",
    "CanvasCommandHandler",
    "ClawbridgeError",
    "ClientDescriptor",
    "CommandError",
    "CommandRejected",
    "CommandTimeout",
    "ConnectionSession",
    "ConversationSink",
    "DeviceIdentity",
    "DiagnosticSink",
    "DiagnosticSinkHandler",
    "DisconnectedError",
    "EditorSink",
    "EventRouter",
    "EventTranslator",
    "HandshakeError",
    "HelloOk",
    "IdentityKeyError",
    "InvokeResult",
    "NodeClient",
    "OperatorClient",
    "ParseError",
    "RenderingSink",
    "RoleProfile",
    "SessionTimings",
    "TransportError",
    "TransportTimeout",
    "UIGraphConverter",
    "__version__",
    "attach_diagnostic_sink",
    "build_device_assertion",
    "build_device_auth_payload",
]
