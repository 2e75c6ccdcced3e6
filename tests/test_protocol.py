"""Tests for wire frame helpers."""

from __future__ import annotations

import pytest

from clawbridge_core.config import NODE_PROFILE, OPERATOR_PROFILE, ClientDescriptor
from clawbridge_core.errors import ParseError
from clawbridge_core.identity import DeviceIdentity
from clawbridge_core.protocol import (
    build_connect_params,
    build_connect_request,
    build_request,
    decode_frame,
    format_error,
    parse_hello_ok,
)

CLIENT = ClientDescriptor(platform="linux")


class TestBuildRequest:
    """Tests for build_request()."""

    def test_request_frame(self):
        """Test request frames carry type, id, method and params."""
        frame = build_request(method="chat.send", params={"a": 1}, request_id="cmd_1")
        assert frame == {
            "type": "req",
            "id": "cmd_1",
            "method": "chat.send",
            "params": {"a": 1},
        }

    def test_missing_params_become_empty_object(self):
        """Test params default to an empty object."""
        frame = build_request(method="session.list", params=None, request_id="cmd_2")
        assert frame["params"] == {}


class TestConnectParams:
    """Tests for the connect request."""

    def test_operator_params(self):
        """Test operator params without token or identity."""
        params = build_connect_params(profile=OPERATOR_PROFILE, client=CLIENT)

        assert params == {
            "minProtocol": 3,
            "maxProtocol": 3,
            "client": {"id": "cli", "version": "0.1.0", "platform": "linux", "mode": "cli"},
            "role": "operator",
            "scopes": ["operator.admin", "operator.approvals", "operator.pairing"],
            "caps": [],
            "commands": [],
            "permissions": {},
        }

    def test_node_params_with_token_and_device(self):
        """Test node params carry caps, commands, auth and device."""
        identity = DeviceIdentity.generate()

        params = build_connect_params(
            profile=NODE_PROFILE,
            client=CLIENT,
            token="tok",
            identity=identity,
            nonce="n1",
            signed_at_ms=99,
        )

        assert params["role"] == "node"
        assert params["scopes"] == []
        assert params["caps"] == ["canvas"]
        assert len(params["commands"]) == 8
        assert params["auth"] == {"token": "tok"}
        assert params["device"]["id"] == identity.fingerprint
        assert params["device"]["nonce"] == "n1"
        assert params["device"]["signedAt"] == 99

    def test_connect_request_frame(self):
        """Test the connect frame uses the fixed id and method."""
        frame = build_connect_request(profile=OPERATOR_PROFILE, client=CLIENT)
        assert frame["id"] == "connect"
        assert frame["method"] == "connect"
        assert frame["type"] == "req"


class TestDecodeFrame:
    """Tests for decode_frame()."""

    def test_decode_object(self):
        """Test decoding a JSON object."""
        assert decode_frame('{"type": "res", "id": "x"}') == {"type": "res", "id": "x"}

    def test_invalid_json(self):
        """Test invalid JSON raises ParseError."""
        with pytest.raises(ParseError, match="not valid JSON"):
            decode_frame("not json {")

    def test_non_object(self):
        """Test JSON that is not an object raises ParseError."""
        with pytest.raises(ParseError, match="list"):
            decode_frame("[1, 2]")


class TestFormatError:
    """Tests for format_error()."""

    def test_message_field(self):
        """Test the message of an error object is used."""
        assert format_error({"code": "E", "message": "bad"}) == "bad"

    def test_object_without_message(self):
        """Test other error objects are serialized."""
        assert format_error({"code": "E"}) == '{"code": "E"}'

    def test_missing_and_plain(self):
        """Test missing and string errors."""
        assert format_error(None) == "Unknown error"
        assert format_error("nope") == "nope"


class TestParseHelloOk:
    """Tests for parse_hello_ok()."""

    def test_fields(self):
        """Test protocol and canvas host are extracted."""
        hello = parse_hello_ok({"protocol": 3, "canvasHostUrl": "http://h", "extra": 1})
        assert hello.protocol == 3
        assert hello.canvas_host_url == "http://h"
        assert hello.raw["extra"] == 1

    def test_missing_payload(self):
        """Test a missing payload yields an empty hello."""
        hello = parse_hello_ok(None)
        assert hello.protocol is None
        assert hello.canvas_host_url is None

    def test_bad_protocol(self):
        """Test a non-integer protocol is rejected."""
        with pytest.raises(ValueError, match="integer"):
            parse_hello_ok({"protocol": "3"})
        with pytest.raises(ValueError):
            parse_hello_ok({"protocol": True})
