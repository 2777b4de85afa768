"""Tests for JSON-RPC message types."""

import json

from idebridge.ide.protocol import (
    MCP_PROTOCOL_VERSION,
    AtMentionedParams,
    IDENotification,
    IDERequest,
    IDEResponse,
    InitializeParams,
    InitializeResult,
    Position,
    Range,
    SelectionChangedParams,
    ServerCapabilities,
    parse_message,
)


class TestParseMessage:
    """Tests for parsing inbound frames."""

    def test_request(self):
        message = parse_message('{"jsonrpc": "2.0", "id": 1, "method": "ping"}')

        assert isinstance(message, IDERequest)
        assert message.method == "ping"
        assert message.id == 1

    def test_notification(self):
        message = parse_message('{"jsonrpc": "2.0", "method": "notifications/initialized"}')

        assert isinstance(message, IDENotification)

    def test_null_id_is_request(self):
        message = parse_message('{"jsonrpc": "2.0", "id": null, "method": "ping"}')

        assert isinstance(message, IDERequest)
        assert message.id is None

    def test_bytes(self):
        message = parse_message(b'{"jsonrpc": "2.0", "id": "a", "method": "ping"}')

        assert message.id == "a"

    def test_invalid_frames_dropped(self):
        for raw in (
            "not json",
            "[]",
            '"text"',
            '{"id": 1, "method": "ping"}',
            '{"jsonrpc": "1.0", "id": 1, "method": "ping"}',
            '{"jsonrpc": "2.0", "id": 1}',
            '{"jsonrpc": "2.0", "id": 1, "method": 5}',
        ):
            assert parse_message(raw) is None, raw

    def test_non_object_params_ignored(self):
        message = parse_message('{"jsonrpc": "2.0", "id": 1, "method": "ping", "params": [1]}')

        assert message.params is None


class TestResponses:
    """Tests for response envelopes."""

    def test_success(self):
        assert IDEResponse.success(3, {"ok": True}).to_dict() == {
            "jsonrpc": "2.0",
            "id": 3,
            "result": {"ok": True},
        }

    def test_error(self):
        response = IDEResponse.error(4, -32601, "Method not found: x").to_dict()

        assert response == {
            "jsonrpc": "2.0",
            "id": 4,
            "error": {"code": -32601, "message": "Method not found: x"},
        }

    def test_error_with_data(self):
        response = IDEResponse.error(5, -32603, "boom", data={"detail": 1}).to_dict()

        assert response["error"]["data"] == {"detail": 1}

    def test_notification_to_dict(self):
        notification = IDENotification(method="at_mentioned", params={"filePath": "/a"})

        assert json.loads(json.dumps(notification.to_dict())) == {
            "jsonrpc": "2.0",
            "method": "at_mentioned",
            "params": {"filePath": "/a"},
        }


class TestInitialize:
    """Tests for the initialize handshake payloads."""

    def test_params_from_dict(self):
        params = InitializeParams.from_dict({
            "protocolVersion": "2024-11-05",
            "clientInfo": {"name": "claude-code", "version": "1.0"},
        })

        assert params.protocol_version == "2024-11-05"
        assert params.client_info["name"] == "claude-code"
        assert params.capabilities == {}

    def test_result(self):
        result = InitializeResult(server_name="my-ide", server_version="0.1.0").to_dict()

        assert result == {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {
                "logging": {},
                "prompts": {"listChanged": True},
                "resources": {"subscribe": True, "listChanged": True},
                "tools": {"listChanged": True},
            },
            "serverInfo": {"name": "my-ide", "version": "0.1.0"},
        }

    def test_capabilities_without_logging(self):
        assert "logging" not in ServerCapabilities(logging=False).to_dict()


class TestNotificationParams:
    """Tests for server-pushed notification payloads."""

    def test_selection_changed(self):
        params = SelectionChangedParams(
            text="x = 1",
            file_path="/repo/a.py",
            file_url="file:///repo/a.py",
            selection=Range(start=Position(2, 0), end=Position(2, 5)),
        )

        assert params.to_dict() == {
            "text": "x = 1",
            "filePath": "/repo/a.py",
            "fileUrl": "file:///repo/a.py",
            "selection": {
                "start": {"line": 2, "character": 0},
                "end": {"line": 2, "character": 5},
                "isEmpty": False,
            },
        }

    def test_at_mentioned(self):
        params = AtMentionedParams(file_path="/repo/a.py", line_start=3, line_end=9)

        assert params.to_dict() == {"filePath": "/repo/a.py", "lineStart": 3, "lineEnd": 9}
