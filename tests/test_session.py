"""Tests for the per-connection JSON-RPC session."""

import json

import pytest

from idebridge import __version__
from idebridge.core.events import EventType
from idebridge.ide.protocol import ErrorCode, McpTool
from idebridge.ide.session import JsonRpcSession


def request(method, id=1, params=None):
    message = {"jsonrpc": "2.0", "id": id, "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


def notification(method, params=None):
    message = {"jsonrpc": "2.0", "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


@pytest.fixture
def session(event_bus):
    return JsonRpcSession(ide_name="test-ide", event_bus=event_bus)


async def initialize(session):
    await session.handle_raw(request("initialize", params={"protocolVersion": "2024-11-05"}))
    await session.handle_raw(notification("notifications/initialized"))


class TestHandshake:
    """Tests for session initialization."""

    @pytest.mark.asyncio
    async def test_initialize(self, session):
        response = await session.handle_raw(request(
            "initialize",
            params={"protocolVersion": "2024-11-05", "clientInfo": {"name": "claude-code"}},
        ))

        assert response["id"] == 1
        assert response["result"]["serverInfo"] == {"name": "test-ide", "version": __version__}
        assert response["result"]["protocolVersion"] == "2024-11-05"
        assert session.client_info == {"name": "claude-code"}
        assert not session.initialized

    @pytest.mark.asyncio
    async def test_requests_before_initialized(self, session):
        response = await session.handle_raw(request("tools/list", id=7))

        assert response == {
            "jsonrpc": "2.0",
            "id": 7,
            "error": {"code": ErrorCode.SERVER_NOT_INITIALIZED, "message": "Server not initialized"},
        }

    @pytest.mark.asyncio
    async def test_ping_before_initialized(self, session):
        response = await session.handle_raw(request("ping"))

        assert response["result"] == {}

    @pytest.mark.asyncio
    async def test_initialized_notification(self, session):
        assert await session.handle_raw(notification("notifications/initialized")) is None
        assert session.initialized


class TestRequests:
    """Tests for requests after initialization."""

    @pytest.mark.asyncio
    async def test_tools_list_empty(self, session):
        await initialize(session)

        response = await session.handle_raw(request("tools/list", id=2))

        assert response["result"] == {"tools": []}

    @pytest.mark.asyncio
    async def test_custom_tools(self, event_bus):
        session = JsonRpcSession("test-ide", tools=[McpTool("openDiff", "Open a diff")])
        await initialize(session)

        response = await session.handle_raw(request("tools/list"))

        assert response["result"]["tools"][0]["name"] == "openDiff"
        assert response["result"]["tools"][0]["inputSchema"]["type"] == "object"

    @pytest.mark.asyncio
    async def test_tools_call_rejected(self, session):
        await initialize(session)

        response = await session.handle_raw(request("tools/call", params={"name": "openDiff"}))

        assert response["error"] == {
            "code": ErrorCode.METHOD_NOT_FOUND,
            "message": "Tool not found: openDiff",
        }

    @pytest.mark.asyncio
    async def test_empty_listings(self, session):
        await initialize(session)

        prompts = await session.handle_raw(request("prompts/list"))
        resources = await session.handle_raw(request("resources/list"))

        assert prompts["result"] == {"prompts": []}
        assert resources["result"] == {"resources": []}

    @pytest.mark.asyncio
    async def test_unknown_method(self, session):
        await initialize(session)

        response = await session.handle_raw(request("workspace/frobnicate", id="x"))

        assert response["id"] == "x"
        assert response["error"]["code"] == ErrorCode.METHOD_NOT_FOUND
        assert response["error"]["message"] == "Method not found: workspace/frobnicate"

    @pytest.mark.asyncio
    async def test_handler_failure_is_internal_error(self, session, mocker):
        await initialize(session)
        session._handlers["ping"] = mocker.AsyncMock(side_effect=ValueError("boom"))

        response = await session.handle_raw(request("ping"))

        assert response["error"] == {"code": ErrorCode.INTERNAL_ERROR, "message": "boom"}


class TestNotifications:
    """Tests for inbound notifications and malformed frames."""

    @pytest.mark.asyncio
    async def test_ide_connected_published(self, session, recorder):
        assert await session.handle_raw(notification("ide_connected", {"pid": 4242})) is None

        assert (EventType.CLIENT_CONNECTED, {"pid": 4242}) in recorder

    @pytest.mark.asyncio
    async def test_unknown_notification_ignored(self, session):
        assert await session.handle_raw(notification("something/else")) is None
        assert not session.initialized

    @pytest.mark.asyncio
    async def test_malformed_frames_dropped(self, session):
        assert await session.handle_raw("{not json") is None
        assert await session.handle_raw('{"jsonrpc": "2.0", "id": 1}') is None
