"""JSON-RPC session for one bridge connection.

Transport-free: the bridge hands in raw frames and sends back whatever
response comes out. Each connection gets its own session, so the
initialization handshake never leaks between peers.
"""

from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from idebridge import __version__
from idebridge.core.events import EventBus, EventType
from idebridge.ide.protocol import (
    MCP_TOOLS,
    ErrorCode,
    IDENotification,
    IDERequest,
    IDEResponse,
    InitializeParams,
    InitializeResult,
    JsonRpcError,
    McpTool,
    NotificationMethod,
    RequestMethod,
    parse_message,
)

log = structlog.get_logger()

Handler = Callable[[dict[str, Any]], Awaitable[Any]]

# Methods answered before the client sends notifications/initialized
PRE_INIT_METHODS = frozenset({RequestMethod.INITIALIZE.value, RequestMethod.PING.value})


class JsonRpcSession:
    """Protocol state machine for one connection.

    The session starts uninitialized. ``initialize`` and ``ping`` are always
    answered; every other request gets ``Server not initialized`` until the
    client sends ``notifications/initialized``.
    """

    def __init__(
        self,
        ide_name: str,
        tools: Optional[list[McpTool]] = None,
        event_bus: Optional[EventBus] = None,
    ):
        """Initialize a session.

        Args:
            ide_name: Server name reported in the initialize result
            tools: Tool descriptors for tools/list (none by default)
            event_bus: Optional bus for client lifecycle events
        """
        self.ide_name = ide_name
        self.tools = list(MCP_TOOLS if tools is None else tools)
        self.event_bus = event_bus
        self.initialized = False
        self.client_info: Optional[dict[str, Any]] = None
        self._handlers: dict[str, Handler] = {}
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register request handlers."""
        self._handlers = {
            RequestMethod.INITIALIZE.value: self._handle_initialize,
            RequestMethod.PING.value: self._handle_ping,
            RequestMethod.TOOLS_LIST.value: self._handle_tools_list,
            RequestMethod.TOOLS_CALL.value: self._handle_tools_call,
            RequestMethod.PROMPTS_LIST.value: self._handle_prompts_list,
            RequestMethod.RESOURCES_LIST.value: self._handle_resources_list,
        }

    async def handle_raw(self, raw: Union[str, bytes]) -> Optional[dict[str, Any]]:
        """Handle one inbound frame.

        Returns:
            Response to send back, or None for notifications and frames
            that are dropped as malformed
        """
        message = parse_message(raw)
        if message is None:
            log.debug("jsonrpc_message_dropped", size=len(raw))
            return None

        if isinstance(message, IDENotification):
            await self._handle_notification(message)
            return None

        response = await self._handle_request(message)
        return response.to_dict()

    async def _handle_notification(self, notification: IDENotification) -> None:
        """Handle a notification (no response needed)."""
        log.debug("notification_received", method=notification.method)

        if notification.method == NotificationMethod.INITIALIZED.value:
            self.initialized = True
            log.info("ide_session_initialized", client=self.client_info)
        elif notification.method == NotificationMethod.IDE_CONNECTED.value:
            pid = (notification.params or {}).get("pid")
            log.info("ide_client_connected", pid=pid)
            if self.event_bus is not None:
                self.event_bus.emit(EventType.CLIENT_CONNECTED, {"pid": pid})

    async def _handle_request(self, request: IDERequest) -> IDEResponse:
        """Handle a request and return a response."""
        log.debug("request_received", method=request.method, id=request.id)

        if not self.initialized and request.method not in PRE_INIT_METHODS:
            return IDEResponse.error(
                request.id,
                ErrorCode.SERVER_NOT_INITIALIZED,
                "Server not initialized",
            )

        handler = self._handlers.get(request.method)
        if not handler:
            return IDEResponse.error(
                request.id,
                ErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}",
            )

        try:
            result = await handler(request.params or {})
            return IDEResponse.success(request.id, result)
        except JsonRpcError as e:
            return IDEResponse.error(request.id, e.code, e.message, e.data)
        except Exception as e:
            log.error("request_handler_error", method=request.method, error=str(e))
            return IDEResponse.error(request.id, ErrorCode.INTERNAL_ERROR, str(e))

    # Lifecycle handlers
    async def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        """Handle initialize request."""
        init_params = InitializeParams.from_dict(params)
        self.client_info = init_params.client_info
        log.info(
            "ide_session_initialize",
            client=init_params.client_info,
            protocol_version=init_params.protocol_version,
        )
        result = InitializeResult(server_name=self.ide_name, server_version=__version__)
        return result.to_dict()

    async def _handle_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    # Capability listings
    async def _handle_tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [tool.to_dict() for tool in self.tools]}

    async def _handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        """No tool is invocable; report the requested name back."""
        raise JsonRpcError(
            ErrorCode.METHOD_NOT_FOUND, f"Tool not found: {params.get('name')}"
        )

    async def _handle_prompts_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"prompts": []}

    async def _handle_resources_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resources": []}
