"""IDE Protocol Definitions.

JSON-RPC 2.0 messages exchanged with the claude CLI over the bridge
WebSocket. The CLI speaks MCP on top of it:
- Requests carry an ``id`` and expect a response
- Notifications have no ``id`` and never get one
- The server pushes editor context as notifications
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

JSONRPC_VERSION = "2.0"
MCP_PROTOCOL_VERSION = "2024-11-05"


class RequestMethod(str, Enum):
    """Request methods the bridge understands."""

    INITIALIZE = "initialize"
    PING = "ping"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"
    PROMPTS_LIST = "prompts/list"
    RESOURCES_LIST = "resources/list"


class NotificationMethod(str, Enum):
    """Notification methods."""

    # Client -> Server
    INITIALIZED = "notifications/initialized"
    IDE_CONNECTED = "ide_connected"

    # Server -> Client
    SELECTION_CHANGED = "selection_changed"
    AT_MENTIONED = "at_mentioned"


# Standard JSON-RPC error codes
class ErrorCode:
    """JSON-RPC error codes used by the bridge."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # MCP
    SERVER_NOT_INITIALIZED = -32002


class JsonRpcError(Exception):
    """Raised by a request handler to answer with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


@dataclass
class Position:
    """Position in a text document (0-indexed)."""

    line: int
    character: int

    def to_dict(self) -> dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass
class Range:
    """Range in a text document."""

    start: Position
    end: Position


@dataclass
class McpTool:
    """Tool descriptor advertised through ``tools/list``."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


# No tools are exposed; the bridge only pushes selection and mention context
MCP_TOOLS: list[McpTool] = []


@dataclass
class ServerCapabilities:
    """Capabilities announced in the initialize result."""

    logging: bool = True
    prompts_list_changed: bool = True
    resources_subscribe: bool = True
    resources_list_changed: bool = True
    tools_list_changed: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        capabilities: dict[str, Any] = {
            "prompts": {"listChanged": self.prompts_list_changed},
            "resources": {
                "subscribe": self.resources_subscribe,
                "listChanged": self.resources_list_changed,
            },
            "tools": {"listChanged": self.tools_list_changed},
        }
        if self.logging:
            capabilities = {"logging": {}, **capabilities}
        return capabilities


@dataclass
class IDERequest:
    """JSON-RPC request message."""

    method: str
    params: Optional[dict[str, Any]] = None
    id: Union[str, int, None] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IDERequest":
        """Parse from JSON-RPC format."""
        return cls(
            method=data["method"],
            params=data.get("params"),
            id=data.get("id"),
        )


@dataclass
class IDEResponse:
    """JSON-RPC response message."""

    id: Union[str, int, None]
    result: Optional[Any] = None
    error_data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        response: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
        }
        if self.error_data is not None:
            response["error"] = self.error_data
        else:
            response["result"] = self.result
        return response

    @classmethod
    def success(cls, id: Union[str, int, None], result: Any) -> "IDEResponse":
        """Create a success response."""
        return cls(id=id, result=result)

    @classmethod
    def error(
        cls,
        id: Union[str, int, None],
        code: int,
        message: str,
        data: Any = None,
    ) -> "IDEResponse":
        """Create an error response."""
        error_obj: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error_obj["data"] = data
        return cls(id=id, error_data=error_obj)


@dataclass
class IDENotification:
    """JSON-RPC notification message (no response expected)."""

    method: str
    params: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-RPC format."""
        result: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "method": self.method,
        }
        if self.params is not None:
            result["params"] = self.params
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IDENotification":
        """Parse from JSON-RPC format."""
        return cls(
            method=data["method"],
            params=data.get("params"),
        )


def parse_message(raw: Union[str, bytes]) -> Union[IDERequest, IDENotification, None]:
    """Parse one inbound frame.

    Returns None for anything that cannot be answered: invalid JSON, a
    non-object, a wrong ``jsonrpc`` version, or a missing method. Without a
    usable request there is no id to attribute an error response to.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or data.get("jsonrpc") != JSONRPC_VERSION:
        return None
    if not isinstance(data.get("method"), str):
        return None
    if not isinstance(data.get("params"), (dict, type(None))):
        data = {**data, "params": None}

    if "id" not in data:
        return IDENotification.from_dict(data)
    return IDERequest.from_dict(data)


# Request/Response parameter types
@dataclass
class InitializeParams:
    """Parameters for initialize request."""

    protocol_version: Optional[str] = None
    client_info: Optional[dict[str, Any]] = None
    capabilities: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InitializeParams":
        """Parse from dictionary."""
        return cls(
            protocol_version=data.get("protocolVersion"),
            client_info=data.get("clientInfo"),
            capabilities=data.get("capabilities") or {},
        )


@dataclass
class InitializeResult:
    """Result for initialize request."""

    server_name: str
    server_version: str
    capabilities: ServerCapabilities = field(default_factory=ServerCapabilities)
    protocol_version: str = MCP_PROTOCOL_VERSION

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "protocolVersion": self.protocol_version,
            "capabilities": self.capabilities.to_dict(),
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }


@dataclass
class SelectionChangedParams:
    """Editor selection pushed to the CLI."""

    text: str
    file_path: str
    file_url: str
    selection: Range
    is_empty: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "text": self.text,
            "filePath": self.file_path,
            "fileUrl": self.file_url,
            "selection": {
                "start": self.selection.start.to_dict(),
                "end": self.selection.end.to_dict(),
                "isEmpty": self.is_empty,
            },
        }


@dataclass
class AtMentionedParams:
    """File range the user @-mentioned."""

    file_path: str
    line_start: int
    line_end: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "filePath": self.file_path,
            "lineStart": self.line_start,
            "lineEnd": self.line_end,
        }
