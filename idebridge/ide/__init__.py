"""IDE bridge for the claude CLI.

Provides the authenticated WebSocket server the CLI connects to when it is
launched with ``CLAUDE_CODE_SSE_PORT`` set.

Features:
- Lock file discovery under ``~/.claude/ide``
- Token authentication with a single active peer
- MCP-style JSON-RPC handshake
- Selection and @-mention notifications pushed to the CLI

Usage:
    idebridge serve --workspace .   # Run a bridge until Ctrl-C
"""

from idebridge.ide.protocol import (
    AtMentionedParams,
    IDENotification,
    IDERequest,
    IDEResponse,
    SelectionChangedParams,
    ServerCapabilities,
)
from idebridge.ide.session import JsonRpcSession
from idebridge.ide.bridge import BridgeController, BridgeStatus, IDEBridge

__all__ = [
    "AtMentionedParams",
    "BridgeController",
    "BridgeStatus",
    "IDEBridge",
    "IDENotification",
    "IDERequest",
    "IDEResponse",
    "JsonRpcSession",
    "SelectionChangedParams",
    "ServerCapabilities",
]
