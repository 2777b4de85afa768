"""IDE bridge server.

A FastAPI WebSocket endpoint served by uvicorn on an ephemeral loopback
port. The claude CLI finds it through the lock file, authenticates with the
token from that file, and then speaks JSON-RPC over the socket.

Exactly one peer is active at a time: a newly authenticated connection
closes and replaces the previous one.
"""

import asyncio
import contextlib
import json
import secrets
import socket
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from idebridge import __version__
from idebridge.config import BridgeSettings
from idebridge.core.errors import BridgeNotRunningError, BridgeStartError, describe_error
from idebridge.core.events import EventBus, EventType
from idebridge.ide import discovery
from idebridge.ide.protocol import (
    AtMentionedParams,
    IDENotification,
    NotificationMethod,
    SelectionChangedParams,
)
from idebridge.ide.session import JsonRpcSession

log = structlog.get_logger()

AUTH_HEADER = "x-claude-code-ide-authorization"
POLICY_VIOLATION = 1008

# Environment variables the claude CLI reads to find the bridge
PORT_ENV = "CLAUDE_CODE_SSE_PORT"
ENABLE_ENV = "ENABLE_IDE_INTEGRATION"

STARTUP_TIMEOUT_S = 10.0


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server running inside a host's event loop.

    Signal handling stays with the host: uvicorn would otherwise install its
    own SIGINT/SIGTERM handlers and quietly stop serving on Ctrl-C.
    """

    def __init__(self, config: uvicorn.Config):
        super().__init__(config)
        self.started_event = asyncio.Event()

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self.started_event.set()


@dataclass(frozen=True)
class BridgeStatus:
    """Answer to a status query."""

    enabled: bool
    port: Optional[int]

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "port": self.port}


class IDEBridge:
    """One bridge instance: token, listening socket, lock file, active peer.

    Lifecycle is ``created -> running -> disposed``; a disposed bridge is
    not restarted, a new instance (with a new token) is created instead.
    If the server ends on its own the lock file is withdrawn and ``running``
    turns False; ``BridgeController.enable`` then replaces the instance.
    """

    def __init__(
        self,
        settings: Optional[BridgeSettings] = None,
        workspace_folders: Optional[list[str]] = None,
        discovery_dir: Optional[Path] = None,
        event_bus: Optional[EventBus] = None,
    ):
        """Initialize a bridge.

        Args:
            settings: Bridge settings (IDE name, host, shutdown timeout)
            workspace_folders: Folders to advertise in the lock file
            discovery_dir: Override for the lock file directory
            event_bus: Bus receiving peer lifecycle events
        """
        self.settings = settings or BridgeSettings()
        self.ide_name = self.settings.ide_name
        self.workspace_folders = list(workspace_folders or [])
        self.discovery_dir = discovery_dir
        self.event_bus = event_bus or EventBus()
        self.auth_token = str(uuid.uuid4())
        self.port: Optional[int] = None
        self.lock_path: Optional[Path] = None
        self.disposed = False

        self._active: Optional[WebSocket] = None
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task] = None
        self.app = self._create_app()

    # ------------------------------------------------------------------
    # ASGI application
    # ------------------------------------------------------------------

    def _create_app(self) -> FastAPI:
        app = FastAPI(title="idebridge", version=__version__, docs_url=None, redoc_url=None)

        @app.websocket("/")
        async def bridge_endpoint(websocket: WebSocket):
            await self._handle_connection(websocket)

        return app

    def _authorized(self, token: Optional[str]) -> bool:
        return token is not None and secrets.compare_digest(token, self.auth_token)

    async def _handle_connection(self, websocket: WebSocket) -> None:
        """Authenticate, displace the previous peer, then serve JSON-RPC."""
        client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else None

        if not self._authorized(websocket.headers.get(AUTH_HEADER)):
            log.warning("ide_bridge_unauthorized", client=client)
            self.event_bus.emit(EventType.PEER_REJECTED, {"client": client})
            # Accept first so the client sees a close code, not a failed upgrade
            await websocket.accept()
            await websocket.close(code=POLICY_VIOLATION, reason="Unauthorized")
            return

        previous, self._active = self._active, websocket
        if previous is not None and previous is not websocket:
            log.info("ide_bridge_peer_displaced", client=client)
            await _close_quietly(previous)

        # Echo the first requested subprotocol (the CLI asks for "mcp")
        subprotocols = websocket.scope.get("subprotocols") or []
        await websocket.accept(subprotocol=subprotocols[0] if subprotocols else None)
        log.info("ide_bridge_peer_connected", client=client)
        self.event_bus.emit(EventType.PEER_CONNECTED, {"client": client})

        session = JsonRpcSession(ide_name=self.ide_name, event_bus=self.event_bus)
        try:
            await self._serve_session(websocket, session)
        finally:
            if self._active is websocket:
                self._active = None
            log.info("ide_bridge_peer_disconnected", client=client)
            self.event_bus.emit(EventType.PEER_DISCONNECTED, {"client": client})

    async def _serve_session(self, websocket: WebSocket, session: JsonRpcSession) -> None:
        """Process frames one at a time until the peer goes away."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")

            response = await session.handle_raw(raw)
            if response is None:
                continue
            try:
                await websocket.send_text(json.dumps(response))
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                log.debug("ide_bridge_reply_failed", error=str(e))
                return

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Bind a loopback port, start serving, and publish the lock file.

        Returns:
            The bound port

        Raises:
            BridgeStartError: If the socket or server could not be started
        """
        if self.disposed:
            raise BridgeStartError("Bridge was disposed; create a new instance")
        if self.running:
            return self.port

        family = socket.AF_INET6 if ":" in self.settings.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.bind((self.settings.host, 0))
        except OSError as e:
            sock.close()
            raise BridgeStartError(str(describe_error(e))) from e
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            lifespan="off",
            log_config=None,
            log_level="warning",
            access_log=False,
            timeout_graceful_shutdown=self.settings.shutdown_timeout_s,
        )
        server = _EmbeddedServer(config)
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))
        started = asyncio.create_task(server.started_event.wait())
        await asyncio.wait(
            {serve_task, started}, timeout=STARTUP_TIMEOUT_S, return_when=asyncio.FIRST_COMPLETED
        )
        started.cancel()

        if not server.started_event.is_set():
            server.should_exit = True
            if serve_task.done():
                error = serve_task.exception() if not serve_task.cancelled() else None
            else:
                serve_task.cancel()
                error = "timed out"
            sock.close()
            raise BridgeStartError(f"Bridge server failed to start: {error}")

        self._server = server
        self._serve_task = serve_task
        serve_task.add_done_callback(self._on_serve_done)

        self.lock_path = discovery.publish(
            self.port,
            self.auth_token,
            self.workspace_folders,
            self.ide_name,
            directory=self.discovery_dir,
        )
        log.info("ide_bridge_started", port=self.port, lock_path=str(self.lock_path))
        return self.port

    async def stop(self) -> None:
        """Remove the lock file, drop the peer, and shut the server down."""
        if self.disposed:
            return
        self.disposed = True

        if self.port is not None:
            discovery.retract(self.port, directory=self.discovery_dir)

        active, self._active = self._active, None
        if active is not None:
            await _close_quietly(active)

        if self._server is not None and self._serve_task is not None and not self._serve_task.done():
            self._server.should_exit = True
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._serve_task), timeout=self.settings.shutdown_timeout_s
                )
            except asyncio.TimeoutError:
                log.warning("ide_bridge_shutdown_timeout", port=self.port)
                self._server.force_exit = True
                self._serve_task.cancel()
            except Exception as e:
                log.warning("ide_bridge_shutdown_error", error=str(e))
        self._serve_task = None
        log.info("ide_bridge_disposed", port=self.port)

    def _on_serve_done(self, task: asyncio.Task) -> None:
        """Withdraw the lock file when the server ends without ``stop``."""
        error = task.exception() if not task.cancelled() else None
        if self.disposed or task is not self._serve_task:
            return
        log.warning(
            "ide_bridge_server_stopped_unexpectedly",
            port=self.port,
            error=str(error) if error else None,
        )
        if self.port is not None:
            discovery.retract(self.port, directory=self.discovery_dir)
        self.lock_path = None

    @property
    def running(self) -> bool:
        return (
            self._serve_task is not None
            and not self._serve_task.done()
            and not self.disposed
        )

    @property
    def has_peer(self) -> bool:
        return self._active is not None and _is_open(self._active)

    # ------------------------------------------------------------------
    # Host-facing operations
    # ------------------------------------------------------------------

    async def send_notification(self, method: str, params: Optional[dict[str, Any]] = None) -> bool:
        """Push a notification to the active peer.

        Returns:
            True if it was sent; False when there is no open peer or the
            send raced a disconnect
        """
        peer = self._active
        if peer is None or not _is_open(peer):
            return False

        message = json.dumps(IDENotification(method=method, params=params).to_dict())
        try:
            await peer.send_text(message)
        except Exception as e:
            log.debug("ide_bridge_notify_failed", method=method, error=str(e))
            return False
        log.debug("ide_bridge_notified", method=method)
        return True

    async def send_selection_changed(self, params: Union[SelectionChangedParams, Mapping[str, Any]]) -> bool:
        return await self.send_notification(
            NotificationMethod.SELECTION_CHANGED.value, _payload(params)
        )

    async def send_at_mentioned(self, params: Union[AtMentionedParams, Mapping[str, Any]]) -> bool:
        return await self.send_notification(
            NotificationMethod.AT_MENTIONED.value, _payload(params)
        )

    def update_workspace_folders(self, folders: list[str]) -> None:
        """Replace the advertised folders and rewrite the lock file."""
        self.workspace_folders = list(folders)
        if self.port is not None and not self.disposed:
            self.lock_path = discovery.publish(
                self.port,
                self.auth_token,
                self.workspace_folders,
                self.ide_name,
                directory=self.discovery_dir,
            )
        log.info("ide_bridge_workspace_updated", folders=self.workspace_folders)

    def child_env(self, env: Mapping[str, str]) -> dict[str, str]:
        """Copy of ``env`` that points a claude subprocess at this bridge."""
        if self.port is None:
            raise BridgeNotRunningError("Bridge has no port; call start() first")
        return {**env, PORT_ENV: str(self.port), ENABLE_ENV: "true"}


def _payload(params: Any) -> dict[str, Any]:
    if hasattr(params, "to_dict"):
        return params.to_dict()
    return dict(params)


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


async def _close_quietly(websocket: WebSocket) -> None:
    try:
        await websocket.close()
    except Exception as e:
        log.debug("ide_bridge_close_failed", error=str(e))


class BridgeController:
    """Owns at most one bridge and toggles it on request.

    The host keeps one controller and passes it to whatever needs to push
    notifications; there is no module-level instance.
    """

    def __init__(
        self,
        settings: Optional[BridgeSettings] = None,
        discovery_dir: Optional[Path] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.settings = settings or BridgeSettings()
        self.discovery_dir = discovery_dir
        self.event_bus = event_bus or EventBus()
        self.bridge: Optional[IDEBridge] = None

    def set_options(self, ide_name: Optional[str] = None) -> None:
        """Change options used the next time a bridge is started."""
        if ide_name is not None:
            self.settings = self.settings.model_copy(update={"ide_name": ide_name})

    async def enable(self, workspace_folders: Optional[list[str]] = None) -> bool:
        """Start the bridge, or just update its folders if already running.

        Returns:
            The new enabled state (always True)
        """
        if self.bridge is not None and not self.bridge.running:
            log.info("ide_bridge_replacing_stopped", port=self.bridge.port)
            await self.disable()

        if self.bridge is None:
            bridge = IDEBridge(
                settings=self.settings,
                workspace_folders=workspace_folders or [],
                discovery_dir=self.discovery_dir,
                event_bus=self.event_bus,
            )
            await bridge.start()
            self.bridge = bridge
            log.info("ide_bridge_enabled", port=bridge.port)
        elif workspace_folders is not None:
            self.bridge.update_workspace_folders(workspace_folders)
        return True

    async def disable(self) -> bool:
        """Stop the bridge if it is running.

        Returns:
            The new enabled state (always False)
        """
        bridge, self.bridge = self.bridge, None
        if bridge is not None:
            await bridge.stop()
            log.info("ide_bridge_disabled")
        return False

    async def set_enabled(self, enabled: bool, workspace_folders: Optional[list[str]] = None) -> bool:
        if enabled:
            return await self.enable(workspace_folders)
        return await self.disable()

    def status(self) -> BridgeStatus:
        return BridgeStatus(
            enabled=self.bridge is not None and self.bridge.running,
            port=self.bridge.port if self.bridge is not None else None,
        )

    def update_workspace_folders(self, folders: list[str]) -> None:
        if self.bridge is not None:
            self.bridge.update_workspace_folders(folders)

    async def send_selection_changed(self, params: Union[SelectionChangedParams, Mapping[str, Any]]) -> bool:
        if self.bridge is None:
            return False
        return await self.bridge.send_selection_changed(params)

    async def send_at_mentioned(self, params: Union[AtMentionedParams, Mapping[str, Any]]) -> bool:
        if self.bridge is None:
            return False
        return await self.bridge.send_at_mentioned(params)

    def child_env(self, env: Mapping[str, str]) -> dict[str, str]:
        """Child environment for the running bridge, or ``env`` unchanged."""
        if self.bridge is None:
            return dict(env)
        return self.bridge.child_env(env)
