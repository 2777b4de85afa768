"""Lock files advertising a running bridge to the claude CLI.

Each bridge writes ``<discovery dir>/<port>.lock`` containing the port's
auth token and workspace folders. The CLI scans the directory to find IDEs
it can connect to.

Failures here are logged and swallowed: an open connection keeps working
without its lock file, it just cannot be discovered again.
"""

import json
import os
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import structlog

log = structlog.get_logger()

CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
LOCK_SUFFIX = ".lock"


@dataclass
class DiscoveryRecord:
    """Contents of one lock file."""

    pid: int
    workspace_folders: list[str] = field(default_factory=list)
    ide_name: str = "idebridge"
    transport: str = "ws"
    running_in_windows: bool = False
    auth_token: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "workspaceFolders": list(self.workspace_folders),
            "ideName": self.ide_name,
            "transport": self.transport,
            "runningInWindows": self.running_in_windows,
            "authToken": self.auth_token,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryRecord":
        return cls(
            pid=data["pid"],
            workspace_folders=list(data.get("workspaceFolders", [])),
            ide_name=data.get("ideName", ""),
            transport=data.get("transport", "ws"),
            running_in_windows=data.get("runningInWindows", False),
            auth_token=data.get("authToken", ""),
        )


def discovery_dir() -> Path:
    """Directory the CLI scans: ``$CLAUDE_CONFIG_DIR/ide`` or ``~/.claude/ide``."""
    config_dir = os.environ.get(CONFIG_DIR_ENV)
    if config_dir:
        return Path(config_dir).expanduser() / "ide"
    return Path.home() / ".claude" / "ide"


def lock_path(port: int, directory: Optional[Path] = None) -> Path:
    return (directory or discovery_dir()) / f"{port}{LOCK_SUFFIX}"


def publish(
    port: int,
    token: str,
    workspace_folders: Optional[list[str]] = None,
    ide_name: str = "idebridge",
    directory: Optional[Path] = None,
) -> Optional[Path]:
    """Write (or fully rewrite) the lock file for a port.

    Args:
        port: Port the bridge listens on
        token: Auth token clients must present
        workspace_folders: Folders open in the host application
        ide_name: Name shown by the CLI
        directory: Override for the discovery directory

    Returns:
        Path of the lock file, or None if it could not be written
    """
    record = DiscoveryRecord(
        pid=os.getpid(),
        workspace_folders=list(workspace_folders or []),
        ide_name=ide_name,
        running_in_windows=sys.platform == "win32",
        auth_token=token,
    )
    path = lock_path(port, directory)

    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        _write_private(path, json.dumps(record.to_dict()))
    except OSError as e:
        log.warning("lock_file_write_failed", path=str(path), error=str(e))
        return None

    log.debug("lock_file_written", path=str(path), folders=len(record.workspace_folders))
    return path


def _write_private(path: Path, content: str) -> None:
    """Replace a file atomically with owner-only permissions."""
    # mkstemp creates the file 0o600 already
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def retract(port: int, directory: Optional[Path] = None) -> bool:
    """Delete the lock file for a port.

    Returns:
        True if a file was removed; a missing file is not an error
    """
    path = lock_path(port, directory)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        log.warning("lock_file_delete_failed", path=str(path), error=str(e))
        return False

    log.debug("lock_file_deleted", path=str(path))
    return True


def read_record(port: int, directory: Optional[Path] = None) -> Optional[DiscoveryRecord]:
    """Read back the lock file for a port, if present and well-formed."""
    path = lock_path(port, directory)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return DiscoveryRecord.from_dict(data)
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, TypeError) as e:
        log.debug("lock_file_unreadable", path=str(path), error=str(e))
        return None


def list_records(directory: Optional[Path] = None) -> dict[int, DiscoveryRecord]:
    """All readable lock files in the discovery directory, keyed by port."""
    ide_dir = directory or discovery_dir()
    records: dict[int, DiscoveryRecord] = {}
    if not ide_dir.is_dir():
        return records

    for path in sorted(ide_dir.glob(f"*{LOCK_SUFFIX}")):
        try:
            port = int(path.stem)
        except ValueError:
            continue
        record = read_record(port, ide_dir)
        if record is not None:
            records[port] = record
    return records
