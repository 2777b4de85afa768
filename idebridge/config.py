"""Configuration for idebridge with validation."""

import ipaddress
import shutil
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict
import structlog

try:
    import toml
    HAS_TOML = True
except ImportError:
    HAS_TOML = False

log = structlog.get_logger()


class BridgeSettings(BaseModel):
    """IDE bridge server configuration."""
    ide_name: str = "idebridge"
    host: str = "127.0.0.1"
    shutdown_timeout_s: float = Field(gt=0, default=5.0)

    @field_validator('host')
    @classmethod
    def host_is_loopback(cls, v):
        try:
            address = ipaddress.ip_address(v)
        except ValueError:
            raise ValueError(f'Bridge host must be an IP address, got {v!r}')
        if not address.is_loopback:
            raise ValueError('Bridge host must be a loopback address')
        return v

    @field_validator('ide_name')
    @classmethod
    def ide_name_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError('IDE name cannot be empty')
        return v.strip()


class ReviewSettings(BaseModel):
    """Code review subprocess configuration."""
    # Interpolated into a shell command line, so no spaces or quotes
    model: str = Field(default="sonnet", pattern=r"^[\w.:\[\]-]+$")
    claude_executable: str = "claude"
    reply_language: Optional[str] = None
    # Delay before applying subprocess exit, so trailing output lands first
    exit_grace_ms: int = Field(ge=0, default=150)
    # Window for coalescing content notifications
    flush_interval_ms: int = Field(ge=0, default=50)

    @field_validator('model', 'claude_executable')
    @classmethod
    def not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError('Value cannot be empty')
        return v.strip()


class IDEBridgeConfig(BaseModel):
    """Main configuration for idebridge with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # Lock file directory override
    discovery_dir: Optional[Path] = None  # None = $CLAUDE_CONFIG_DIR/ide or ~/.claude/ide

    # Components
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    review: ReviewSettings = Field(default_factory=ReviewSettings)

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None

    def model_post_init(self, __context):
        """Normalise user paths after initialization."""
        if self.discovery_dir is not None:
            self.discovery_dir = Path(self.discovery_dir).expanduser()

    def resolved_discovery_dir(self) -> Path:
        """Directory where lock files are published."""
        from idebridge.ide.discovery import discovery_dir

        return self.discovery_dir or discovery_dir()

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'IDEBridgeConfig':
        """Load configuration from TOML file.

        Search order if path not provided:
        1. ./idebridge.toml (project-specific)
        2. ~/.idebridge/config.toml (user default)

        Args:
            path: Optional explicit config file path

        Returns:
            IDEBridgeConfig instance
        """
        if path is None:
            candidates = [
                Path("idebridge.toml"),
                Path("~/.idebridge/config.toml").expanduser()
            ]
            for candidate in candidates:
                if candidate.exists():
                    path = str(candidate)
                    log.info("config_found", path=path)
                    break

        if path and Path(path).exists():
            if not HAS_TOML:
                log.warning("toml_not_installed", fallback="defaults")
                return cls()

            try:
                data = toml.load(path)
                log.info("config_loaded", path=path)
                return cls(**data)
            except Exception as e:
                log.error("config_load_failed", path=path, error=str(e))
                return cls()

        log.info("config_using_defaults")
        return cls()

    def save(self, path: str):
        """Save configuration to TOML file.

        Args:
            path: File path to save to
        """
        if not HAS_TOML:
            raise RuntimeError("toml package not installed")

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            data = self.model_dump(mode='json', exclude_none=True)
            toml.dump(data, f)
        log.info("config_saved", path=path)


def validate_config(config: IDEBridgeConfig) -> list[str]:
    """Validate configuration and return warnings.

    Args:
        config: Config to validate

    Returns:
        List of warning messages
    """
    warnings = []

    if shutil.which(config.review.claude_executable) is None:
        warnings.append(
            f"'{config.review.claude_executable}' not found on PATH; "
            "code reviews will fail to start"
        )

    # The discovery directory must be writable or the bridge is invisible
    ide_dir = config.resolved_discovery_dir()
    try:
        ide_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        test_file = ide_dir / ".write_test"
        test_file.touch()
        test_file.unlink()
    except Exception as e:
        warnings.append(f"Discovery directory not writable: {e}")

    return warnings
