"""Shared test fixtures."""

import pytest
import tempfile
from pathlib import Path


@pytest.fixture
def temp_dir():
    """Temporary directory for tests."""
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def ide_dir(temp_dir, monkeypatch):
    """Discovery directory isolated from the real ~/.claude."""
    monkeypatch.setenv("CLAUDE_CONFIG_DIR", str(temp_dir / "claude"))
    return temp_dir / "claude" / "ide"


@pytest.fixture
def event_bus():
    """Test event bus."""
    from idebridge.core.events import EventBus

    return EventBus()


@pytest.fixture
def recorder(event_bus):
    """Collects every event emitted on the bus as (type, data) pairs."""
    from idebridge.core.events import EventType

    events = []
    for event_type in EventType:
        event_bus.subscribe(
            event_type, lambda data, t=event_type: events.append((t, data))
        )
    return events


@pytest.fixture
def fake_claude(temp_dir):
    """Write an executable that prints the given stream-json lines and exits."""

    def make(lines, exit_code=0, name="claude"):
        script = temp_dir / name
        body = "\n".join(lines)
        script.write_text(
            "#!/bin/sh\n"
            "cat <<'STREAM'\n"
            f"{body}\n"
            "STREAM\n"
            f"exit {exit_code}\n"
        )
        script.chmod(0o755)
        return str(script)

    return make
