"""idebridge CLI - IDE bridge and code reviews for the claude CLI."""

import asyncio
import os
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel

from idebridge import __version__
from idebridge.config import IDEBridgeConfig, ReviewSettings, validate_config
from idebridge.core.errors import BridgeStartError
from idebridge.core.events import EventBus, EventType
from idebridge.ide.bridge import ENABLE_ENV, PORT_ENV, BridgeController
from idebridge.logging import setup_logging
from idebridge.review import CodeReview, ReviewStatus

console = Console()


def _load_config(config_path: str = None) -> IDEBridgeConfig:
    """Load configuration and configure logging from it."""
    config = IDEBridgeConfig.load(config_path)
    setup_logging(
        level=config.log_level,
        log_file=str(config.log_file) if config.log_file else None,
    )
    return config


@click.group()
@click.version_option(version=__version__)
def cli():
    """idebridge - IDE bridge for the claude CLI"""
    pass


@cli.command()
@click.option(
    "--workspace",
    "-w",
    "workspaces",
    multiple=True,
    type=click.Path(file_okay=False),
    help="Workspace folder to advertise (repeatable, default: current directory)",
)
@click.option("--ide-name", help="Name the claude CLI shows for this IDE")
@click.option("--config-path", help="Path to config file")
def serve(workspaces: tuple, ide_name: str = None, config_path: str = None):
    """Run an IDE bridge until interrupted."""

    config = _load_config(config_path)
    folders = [str(Path(w).resolve()) for w in workspaces] or [str(Path.cwd())]

    bus = EventBus()
    bus.subscribe(
        EventType.PEER_CONNECTED,
        lambda data: console.print(f"[green]● Peer connected[/] [dim]{data['client']}[/]"),
    )
    bus.subscribe(
        EventType.PEER_DISCONNECTED,
        lambda data: console.print(f"[dim]○ Peer disconnected {data['client']}[/]"),
    )
    bus.subscribe(
        EventType.PEER_REJECTED,
        lambda data: console.print(f"[yellow]⚠ Rejected unauthorized peer {data['client']}[/]"),
    )

    controller = BridgeController(
        settings=config.bridge,
        discovery_dir=config.discovery_dir,
        event_bus=bus,
    )
    if ide_name:
        controller.set_options(ide_name=ide_name)

    async def execute():
        await controller.enable(folders)
        bridge = controller.bridge
        env = controller.child_env({})

        lines = [
            f"[bold]Port:[/] {bridge.port}",
            f"[bold]Lock file:[/] {bridge.lock_path or '[red]not written[/]'}",
            f"[bold]Workspace:[/] {', '.join(folders)}",
            "",
            "[dim]Launch claude with:[/]",
            f"  {PORT_ENV}={env[PORT_ENV]} {ENABLE_ENV}={env[ENABLE_ENV]} claude",
        ]
        console.print(Panel("\n".join(lines), title=f"🔌 {controller.settings.ide_name}"))
        console.print("[dim]Press Ctrl-C to stop[/dim]")

        try:
            await asyncio.Event().wait()
        finally:
            await controller.disable()

    try:
        asyncio.run(execute())
    except BridgeStartError as e:
        console.print(f"[red]✗ Bridge failed to start: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[dim]Bridge stopped[/dim]")


@cli.command()
@click.argument("repo", type=click.Path(), default=".")
@click.option("--model", "-m", help="Model to review with (default from config)")
@click.option("--language", help="Language the review should be written in")
@click.option("--ide", is_flag=True, help="Start a bridge and connect the review to it")
@click.option("--config-path", help="Path to config file")
def review(repo: str, model: str = None, language: str = None, ide: bool = False,
           config_path: str = None):
    """Review the current branch of a git repository."""

    config = _load_config(config_path)

    overrides = {}
    if model:
        overrides["model"] = model
    if language:
        overrides["reply_language"] = language
    try:
        settings = ReviewSettings.model_validate(
            {**config.review.model_dump(), **overrides}
        )
    except ValidationError as e:
        raise click.BadParameter(str(e), param_hint="--model")

    repo_path = Path(repo).resolve()
    console.print(Panel(f"[bold blue]Repository:[/] {repo_path}", title="🔍 Code Review"))

    bus = EventBus()
    printed = 0

    def on_content(content: str):
        nonlocal printed
        if len(content) < printed:
            printed = 0
        console.print(content[printed:], end="", markup=False, highlight=False)
        printed = len(content)

    def on_status(state):
        if state.status is ReviewStatus.STREAMING:
            console.print(f"[dim]Model session started ({settings.model})[/dim]\n")

    bus.subscribe(EventType.REVIEW_CONTENT_UPDATED, on_content)
    bus.subscribe(EventType.REVIEW_STATUS_CHANGED, on_status)

    async def execute():
        controller = None
        env = None
        if ide:
            controller = BridgeController(
                settings=config.bridge,
                discovery_dir=config.discovery_dir,
                event_bus=bus,
            )
            await controller.enable([str(repo_path)])
            env = controller.child_env(os.environ)
            console.print(f"[dim]IDE bridge on port {controller.status().port}[/dim]")

        runner = CodeReview(repo_path, settings=settings, event_bus=bus, env=env)
        try:
            await runner.start()
            return await runner.wait()
        finally:
            if runner.running:
                await runner.stop()
            if controller is not None:
                await controller.disable()

    try:
        state = asyncio.run(execute())
    except BridgeStartError as e:
        console.print(f"[red]✗ Bridge failed to start: {e}[/red]")
        sys.exit(1)

    console.print()
    if state.status is ReviewStatus.COMPLETE:
        console.print("[green]✓ Review complete[/green]")
        if state.model:
            console.print(f"[dim]Model: {state.model}[/dim]")
        if state.cost is not None:
            console.print(f"[dim]Cost: ${state.cost:.4f}[/dim]")
    elif state.status is ReviewStatus.ERROR:
        console.print(f"[red]✗ Review failed: {state.error}[/red]")
        sys.exit(1)
    else:
        console.print(f"[yellow]⚠ Review ended without a result ({state.status.value})[/yellow]")
        sys.exit(1)


@cli.command()
@click.option("--config-path", help="Path to config file")
def lockfiles(config_path: str = None):
    """List IDE lock files visible to the claude CLI."""

    from rich.table import Table
    from idebridge.ide.discovery import list_records

    config = _load_config(config_path)
    ide_dir = config.resolved_discovery_dir()
    records = list_records(ide_dir)

    if not records:
        console.print(f"[dim]No lock files in {ide_dir}[/dim]")
        return

    table = Table(title=f"🔒 Lock files in {ide_dir}", show_header=True)
    table.add_column("Port", style="cyan", justify="right")
    table.add_column("PID", justify="right")
    table.add_column("IDE", style="bold")
    table.add_column("Transport")
    table.add_column("Workspace folders", style="dim")

    for port, record in records.items():
        table.add_row(
            str(port),
            str(record.pid),
            record.ide_name,
            record.transport,
            "\n".join(record.workspace_folders) or "-",
        )

    console.print(table)


@cli.command("validate-config")
@click.option("--config-path", help="Path to config file to validate")
def validate_config_cmd(config_path: str = None):
    """Check configuration for problems."""

    config = _load_config(config_path)
    warnings = validate_config(config)

    if not warnings:
        console.print("[green]✓ Configuration OK[/green]")
        return

    for warning in warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")


if __name__ == "__main__":
    cli()
