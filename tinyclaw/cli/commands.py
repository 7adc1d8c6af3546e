"""
TinyClaw CLI

Design principles (TinyClaw style):
- Strong modular boundaries
- Predictable lifecycle (start/stop)
- Centralized path & config handling
- Clear async orchestration
- Clean CLI UX
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Awaitable, Callable, Final, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from tinyclaw import __logo__, __version__


# ============================================================================
# CLI App
# ============================================================================

APP_NAME: Final[str] = "tinyclaw"

app = typer.Typer(
    name=APP_NAME,
    help=f"{__logo__} TinyClaw - chat channels in front of one AI worker",
    no_args_is_help=True,
)

console = Console()


# ============================================================================
# Logging
# ============================================================================

def _setup_logging(component: str, verbose: bool = False) -> None:
    """stderr sink plus a rotating file sink per component."""
    from tinyclaw.config.loader import load_config

    logs = load_config().paths.logs
    logs.mkdir(parents=True, exist_ok=True)

    level = "DEBUG" if verbose else "INFO"
    logger.remove()
    logger.add(sys.stderr, level=level)
    logger.add(
        logs / f"{component}.log",
        level=level,
        rotation="10 MB",
        retention=5,
        encoding="utf-8",
    )


# ============================================================================
# Runtime wiring
# ============================================================================

def _load_runtime():
    from tinyclaw.bus.queue import FileQueue, ResetFlag
    from tinyclaw.config.loader import load_config

    config = load_config()
    paths = config.paths.ensure()
    queue = FileQueue(paths.queue)
    reset_flag = ResetFlag(paths.reset_flag)
    return config, queue, reset_flag


def _make_provider(config):
    from tinyclaw.llm.claude_cli import ClaudeCLIProvider

    workdir = config.workspace_path
    workdir.mkdir(parents=True, exist_ok=True)

    return ClaudeCLIProvider(
        command=config.agent.command,
        workdir=str(workdir),
        timeout_s=config.agent.timeout_s,
        skip_permissions=config.agent.skip_permissions,
        default_model=config.agent.model or None,
    )


async def _run_until_signal(
    start: Callable[[], Awaitable[None]],
    stop: Callable[[], Awaitable[None]],
) -> None:
    """Start services, wait for SIGINT/SIGTERM, stop them."""
    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stopped.set)
        except NotImplementedError:
            pass

    await start()
    try:
        await stopped.wait()
    finally:
        console.print("\nShutting down...")
        await stop()


# ============================================================================
# Version
# ============================================================================

def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} tinyclaw v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """TinyClaw - chat channels in front of one AI worker."""
    pass


# ============================================================================
# Onboard
# ============================================================================

@app.command()
def onboard():
    """Write a default configuration file."""
    from tinyclaw.config.loader import get_config_path, save_config
    from tinyclaw.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config, config_path)
    config.paths.ensure()

    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print(f"[green]✓[/green] Queue ready at {config.paths.queue}")
    console.print("\nNext steps:")
    console.print("  1. Enable a channel in [cyan]~/.tinyclaw/config.json[/cyan]")
    console.print("  2. Run: [cyan]tinyclaw gateway[/cyan]")


# ============================================================================
# Processor
# ============================================================================

def _build_processor(config, queue, reset_flag):
    from tinyclaw.processor.service import QueueProcessor

    return QueueProcessor(
        queue,
        _make_provider(config),
        reset_flag,
        poll_interval=config.queue.poll_interval,
    )


@app.command()
def processor(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    no_webhook: bool = typer.Option(False, "--no-webhook", help="Do not serve the HTTP ingress"),
):
    """Run the sequential queue processor (and webhook server)."""
    from tinyclaw.webhook.server import WebhookServer

    _setup_logging("queue", verbose)
    config, queue, reset_flag = _load_runtime()

    worker = _build_processor(config, queue, reset_flag)
    webhook = (
        WebhookServer(queue, config.webhook)
        if config.webhook.enabled and not no_webhook
        else None
    )

    async def start():
        await worker.start()
        if webhook:
            await webhook.start()

    async def stop():
        if webhook:
            await webhook.stop()
        await worker.stop()

    asyncio.run(_run_until_signal(start, stop))


# ============================================================================
# Channels
# ============================================================================

@app.command()
def channel(
    name: str = typer.Argument(..., help="whatsapp | telegram | discord"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run a single channel adapter."""
    from tinyclaw.channels.manager import CHANNEL_NAMES, ChannelManager

    if name not in CHANNEL_NAMES:
        console.print(f"[red]Unknown channel: {name}[/red]")
        raise typer.Exit(1)

    _setup_logging(name, verbose)
    config, queue, reset_flag = _load_runtime()

    manager = ChannelManager(config, queue, reset_flag, only=[name])
    if not manager.channels:
        console.print(f"[red]Channel {name} failed to initialize[/red]")
        raise typer.Exit(1)

    asyncio.run(_run_until_signal(manager.start, manager.stop))


# ============================================================================
# Gateway
# ============================================================================

@app.command()
def gateway(
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Run processor, webhook, enabled channels and heartbeat together."""
    from tinyclaw.channels.manager import ChannelManager
    from tinyclaw.heartbeat.service import HeartbeatService
    from tinyclaw.webhook.server import WebhookServer

    _setup_logging("gateway", verbose)
    config, queue, reset_flag = _load_runtime()

    console.print(f"{__logo__} Starting TinyClaw gateway...")

    worker = _build_processor(config, queue, reset_flag)
    channels = ChannelManager(config, queue, reset_flag)
    webhook = WebhookServer(queue, config.webhook) if config.webhook.enabled else None
    heartbeat = (
        HeartbeatService(
            queue,
            config.workspace_path,
            interval_s=config.heartbeat.interval_s,
            poll_interval=config.queue.poll_interval,
        )
        if config.heartbeat.enabled
        else None
    )

    async def start():
        await worker.start()
        if webhook:
            await webhook.start()
        await channels.start()
        if heartbeat:
            await heartbeat.start()

    async def stop():
        if heartbeat:
            await heartbeat.stop()
        await channels.stop()
        if webhook:
            await webhook.stop()
        await worker.stop()

    asyncio.run(_run_until_signal(start, stop))


# ============================================================================
# Direct send
# ============================================================================

@app.command()
def send(
    message: str = typer.Argument(..., help="Message to send"),
    fresh: bool = typer.Option(False, "--fresh", help="Start a new conversation"),
):
    """Send one message straight to the AI, bypassing the queue."""
    from tinyclaw.llm.base import ProviderError

    config, _, _ = _load_runtime()
    provider = _make_provider(config)

    try:
        reply = asyncio.run(provider.invoke(message, continue_conversation=not fresh))
    except ProviderError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n{__logo__} {reply.strip()}")


# ============================================================================
# Reset
# ============================================================================

@app.command()
def reset():
    """Start a fresh conversation with the next message."""
    _, _, reset_flag = _load_runtime()
    reset_flag.set()
    console.print("[green]✓[/green] Reset flag set")


# ============================================================================
# Model
# ============================================================================

@app.command()
def model(
    name: Optional[str] = typer.Argument(None, help="sonnet | opus | full model id"),
):
    """Show or change the model used by the processor."""
    from tinyclaw.config.loader import get_config_path, load_config, save_config
    from tinyclaw.llm.claude_cli import resolve_model

    config = load_config()

    if name is None:
        current = config.agent.model or "(CLI default)"
        console.print(f"Model: {current} → {resolve_model(config.agent.model) or 'default'}")
        return

    config.agent.model = name
    save_config(config, get_config_path())
    console.print(f"[green]✓[/green] Model set to {name} ({resolve_model(name)})")
    console.print("Restart the processor to apply.")


# ============================================================================
# Status
# ============================================================================

@app.command()
def status():
    """Show queue and channel status."""
    from tinyclaw.channels.manager import CHANNEL_NAMES
    from tinyclaw.config.loader import get_config_path

    config_path = get_config_path()
    config, queue, reset_flag = _load_runtime()
    paths = config.paths

    console.print(f"{__logo__} TinyClaw Status\n")
    console.print(f"Config: {config_path} {'[green]✓[/green]' if config_path.exists() else '[red]✗[/red]'}")
    console.print(f"Queue: {paths.queue}")
    console.print(f"Model: {config.agent.model or '[dim]CLI default[/dim]'}")
    console.print(f"Reset pending: {'yes' if reset_flag.is_set() else 'no'}\n")

    table = Table(title="Queue")
    table.add_column("Stage")
    table.add_column("Records", justify="right")
    for stage, count in queue.counts().items():
        table.add_row(stage, str(count))
    console.print(table)

    for name in CHANNEL_NAMES:
        section = getattr(config.channels, name)
        if not section.enabled:
            state = "[dim]disabled[/dim]"
        elif paths.ready_marker(name).exists():
            state = "[green]ready[/green]"
        else:
            state = "enabled"
        console.print(f"{name}: {state}")


if __name__ == "__main__":
    app()
