"""CLI commands for Stream Watch."""

from __future__ import annotations

import logging
import signal
from dataclasses import dataclass
from typing import Any, Callable, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from streamwatch.services import ConfigService
from streamwatch.services.errors import (
    AuthorizationRequired,
    ChannelAlreadyTracked,
    StreamWatchError,
)
from streamwatch.services.monitor_service import StreamMonitor

logger = logging.getLogger(__name__)

GENERIC_ERROR = "❌ Internal error processing command. Please try again."

config_service = ConfigService()
console = Console()

app = typer.Typer(
    help="Stream Watch - go-live notifications for Twitch channels",
    rich_markup_mode="rich",
)


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    message: str


def execute(action: Callable[[], str]) -> CommandResult:
    """Run a command and turn any failure into a typed result."""
    try:
        return CommandResult(True, action())
    except AuthorizationRequired as e:
        return CommandResult(False, f"🔐 Authorization required: {e.auth_url}")
    except ChannelAlreadyTracked as e:
        return CommandResult(
            False, f"⚠️ {e.existing.display_name} is already in the notification list"
        )
    except StreamWatchError as e:
        return CommandResult(False, f"❌ {e}")
    except Exception as e:
        logger.exception("Unexpected error in command: %s", e)
        return CommandResult(False, GENERIC_ERROR)


def _print(result: CommandResult) -> None:
    console.print(result.message, style=None if result.ok else "red")
    if not result.ok:
        raise typer.Exit(code=1)


def _discard(*_args: Any, **_kwargs: Any) -> None:
    return None


def _offline_monitor() -> StreamMonitor:
    """Monitor for one-shot commands: no background tasks are started.

    These commands edit the registry file directly and must not run while
    ``run`` owns it.
    """
    return StreamMonitor(config_service.load_config(), spawn=_discard)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    config: str = typer.Option(
        "streamwatch.yaml", "--config", "-c", help="Path to the YAML configuration"
    ),
) -> None:
    """Select the configuration file."""
    global config_service
    config_service = ConfigService(config)


@app.command()
def run() -> None:
    """Run the pull poller and the push session until interrupted."""
    cfg = config_service.load_config()
    configure_logging(cfg.logging.level)
    monitor = StreamMonitor(cfg)

    signal.signal(signal.SIGTERM, lambda *_: monitor.stop_event.set())
    monitor.start()
    console.print(
        f"[blue]Stream Watch started:[/blue] {len(monitor.list_channels())} channels, "
        f"polling every {cfg.polling.interval}"
    )
    try:
        while not monitor.stop_event.wait(1):
            pass
    except KeyboardInterrupt:
        console.print("[yellow]Stopped manually.[/yellow]")
    finally:
        monitor.stop()


@app.command()
def add(
    handle: str,
    priority: str = typer.Option("normal", help="high or normal"),
) -> None:
    """Add a channel to the notification list."""
    monitor = _offline_monitor()

    def action() -> str:
        record = monitor.add_channel(handle, priority)
        monitor.reassign_offline()
        return f"✅ Added {record.display_name} ({record.handle}) to notifications"

    _print(execute(action))


@app.command()
def remove(handle: str) -> None:
    """Remove a channel from the notification list."""
    monitor = _offline_monitor()

    def action() -> str:
        record = monitor.remove_channel(handle)
        monitor.reassign_offline()
        return f"✅ Removed {record.display_name} from notifications"

    _print(execute(action))


@app.command()
def priority(handle: str, level: str) -> None:
    """Set a channel priority (high channels are delivered via push)."""
    monitor = _offline_monitor()

    def action() -> str:
        record = monitor.set_priority(handle, level)
        monitor.reassign_offline()
        record = monitor.get_channel(record.handle) or record
        return (
            f"✅ {record.display_name} priority set to {record.priority} "
            f"({record.delivery_mode} delivery)"
        )

    _print(execute(action))


@app.command(name="list")
def list_channels() -> None:
    """Show all tracked channels with live status."""
    monitor = _offline_monitor()
    channels = monitor.list_channels()
    if not channels:
        console.print("📋 No channels in the notification list.")
        return

    table = Table(title="Tracked channels")
    table.add_column("Live")
    table.add_column("Channel")
    table.add_column("Handle")
    table.add_column("Priority")
    table.add_column("Delivery")
    for channel in channels:
        table.add_row(
            "🔴" if channel.is_live else "⚫",
            channel.display_name,
            channel.handle,
            str(channel.priority),
            str(channel.delivery_mode),
        )
    console.print(table)
    console.print(f"📊 Total: {len(channels)} channels")


@app.command()
def check() -> None:
    """Check live status now and update the registry without notifying."""
    monitor = _offline_monitor()

    def action() -> str:
        lines = ["🔍 Live Status Check:", ""]
        for channel, stream in monitor.check_now():
            if stream is None:
                lines.append(f"⚫ {channel.display_name} is offline")
                continue
            lines.append(f"🔴 {channel.display_name} is LIVE!")
            lines.append(f"   📺 {stream.title}")
            lines.append(f"   🎮 {stream.category}")
            lines.append(f"   👥 {stream.viewer_count} viewers")
        return "\n".join(lines)

    _print(execute(action))


@app.command()
def status() -> None:
    """Show registry and authorization status."""
    monitor = _offline_monitor()
    info = monitor.status()
    console.print(f"[cyan]Tracked channels:[/cyan] {info['channels']} ({info['live']} live)")
    console.print(
        f"[cyan]Push / pull:[/cyan] {info['push_channels']} / {info['pull_channels']} "
        f"(capacity {info['capacity']})"
    )
    console.print(f"[cyan]Polling interval:[/cyan] {info['polling_interval']}")
    if info["authorized"]:
        console.print("[green]✅ User access token available[/green]")
    else:
        console.print("[red]❌ No user access token available[/red]")
        console.print(f"Authorize at: {monitor.authorization_url()}")


@app.command()
def authorize(
    code: Optional[str] = typer.Option(
        None, help="Authorization code returned to the redirect URI"
    ),
) -> None:
    """Print the authorization URL, or exchange an authorization code.

    A running `streamwatch run` picks up the stored token within one polling
    interval.
    """
    monitor = _offline_monitor()
    if code is None:
        console.print(f"Open this URL to authorize: {monitor.authorization_url()}")
        return

    def action() -> str:
        monitor.complete_authorization(code)
        return "✅ User access token stored"

    _print(execute(action))


if __name__ == "__main__":  # pragma: no cover
    app()
