"""vidwatch CLI - background watcher for new videos in a feed."""

import asyncio
import logging
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .cache import CacheLifecycle, CacheStorage
from .config import settings
from .exceptions import StoreError
from .store import KnownStore
from .utils.console import console
from .utils.logging import setup_logging

logger = logging.getLogger(__name__)


def _print_panel(message: str, style: str = "blue") -> None:
    """Print a styled panel message."""
    console.print(Panel(f"[bold]{message}[/bold]", style=style))


def _require_feed() -> None:
    """Exit unless a feed URL is configured, counting saved overrides."""
    store = KnownStore(settings.db_path)
    try:
        settings.apply_overrides(store.get_overrides())
    except StoreError as e:
        logger.warning(f"Could not load saved configuration: {e}")
    finally:
        store.close()

    if not settings.feed_url:
        console.print("[red]No feed configured. Set FEED_URL.[/red]")
        raise typer.Exit(code=1)


app = typer.Typer(
    name="vidwatch",
    help="Video feed watcher - notifies you when new videos are published",
    no_args_is_help=True,
)

daemon_app = typer.Typer(help="Background daemon that watches the feed")
known_app = typer.Typer(help="Inspect or reset the set of already-seen videos")
cache_app = typer.Typer(help="Response cache generations")
send_app = typer.Typer(help="Send a message to the running daemon")

app.add_typer(daemon_app, name="daemon")
app.add_typer(known_app, name="known")
app.add_typer(cache_app, name="cache")
app.add_typer(send_app, name="send")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]vidwatch[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Show informational log messages"),
    ] = False,
) -> None:
    """vidwatch - never miss a new video."""
    setup_logging(console_level="INFO" if verbose else "WARNING")
    settings.ensure_directories()


# ============================================================================
# CHECK
# ============================================================================


@app.command("check")
def check() -> None:
    """Check the feed once and notify about new videos.

    Meant to be run by a platform timer (cron, systemd timer, launchd) as
    the durable wake-up; it works whether or not the daemon is running.
    """
    from .daemon.server import check_once

    _require_feed()

    _print_panel("Checking feed...")
    new = asyncio.run(check_once(settings))
    if not new:
        console.print("[dim]No new videos.[/dim]")
        return

    console.print(f"[green]{len(new)} new videos:[/green]")
    for record in new:
        console.print(f"  {record.id}  {record.title}")


# ============================================================================
# DAEMON COMMANDS
# ============================================================================


@daemon_app.command("start")
def daemon_start(
    foreground: Annotated[
        bool,
        typer.Option("--foreground", "-f", help="Run in foreground (don't daemonize)"),
    ] = False,
) -> None:
    """Start the background daemon.

    The daemon checks the feed every POLL_INTERVAL seconds, notifies about
    new videos, and serves foreground instances on a local socket.
    """
    from .daemon.server import get_daemon_status, run_daemon

    status = get_daemon_status(settings)
    if status.status.value == "running":
        console.print(f"[yellow]Daemon already running (PID {status.pid})[/yellow]")
        return

    _require_feed()

    if foreground:
        console.print("[bold cyan]Starting daemon in foreground...[/bold cyan]")
        console.print("[dim]Press Ctrl+C to stop[/dim]\n")
        try:
            run_daemon(settings, foreground=True)
        except KeyboardInterrupt:
            console.print("\n[dim]Daemon stopped.[/dim]")
    else:
        console.print("[bold cyan]Starting daemon...[/bold cyan]")
        run_daemon(settings, foreground=False)


@daemon_app.command("stop")
def daemon_stop() -> None:
    """Stop the background daemon."""
    from .daemon.server import get_daemon_status, stop_daemon

    status = get_daemon_status(settings)
    if status.status.value != "running":
        console.print("[yellow]Daemon is not running.[/yellow]")
        return

    console.print(f"[bold cyan]Stopping daemon (PID {status.pid})...[/bold cyan]")
    if stop_daemon(settings):
        console.print("[green]Daemon stopped.[/green]")
    else:
        console.print("[red]Failed to stop daemon.[/red]")


@daemon_app.command("status")
def daemon_status() -> None:
    """Show daemon status and what it knows."""
    from .daemon.server import get_daemon_status

    status = get_daemon_status(settings)

    console.print("[bold cyan]Daemon Status[/bold cyan]\n")
    if status.status.value == "running":
        console.print("Status: [green]Running[/green]")
        console.print(f"PID: {status.pid}")
    else:
        console.print("Status: [yellow]Stopped[/yellow]")

    console.print(f"\nKnown videos: {status.known_videos}")
    if status.last_check_at:
        console.print(f"Last check: {status.last_check_at.strftime('%Y-%m-%d %H:%M')}")
    else:
        console.print("Last check: never")
    console.print(f"Feed: {settings.feed_url or '[dim]not configured[/dim]'}")
    console.print(f"Interval: {settings.poll_interval}s")


# ============================================================================
# KNOWN SET
# ============================================================================


@known_app.command("list")
def known_list() -> None:
    """List videos that will not be notified again."""
    store = KnownStore(settings.db_path)
    try:
        records = store.load_records()
    except StoreError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.close()

    if not records:
        console.print("[dim]No known videos yet.[/dim]")
        return

    table = Table(title=f"Known videos ({len(records)})")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    for record in records:
        table.add_row(record.id, record.title)
    console.print(table)


@known_app.command("reset")
def known_reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Don't ask for confirmation")] = False,
) -> None:
    """Forget every known video. The next check records a fresh baseline."""
    if not yes and not typer.confirm("Forget all known videos?"):
        raise typer.Abort()

    store = KnownStore(settings.db_path)
    try:
        removed = store.reset()
    except StoreError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.close()
    console.print(f"[green]Forgot {removed} videos.[/green]")


# ============================================================================
# CACHE
# ============================================================================


@cache_app.command("list")
def cache_list() -> None:
    """List cache generations and their entry counts."""
    storage = CacheStorage(settings.cache_db_path)
    try:
        stats = storage.stats()
    finally:
        storage.close()

    if not stats:
        console.print("[dim]No cache generations.[/dim]")
        return

    for name, count in stats.items():
        marker = " [green](current)[/green]" if name == settings.cache_name else ""
        console.print(f"{name}: {count} entries{marker}")


@cache_app.command("activate")
def cache_activate() -> None:
    """Delete every cache generation except the current one."""
    storage = CacheStorage(settings.cache_db_path)
    try:
        deleted = CacheLifecycle(storage, settings.cache_name).activate()
    finally:
        storage.close()

    if deleted:
        console.print(f"[green]Deleted: {', '.join(deleted)}[/green]")
    else:
        console.print("[dim]Nothing to delete.[/dim]")
    console.print(f"Current generation: {settings.cache_name}")


# ============================================================================
# SEND
# ============================================================================


def _send(message) -> None:
    from .daemon.bus import send_message

    if not asyncio.run(send_message(settings.socket_path, message)):
        console.print("[red]Daemon is not reachable. Is it running?[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Sent {message.type}.[/green]")


@send_app.command("check")
def send_check() -> None:
    """Ask the running daemon to check the feed now."""
    from .daemon.messages import CheckNow

    _send(CheckNow())


@send_app.command("config")
def send_config(
    feed_url: Annotated[str | None, typer.Option("--feed-url", help="New feed URL")] = None,
    interval: Annotated[
        int | None, typer.Option("--interval", min=1, help="New poll interval in seconds")
    ] = None,
) -> None:
    """Change the running daemon's feed or interval."""
    from .daemon.messages import SetConfig

    if feed_url is None and interval is None:
        console.print("[yellow]Nothing to change. Use --feed-url or --interval.[/yellow]")
        raise typer.Exit(code=1)
    _send(SetConfig(feed_url=feed_url, poll_interval=interval))


@send_app.command("sync")
def send_sync(
    ids: Annotated[list[str], typer.Argument(help="Video ids that should count as known")],
) -> None:
    """Replace the running daemon's known set."""
    from .daemon.messages import SyncKnownIds

    _send(SyncKnownIds(ids=ids))
