"""Daemon server for running vidwatch as a background process.

The daemon runs continuously and:
- Checks the feed on a fixed interval
- Serves foreground instances on a Unix socket
- Checks immediately on SIGUSR1 (wake signal from a platform timer)

Usage:
    vidwatch daemon start   # Start daemon in background
    vidwatch daemon stop    # Stop daemon gracefully
    vidwatch daemon status  # Show daemon status
"""

import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..config import Settings
from ..exceptions import StoreError
from ..feed.models import Record
from ..store.known import KnownStore
from ..utils.logging import setup_logging
from .agent import Agent, Event, EventKind, create_agent
from .bus import BusServer
from .scheduler import CheckScheduler

logger = logging.getLogger(__name__)


class DaemonStatus(Enum):
    """Status of the daemon process."""

    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class DaemonInfo:
    """Information about the daemon state."""

    status: DaemonStatus
    pid: int | None
    known_videos: int
    last_check_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "pid": self.pid,
            "known_videos": self.known_videos,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
        }


class DaemonServer:
    """Main daemon server process.

    Owns the agent, the socket server and the scheduler, and handles signals
    for graceful shutdown.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.pid_file = settings.pid_file
        self.log_file = settings.log_file
        self.agent: Agent | None = None
        self.scheduler: CheckScheduler | None = None
        self.bus_server: BusServer | None = None
        self._shutdown_event = asyncio.Event()
        self._tasks: set[asyncio.Task[Any]] = set()

    def _setup_logging(self, foreground: bool) -> None:
        """Configure logging to file for daemon mode."""
        setup_logging(
            level="INFO",
            log_file=self.log_file,
            console_level="INFO" if foreground else "WARNING",
        )

    def _write_pid(self) -> None:
        self.pid_file.write_text(str(os.getpid()))
        logger.info(f"PID file written: {self.pid_file}")

    def _remove_pid(self) -> None:
        if self.pid_file.exists():
            self.pid_file.unlink()
            logger.info("PID file removed")

    def _read_pid(self) -> int | None:
        """Read PID from file.

        Returns:
            PID if file exists and is valid, None otherwise
        """
        if not self.pid_file.exists():
            return None

        try:
            return int(self.pid_file.read_text().strip())
        except (ValueError, OSError):
            return None

    def _is_process_running(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)  # Signal 0 = check if process exists
            return True
        except OSError:
            return False

    def get_status(self) -> DaemonInfo:
        """Get current daemon status."""
        store = KnownStore(self.settings.db_path)
        try:
            known = store.count()
            last_check = store.last_checked()
        except StoreError as e:
            logger.warning(f"State database unavailable: {e}")
            known, last_check = 0, None
        finally:
            store.close()

        pid = self._read_pid()
        if pid is not None and not self._is_process_running(pid):
            # Stale PID file
            self._remove_pid()
            pid = None

        return DaemonInfo(
            status=DaemonStatus.RUNNING if pid else DaemonStatus.STOPPED,
            pid=pid,
            known_videos=known,
            last_check_at=last_check,
        )

    async def start(self, foreground: bool = False) -> None:
        """Start the daemon.

        Args:
            foreground: If True, run in foreground (don't daemonize)
        """
        existing_pid = self._read_pid()
        if existing_pid and self._is_process_running(existing_pid):
            logger.error(f"Daemon already running with PID {existing_pid}")
            return

        self.settings.ensure_directories()
        if not foreground:
            self._daemonize()

        self._setup_logging(foreground)
        logger.info("vidwatch daemon starting...")
        self._write_pid()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal)
        loop.add_signal_handler(signal.SIGUSR1, self._handle_wake)

        try:
            await self._run()
        except Exception as e:
            logger.exception(f"Daemon error: {e}")
        finally:
            await self._cleanup()

    async def _run(self) -> None:
        self.agent = create_agent(self.settings)

        # Generations are purged before any request goes through the cache
        await self.agent.dispatch(Event(EventKind.INSTALL))
        await self.agent.dispatch(Event(EventKind.ACTIVATE))

        self.bus_server = BusServer(
            self.agent.bus, self.settings.socket_path, self.agent.handle_client_message
        )
        await self.bus_server.start()

        self.scheduler = CheckScheduler(self.agent.check, self.settings.poll_interval)
        self.agent.scheduler = self.scheduler
        await self.scheduler.start()

        self._spawn(self.agent.dispatch(Event(EventKind.SYNC)))

        logger.info("Daemon running. Waiting for shutdown signal...")
        await self._shutdown_event.wait()

    def _daemonize(self) -> None:
        """Fork into a daemon process (Unix double-fork)."""
        try:
            pid = os.fork()
            if pid > 0:
                sys.exit(0)
        except OSError as e:
            logger.error(f"Fork #1 failed: {e}")
            sys.exit(1)

        os.chdir("/")
        os.setsid()
        os.umask(0o077)

        try:
            pid = os.fork()
            if pid > 0:
                sys.exit(0)
        except OSError as e:
            logger.error(f"Fork #2 failed: {e}")
            sys.exit(1)

        sys.stdout.flush()
        sys.stderr.flush()

        with open("/dev/null") as devnull:
            os.dup2(devnull.fileno(), sys.stdin.fileno())

        log_fd = os.open(str(self.log_file), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        os.dup2(log_fd, sys.stdout.fileno())
        os.dup2(log_fd, sys.stderr.fileno())

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_signal(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _handle_wake(self) -> None:
        logger.info("Received wake signal")
        if self.agent is not None:
            self._spawn(self.agent.dispatch(Event(EventKind.SYNC)))

    async def _cleanup(self) -> None:
        logger.info("Cleaning up...")

        if self.scheduler is not None:
            await self.scheduler.stop()
        if self.bus_server is not None:
            await self.bus_server.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.agent is not None:
            await self.agent.aclose()

        self._remove_pid()
        logger.info("Daemon stopped")

    def stop(self) -> bool:
        """Stop a running daemon.

        Returns:
            True if daemon was stopped successfully
        """
        pid = self._read_pid()

        if pid is None:
            logger.info("Daemon is not running (no PID file)")
            return False

        if not self._is_process_running(pid):
            logger.info("Daemon is not running (stale PID file)")
            self._remove_pid()
            return False

        logger.info(f"Stopping daemon (PID {pid})...")
        try:
            os.kill(pid, signal.SIGTERM)

            # Wait for process to exit (up to 10 seconds)
            for _ in range(20):
                if not self._is_process_running(pid):
                    logger.info("Daemon stopped successfully")
                    return True
                time.sleep(0.5)

            logger.warning("Daemon not responding, sending SIGKILL")
            os.kill(pid, signal.SIGKILL)
            return True

        except OSError as e:
            logger.error(f"Failed to stop daemon: {e}")
            return False

    def wake(self) -> bool:
        """Ask a running daemon to check the feed now."""
        pid = self._read_pid()
        if pid is None or not self._is_process_running(pid):
            return False
        os.kill(pid, signal.SIGUSR1)
        return True


def run_daemon(settings: Settings, foreground: bool = False) -> None:
    """Run the daemon server."""
    server = DaemonServer(settings)
    asyncio.run(server.start(foreground=foreground))


def stop_daemon(settings: Settings) -> bool:
    return DaemonServer(settings).stop()


def get_daemon_status(settings: Settings) -> DaemonInfo:
    return DaemonServer(settings).get_status()


async def check_once(settings: Settings) -> list[Record]:
    """Run a single check cycle in this process.

    This is what a platform timer invokes: state comes entirely from the
    store, so it works whether or not the daemon is running. It returns only
    once every notification it showed has been answered or has expired after
    ``notification_timeout`` seconds.
    """
    agent = create_agent(settings)
    try:
        await agent.dispatch(Event(EventKind.ACTIVATE))
        new = await agent.dispatch(Event(EventKind.PERIODIC_SYNC)) or []
        # Stay up so a choice made on a notification is still routed
        await agent.wait_idle()
        return new
    finally:
        await agent.aclose()
