"""Interval scheduler for feed checks.

Uses APScheduler 4 AsyncScheduler to run a check every ``poll_interval``
seconds while the daemon is up. The timer lives in memory and is lost when
the daemon stops or the machine sleeps; the durable trigger is an external
timer running ``vidwatch check``, which works from the persisted known set.
"""

import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

TASK_ID = "vidwatch-check"
SCHEDULE_ID = "feed-check"


class CheckScheduler:
    """Runs the agent's check on a fixed interval."""

    def __init__(self, check: Callable[[], Awaitable[Any]], interval: int) -> None:
        """Initialize the scheduler.

        Args:
            check: Coroutine function running one check cycle
            interval: Seconds between checks
        """
        self._check = check
        self.interval = interval
        self._scheduler: AsyncScheduler | None = None
        self._stack: contextlib.AsyncExitStack | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler and register the check schedule."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._stack = contextlib.AsyncExitStack()
        self._scheduler = await self._stack.enter_async_context(AsyncScheduler())
        await self._scheduler.configure_task(TASK_ID, func=self._run_check)
        await self._add_schedule()
        await self._scheduler.start_in_background()
        self._running = True
        logger.info("Scheduler started (every %ds)", self.interval)

    async def _add_schedule(self) -> None:
        if not self._scheduler:
            return
        await self._scheduler.add_schedule(
            TASK_ID,
            IntervalTrigger(seconds=self.interval),
            id=SCHEDULE_ID,
            conflict_policy=ConflictPolicy.replace,
        )

    async def reschedule(self, interval: int) -> None:
        """Change the interval of a running schedule."""
        self.interval = interval
        if not self._running:
            return
        await self._add_schedule()
        logger.info("Rescheduled feed check (every %ds)", interval)

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running or not self._scheduler or not self._stack:
            return

        logger.info("Stopping scheduler...")
        await self._scheduler.stop()
        await self._stack.aclose()
        self._scheduler = None
        self._stack = None
        self._running = False

    async def _run_check(self) -> None:
        try:
            await self._check()
        except Exception:
            logger.exception("Scheduled check failed")
