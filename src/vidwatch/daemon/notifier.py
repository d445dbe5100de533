"""User-facing notifications for newly detected videos.

Small batches get one notification per video; anything above the stacking
threshold collapses into a single summary so a large feed update does not
bury the desktop. Displaying is fire-and-forget: a failure to show a
notification is logged and otherwise ignored.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..config import Settings
from ..exceptions import NotificationDisplayError
from ..feed.fetcher import TitleResolver
from ..feed.models import Record

logger = logging.getLogger(__name__)

SUMMARY_TAG = "new-videos"

PRIMARY_ACTIONS = frozenset({"play", "watch", "open"})
DISMISS_ACTIONS = frozenset({"dismiss", "close"})


@dataclass
class NotificationAction:
    action: str
    title: str


@dataclass
class Notification:
    """A notification ready to be displayed."""

    title: str
    body: str
    tag: str | None = None
    icon: str | None = None
    badge: str | None = None
    actions: list[NotificationAction] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PushMessage:
    """Decoded push payload."""

    title: str
    body: str
    icon: str | None = None
    badge: str | None = None
    tag: str | None = None
    video_id: str | None = None
    video_title: str | None = None
    url: str | None = None


def parse_push_payload(data: str | bytes | None, default_title: str = "") -> PushMessage:
    """Decode a push payload.

    Malformed JSON is treated as a plain-text body.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    text = data or ""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None

    if not isinstance(payload, dict):
        return PushMessage(title=default_title, body=text)

    def optional(key: str) -> str | None:
        value = payload.get(key)
        return str(value) if value not in (None, "") else None

    return PushMessage(
        title=str(payload.get("title") or default_title),
        body=str(payload.get("body") or ""),
        icon=optional("icon"),
        badge=optional("badge"),
        tag=optional("tag"),
        video_id=optional("videoId"),
        video_title=optional("videoTitle"),
        url=optional("url"),
    )


def video_actions() -> list[NotificationAction]:
    return [
        NotificationAction(action="play", title="Watch"),
        NotificationAction(action="dismiss", title="Dismiss"),
    ]


def video_notification(record: Record, icon: str | None = None) -> Notification:
    return Notification(
        title="New video",
        body=record.title,
        tag=f"video-{record.id}",
        icon=icon,
        actions=video_actions(),
        data={"videoId": record.id, "videoTitle": record.title},
    )


def summary_notification(count: int, icon: str | None = None) -> Notification:
    return Notification(
        title="New videos",
        body=f"{count} new videos added",
        tag=SUMMARY_TAG,
        icon=icon,
        actions=[
            NotificationAction(action="open", title="Open"),
            NotificationAction(action="dismiss", title="Dismiss"),
        ],
        data={"count": count},
    )


def push_notification(message: PushMessage) -> Notification:
    data: dict[str, Any] = {}
    if message.video_id:
        data["videoId"] = message.video_id
        data["videoTitle"] = message.video_title or message.body
    if message.url:
        data["url"] = message.url
    return Notification(
        title=message.title,
        body=message.body,
        tag=message.tag,
        icon=message.icon,
        badge=message.badge,
        actions=video_actions() if message.video_id else [],
        data=data,
    )


class NotificationDisplay(Protocol):
    """Something that can put a notification on screen."""

    async def show(self, notification: Notification) -> None:
        """Display a notification.

        Raises:
            NotificationDisplayError: If the notification cannot be shown
        """
        ...


class NotificationDispatcher:
    """Turns batches of new records into notifications."""

    def __init__(
        self,
        settings: Settings,
        display: NotificationDisplay,
        resolver: TitleResolver | None = None,
        icon: str | None = None,
    ) -> None:
        self.settings = settings
        self.display = display
        self.resolver = resolver
        self.icon = icon

    async def _resolve_title(self, record: Record) -> Record:
        if record.has_title or self.resolver is None:
            return record
        try:
            title = await asyncio.wait_for(
                self.resolver.resolve(record.id),
                timeout=self.settings.title_lookup_timeout,
            )
        except TimeoutError:
            logger.debug("Title lookup for %s timed out", record.id)
            return record
        return record.with_title(title) if title else record

    async def resolve_titles(self, records: list[Record]) -> list[Record]:
        """Replace placeholder titles where a lookup succeeds."""
        return list(await asyncio.gather(*(self._resolve_title(r) for r in records)))

    async def show(self, notification: Notification) -> bool:
        """Display one notification, swallowing display errors.

        Returns:
            True if the display accepted it
        """
        try:
            await self.display.show(notification)
            return True
        except NotificationDisplayError as e:
            logger.warning("Notification %s not shown: %s", notification.tag, e)
        except Exception:
            logger.exception("Notification %s failed", notification.tag)
        return False

    async def notify_new(self, records: list[Record]) -> list[Record]:
        """Notify the user about newly detected records.

        Returns:
            The records with resolved titles where available
        """
        if not records:
            return []

        if len(records) > self.settings.stack_threshold:
            await self.show(summary_notification(len(records), self.icon))
            return records

        resolved = await self.resolve_titles(records)
        for record in resolved:
            await self.show(video_notification(record, self.icon))
        return resolved


ActionCallback = Callable[[str, Notification], Awaitable[None]]


class NotifySendDisplay:
    """Desktop notifications through the freedesktop ``notify-send`` command.

    Tagged notifications reuse the id of the previous notification with the
    same tag, so a repeat replaces it instead of stacking. When a
    notification has actions, the process is left waiting in the background
    for the user's choice, which is passed to ``on_action``.
    """

    COMMAND = "notify-send"

    def __init__(
        self,
        app_name: str,
        on_action: ActionCallback | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.app_name = app_name
        self.on_action = on_action
        self.timeout = timeout
        self._ids_by_tag: dict[str, str] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def build_command(self, notification: Notification) -> list[str]:
        cmd = [self.COMMAND, f"--app-name={self.app_name}", "--print-id"]
        if notification.tag and notification.tag in self._ids_by_tag:
            cmd.append(f"--replace-id={self._ids_by_tag[notification.tag]}")
        if notification.icon:
            cmd.append(f"--icon={notification.icon}")
        for action in notification.actions:
            cmd.append(f"--action={action.action}={action.title}")
        if notification.actions:
            cmd.append("--wait")
        cmd.extend([notification.title, notification.body])
        return cmd

    async def show(self, notification: Notification) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(notification),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise NotificationDisplayError(f"{self.COMMAND} unavailable: {e}") from e

        task = asyncio.create_task(self._wait(proc, notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _wait(self, proc: asyncio.subprocess.Process, notification: Notification) -> None:
        try:
            actions = await asyncio.wait_for(
                self._read_output(proc, notification), timeout=self.timeout
            )
        except TimeoutError:
            logger.debug("Notification %s expired without a choice", notification.tag)
            await self._kill(proc)
            return
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        if proc.returncode != 0:
            return

        for action in actions:
            if self.on_action is None:
                break
            try:
                await self.on_action(action, notification)
            except Exception:
                logger.exception("Notification action %s failed", action)

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()

    async def _read_output(
        self, proc: asyncio.subprocess.Process, notification: Notification
    ) -> list[str]:
        """Read the process output until it exits.

        The notification id is printed as soon as it is shown and is recorded
        right away; the chosen action only follows once the user acts.

        Returns:
            Action names printed by the process
        """
        assert proc.stdout is not None and proc.stderr is not None
        actions: list[str] = []
        async for raw in proc.stdout:
            line = raw.decode(errors="replace").strip()
            if not line:
                continue
            if line.isdigit():
                if notification.tag:
                    self._ids_by_tag[notification.tag] = line
                continue
            actions.append(line)

        stderr = await proc.stderr.read()
        await proc.wait()
        if proc.returncode != 0:
            logger.warning(
                "%s exited with %s: %s",
                self.COMMAND,
                proc.returncode,
                stderr.decode(errors="replace").strip(),
            )
        return actions

    async def wait_closed(self) -> None:
        """Wait until every displayed notification is answered or expires."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        for task in list(self._tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
