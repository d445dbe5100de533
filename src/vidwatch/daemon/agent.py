"""The agent: maps incoming events to handlers.

Whatever wakes the agent (the interval scheduler, a ``vidwatch check``
invocation, SIGUSR1, a client message, a notification click) is turned into
an ``Event`` and passed to ``Agent.dispatch``. Handlers never let an
exception escape; a failing handler is logged and the agent keeps running.
"""

import logging
import webbrowser
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from ..cache import CacheLifecycle, CachePolicy, CacheStorage, CachingTransport
from ..config import Settings
from ..exceptions import StoreError
from ..feed.fetcher import FeedFetcher, TitleResolver
from ..feed.models import Record
from ..store.known import KnownStore
from .bus import ClientConnection, MessageBus
from .detector import ChangeDetector
from .messages import (
    CheckNow,
    Focus,
    Hello,
    InboundMessage,
    NewVideos,
    PlayVideo,
    RequestKnownIds,
    SetConfig,
    SyncKnownIds,
    UpdateKnownVideos,
)
from .notifier import (
    DISMISS_ACTIONS,
    Notification,
    NotificationDispatcher,
    NotificationDisplay,
    NotifySendDisplay,
    parse_push_payload,
    push_notification,
)

if TYPE_CHECKING:
    from .scheduler import CheckScheduler

logger = logging.getLogger(__name__)

# Tag of the platform-level periodic wake signal that triggers a check
PERIODIC_CHECK_TAG = "check-videos"

# Query parameter carrying the selected video when opening the app
VIDEO_PARAM = "v"


class EventKind(Enum):
    """Kinds of events the agent reacts to."""

    INSTALL = "install"
    ACTIVATE = "activate"
    PERIODIC_SYNC = "periodic_sync"  # Recurring wake signal
    SYNC = "sync"  # One-shot wake signal
    MESSAGE = "message"  # From a foreground instance
    PUSH = "push"
    NOTIFICATION_CLICK = "notification_click"
    NOTIFICATION_CLOSE = "notification_close"


@dataclass
class Event:
    kind: EventKind
    data: dict[str, Any] = field(default_factory=dict)
    message: InboundMessage | None = None
    client: ClientConnection | None = None


class Agent:
    """Background agent wiring detection, notification and messaging."""

    def __init__(
        self,
        settings: Settings,
        store: KnownStore,
        bus: MessageBus,
        detector: ChangeDetector,
        dispatcher: NotificationDispatcher,
        cache: CacheLifecycle | None = None,
        transport: CachingTransport | None = None,
        opener: Callable[[str], Any] = webbrowser.open,
    ) -> None:
        self.settings = settings
        self.store = store
        self.bus = bus
        self.detector = detector
        self.dispatcher = dispatcher
        self.cache = cache
        self.transport = transport
        self.opener = opener
        self.scheduler: CheckScheduler | None = None
        self._closers: list[Callable[[], Awaitable[None]]] = []
        self._waiters: list[Callable[[], Awaitable[None]]] = []
        self._handlers: dict[EventKind, Callable[[Event], Awaitable[Any]]] = {
            EventKind.INSTALL: self._on_install,
            EventKind.ACTIVATE: self._on_activate,
            EventKind.PERIODIC_SYNC: self._on_periodic_sync,
            EventKind.SYNC: self._on_sync,
            EventKind.MESSAGE: self._on_message,
            EventKind.PUSH: self._on_push,
            EventKind.NOTIFICATION_CLICK: self._on_notification_click,
            EventKind.NOTIFICATION_CLOSE: self._on_notification_close,
        }

    async def dispatch(self, event: Event) -> Any:
        """Route an event to its handler.

        Returns:
            Whatever the handler returns, or None if it failed
        """
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.warning("No handler for event %s", event.kind)
            return None
        try:
            return await handler(event)
        except Exception:
            logger.exception("Handling %s failed", event.kind.value)
            return None

    async def handle_client_message(self, client: ClientConnection, message: InboundMessage) -> None:
        """Entry point for messages arriving over the bus."""
        await self.dispatch(Event(EventKind.MESSAGE, message=message, client=client))

    async def handle_notification_action(self, action: str, notification: Notification) -> None:
        """Entry point for choices made on a displayed notification."""
        await self.dispatch(
            Event(EventKind.NOTIFICATION_CLICK, data={"action": action, **notification.data})
        )

    async def check(self) -> list[Record]:
        """Run one change-detection cycle and announce what is new."""
        new = await self.detector.detect_and_record()
        if not new:
            return []
        announced = await self.dispatcher.notify_new(new)
        self.bus.broadcast(NewVideos.from_records(announced))
        return new

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _on_install(self, event: Event) -> int:
        if self.cache is None or self.transport is None:
            return 0
        urls = event.data.get("urls", self.settings.precache_urls_list)
        return await self.cache.install(self.transport, urls)

    async def _on_activate(self, event: Event) -> list[str]:
        try:
            overrides = self.store.get_overrides()
        except StoreError as e:
            logger.warning("Could not load configuration overrides: %s", e)
            overrides = {}
        changed = self.settings.apply_overrides(overrides)
        if changed:
            logger.info("Applied saved configuration: %s", ", ".join(changed))

        if self.cache is None:
            return []
        return self.cache.activate()

    async def _on_periodic_sync(self, event: Event) -> list[Record]:
        tag = event.data.get("tag", PERIODIC_CHECK_TAG)
        if tag != PERIODIC_CHECK_TAG:
            logger.debug("Ignoring periodic sync %s", tag)
            return []
        return await self.check()

    async def _on_sync(self, event: Event) -> list[Record]:
        return await self.check()

    # =========================================================================
    # Client messages
    # =========================================================================

    async def _on_message(self, event: Event) -> Any:
        message = event.message
        match message:
            case CheckNow():
                return await self.check()
            case SyncKnownIds(ids=ids):
                self._replace_known(ids)
            case UpdateKnownVideos(videos=videos):
                records = [v.to_record() for v in videos]
                self._replace_known([r.id for r in records], records)
            case SetConfig():
                await self._apply_config(message)
            case Hello(url=url):
                logger.debug("Client announced %s", url or "no URL")
            case _:
                logger.warning("Unhandled message %r", message)
        return None

    def _replace_known(self, ids: list[str], records: list[Record] | None = None) -> None:
        try:
            self.store.replace(ids)
            if records:
                self.store.save_records(records)
        except StoreError as e:
            logger.error("Could not replace known set: %s", e)
        self.detector.invalidate()

    async def _apply_config(self, message: SetConfig) -> None:
        overrides = {"feed_url": message.feed_url, "poll_interval": message.poll_interval}
        changed = self.settings.apply_overrides(overrides)
        if not changed:
            return
        logger.info("Configuration changed: %s", ", ".join(changed))

        try:
            self.store.set_overrides({name: getattr(self.settings, name) for name in changed})
        except StoreError as e:
            logger.warning("Configuration change not persisted: %s", e)

        if "poll_interval" in changed and self.scheduler is not None:
            await self.scheduler.reschedule(self.settings.poll_interval)

    def request_known_ids(self) -> None:
        """Ask connected clients for their copy of the known set."""
        sent = self.bus.broadcast(RequestKnownIds())
        logger.info("Requested known ids from %d clients", sent)

    # =========================================================================
    # Notifications
    # =========================================================================

    async def _on_push(self, event: Event) -> bool:
        message = parse_push_payload(event.data.get("payload"), self.settings.app_name)
        return await self.dispatcher.show(push_notification(message))

    async def _on_notification_click(self, event: Event) -> str | None:
        action = event.data.get("action") or ""
        if action in DISMISS_ACTIONS:
            return None
        return self.open_or_focus(event.data.get("videoId"), event.data.get("videoTitle"))

    async def _on_notification_close(self, event: Event) -> None:
        logger.debug("Notification closed: %s", event.data.get("videoId"))

    def app_url_for(self, video_id: str | None) -> str:
        """URL of the app, selecting a video when given."""
        if not video_id:
            return self.settings.app_url
        parts = urlsplit(self.settings.app_url)
        query = f"{parts.query}&" if parts.query else ""
        query += urlencode({VIDEO_PARAM: video_id})
        return urlunsplit(parts._replace(query=query))

    def open_or_focus(self, video_id: str | None, video_title: str | None = None) -> str:
        """Bring the app forward, playing a video if one was selected.

        Returns:
            ``"focused"`` if an open instance took it, ``"opened"`` otherwise
        """
        clients = self.bus.clients(url_prefix=self.settings.app_url)
        if clients:
            self.bus.send(clients[0], Focus())
            if video_id:
                self.bus.broadcast(PlayVideo(video_id=video_id, video_title=video_title))
            return "focused"

        url = self.app_url_for(video_id)
        logger.info("Opening %s", url)
        self.opener(url)
        return "opened"

    # =========================================================================
    # Resources
    # =========================================================================

    def add_closer(self, closer: Callable[[], Awaitable[None]]) -> None:
        self._closers.append(closer)

    def add_waiter(self, waiter: Callable[[], Awaitable[None]]) -> None:
        self._waiters.append(waiter)

    async def wait_idle(self) -> None:
        """Wait for background work such as notifications awaiting a choice."""
        for waiter in self._waiters:
            await waiter()

    async def aclose(self) -> None:
        for closer in reversed(self._closers):
            try:
                await closer()
            except Exception:
                logger.exception("Error while shutting down")
        self.store.close()
        if self.cache is not None:
            self.cache.storage.close()


def create_agent(
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
    display: NotificationDisplay | None = None,
    opener: Callable[[str], Any] = webbrowser.open,
) -> Agent:
    """Build an agent and all its collaborators from settings.

    Args:
        settings: Configuration to use
        transport: Network transport under the response cache (tests pass a mock)
        display: Notification display; defaults to desktop notifications
        opener: Opens the app in a browser when no instance is connected
    """
    store = KnownStore(settings.db_path)
    bus = MessageBus()

    cache_storage = CacheStorage(settings.cache_db_path)
    caching = CachingTransport(
        cache_storage,
        settings.cache_name,
        CachePolicy(settings.app_origin, settings.cache_allowed_hosts_list),
        transport=transport,
    )
    client = httpx.AsyncClient(
        transport=caching,
        timeout=settings.http_timeout,
        follow_redirects=True,
        headers={"User-Agent": f"vidwatch ({settings.app_name})"},
    )

    fetcher = FeedFetcher(settings, client)
    desktop = None
    if display is None:
        desktop = NotifySendDisplay(settings.app_name, timeout=settings.notification_timeout)
        display = desktop
    dispatcher = NotificationDispatcher(settings, display, TitleResolver(settings, client))

    detector = ChangeDetector(fetcher, store, notify_on_first_run=settings.notify_on_first_run)
    agent = Agent(
        settings,
        store,
        bus,
        detector,
        dispatcher,
        cache=CacheLifecycle(cache_storage, settings.cache_name),
        transport=caching,
        opener=opener,
    )
    detector.on_store_unavailable = agent.request_known_ids
    if desktop is not None:
        desktop.on_action = agent.handle_notification_action
        agent.add_waiter(desktop.wait_closed)
        agent.add_closer(desktop.aclose)
    # The client closes the caching transport, which closes the network one
    agent.add_closer(client.aclose)
    return agent
