"""vidwatch daemon: the background agent.

This module provides:
- Change detection against the persisted known set
- Desktop notifications for new videos
- A message bus for foreground instances (Unix socket, JSON lines)
- An interval scheduler and the daemon process host

Architecture:
    ┌─────────────────────────────────────────────┐
    │               vidwatch daemon               │
    │  ┌──────────────┐    ┌───────────────────┐  │
    │  │  Scheduler   │───▶│       Agent       │  │
    │  │ (APScheduler)│    │ (event dispatch)  │  │
    │  └──────────────┘    └───────────────────┘  │
    │                        │      │      │      │
    │           ┌────────────┘      │      └────┐ │
    │           ▼                   ▼           ▼ │
    │     ┌──────────┐      ┌──────────┐ ┌──────┐ │
    │     │ Detector │      │ Notifier │ │ Bus  │ │
    │     │ (SQLite) │      │          │ │      │ │
    │     └──────────┘      └──────────┘ └──────┘ │
    └─────────────────────────────────────────────┘
"""

from .agent import Agent, Event, EventKind, create_agent
from .bus import BusServer, ClientConnection, MessageBus, send_message
from .detector import ChangeDetector
from .notifier import Notification, NotificationDispatcher, NotifySendDisplay
from .scheduler import CheckScheduler
from .server import DaemonServer, DaemonStatus

__all__ = [
    # Agent
    "Agent",
    "Event",
    "EventKind",
    "create_agent",
    # Components
    "ChangeDetector",
    "NotificationDispatcher",
    "Notification",
    "NotifySendDisplay",
    "MessageBus",
    "ClientConnection",
    "BusServer",
    "send_message",
    "CheckScheduler",
    # Server
    "DaemonServer",
    "DaemonStatus",
]
