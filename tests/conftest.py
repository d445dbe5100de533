"""Shared test fixtures for vidwatch."""

import json
from pathlib import Path

import httpx
import pytest

from vidwatch.config import Settings
from vidwatch.daemon.notifier import Notification
from vidwatch.exceptions import NotificationDisplayError

FEED_URL = "https://docs.google.com/spreadsheets/d/sheet/gviz/tq?tqx=out:json"
APP_URL = "http://localhost:8000/"


def gviz_text(rows: list[tuple[str | None, str | None]]) -> str:
    """Build a feed response the way Google Sheets wraps it."""
    payload = {
        "version": "0.6",
        "status": "ok",
        "table": {
            "cols": [{"id": "A", "type": "string"}, {"id": "B", "type": "string"}],
            "rows": [{"c": [{"v": title}, {"v": url}]} for title, url in rows],
        },
    }
    return "/*O_o*/\ngoogle.visualization.Query.setResponse(" + json.dumps(payload) + ");"


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


class RecordingDisplay:
    """Notification display that remembers what it was asked to show."""

    def __init__(self) -> None:
        self.shown: list[Notification] = []

    async def show(self, notification: Notification) -> None:
        self.shown.append(notification)


class FailingDisplay:
    async def show(self, notification: Notification) -> None:
        raise NotificationDisplayError("no notification server")


def fake_notify_send(directory: Path, script: str) -> str:
    """Write an executable standing in for notify-send and return its path."""
    path = directory / "notify-send"
    path.write_text("#!/bin/sh\n" + script + "\n")
    path.chmod(0o755)
    return str(path)


class FakeFeed:
    """Mutable feed served through an httpx.MockTransport."""

    def __init__(self, rows: list[tuple[str | None, str | None]] | None = None) -> None:
        self.rows = rows or []
        self.status_code = 200
        self.requests: list[httpx.Request] = []
        self.titles: dict[str, str] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "noembed.com":
            video_id = str(request.url).rsplit("v=", 1)[-1]
            if video_id in self.titles:
                return httpx.Response(200, json={"title": self.titles[video_id]})
            return httpx.Response(200, json={"error": "404 Not Found"})
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="unavailable")
        return httpx.Response(200, text=gviz_text(self.rows))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def feed_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == "docs.google.com"]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary data directory."""
    return Settings(
        feed_url=FEED_URL,
        app_url=APP_URL,
        data_dir=tmp_path / "data",
        precache_urls="",
    )


@pytest.fixture
def fake_feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def display() -> RecordingDisplay:
    return RecordingDisplay()

