"""Tests for the feed fetcher and title resolver."""

import asyncio

import httpx
import pytest
from conftest import gviz_text, watch_url

from vidwatch.config import Settings
from vidwatch.exceptions import BadResponseError, MalformedPayloadError, NetworkUnavailableError
from vidwatch.feed import FeedFetcher, Record, TitleResolver


def _fetch(settings: Settings, handler) -> list[Record]:
    async def run() -> list[Record]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await FeedFetcher(settings, client).fetch_records()

    return asyncio.run(run())


def _resolve(settings: Settings, handler, video_id: str = "aaaaaaaaaaa") -> str | None:
    async def run() -> str | None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await TitleResolver(settings, client).resolve(video_id)

    return asyncio.run(run())


class TestFeedFetcher:
    """Test fetching and error mapping."""

    def test_returns_records(self, settings: Settings) -> None:
        text = gviz_text([("First", watch_url("aaaaaaaaaaa")), ("", watch_url("bbbbbbbbbbb"))])
        records = _fetch(settings, lambda request: httpx.Response(200, text=text))
        assert [(r.id, r.title) for r in records] == [
            ("aaaaaaaaaaa", "First"),
            ("bbbbbbbbbbb", "New Video"),
        ]

    def test_request_bypasses_caches(self, settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=gviz_text([]))

        _fetch(settings, handler)
        _fetch(settings, handler)

        assert len(seen) == 2
        for request in seen:
            assert request.url.params["tqx"] == "out:json"
            assert request.url.params["_"].isdigit()
            assert request.headers["Cache-Control"] == "no-cache"

    def test_feed_url_query_is_kept(self, settings: Settings) -> None:
        settings.feed_url = (
            "https://docs.google.com/spreadsheets/d/x/gviz/tq?tqx=out:json&sheet=Videos"
        )
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=gviz_text([]))

        _fetch(settings, handler)

        params = seen[0].url.params
        assert params["tqx"] == "out:json"
        assert params["sheet"] == "Videos"
        assert "_" in params
        assert seen[0].url.path == "/spreadsheets/d/x/gviz/tq"

    @pytest.mark.parametrize("status", [404, 500, 503])
    def test_bad_status(self, settings: Settings, status: int) -> None:
        with pytest.raises(BadResponseError) as exc_info:
            _fetch(settings, lambda request: httpx.Response(status, text="nope"))
        assert exc_info.value.status_code == status

    def test_malformed_payload(self, settings: Settings) -> None:
        with pytest.raises(MalformedPayloadError):
            _fetch(settings, lambda request: httpx.Response(200, text="<html>login</html>"))

    def test_network_failure(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkUnavailableError):
            _fetch(settings, handler)

    def test_timeout(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkUnavailableError):
            _fetch(settings, handler)

    def test_missing_feed_url(self, tmp_path) -> None:
        settings = Settings(feed_url="", data_dir=tmp_path)
        with pytest.raises(NetworkUnavailableError):
            _fetch(settings, lambda request: httpx.Response(200, text=gviz_text([])))


class TestTitleResolver:
    """Test best-effort title lookup."""

    def test_resolves_title(self, settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"title": "  Conference talk  "})

        assert _resolve(settings, handler) == "Conference talk"
        assert "aaaaaaaaaaa" in str(seen[0].url)

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(404, json={"title": "ignored"}),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"error": "404 Not Found"}),
            httpx.Response(200, json={"title": ""}),
            httpx.Response(200, json=["title"]),
        ],
        ids=["status", "not-json", "no-title", "empty-title", "not-an-object"],
    )
    def test_failures_return_none(self, settings: Settings, response: httpx.Response) -> None:
        assert _resolve(settings, lambda request: response) is None

    def test_network_failure_returns_none(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        assert _resolve(settings, handler) is None
