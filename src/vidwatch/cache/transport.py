"""Response caching for the agent's HTTP client.

``CachingTransport`` sits between ``httpx.AsyncClient`` and the real
transport and answers each GET according to ``CachePolicy``. Anything the
policy marks network-only (the feed, video hosts, unknown hosts, non-GET
requests) is passed straight through and never stored.

Storage calls run in worker threads so a locked database does not stall
the event loop.

``CacheLifecycle`` owns generation housekeeping: pre-caching on install and
purging every outdated generation on activation.
"""

import asyncio
import contextlib
import logging

import httpx

from .policy import CachePolicy, Strategy
from .storage import CachedResponse, CacheStorage, request_key

logger = logging.getLogger(__name__)

# Bodies are stored decoded and complete, so these no longer describe them
_DROPPED_HEADERS = frozenset(
    {"content-encoding", "content-length", "transfer-encoding", "connection", "keep-alive"}
)

CACHE_EXTENSION = "vidwatch_cache"


def is_cacheable(response: httpx.Response) -> bool:
    """Only complete, successful responses are stored."""
    return response.status_code == 200


class CachingTransport(httpx.AsyncBaseTransport):
    """Transport that serves and refreshes responses from a cache generation."""

    def __init__(
        self,
        storage: CacheStorage,
        cache_name: str,
        policy: CachePolicy,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.storage = storage
        self.cache_name = cache_name
        self.policy = policy
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._refreshes: set[asyncio.Task[None]] = set()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        strategy = self.policy.classify(request)

        if strategy is Strategy.NETWORK_ONLY:
            return await self._transport.handle_async_request(request)

        key = request_key(request.method, str(request.url))
        cached = await asyncio.to_thread(self._match, key)

        if strategy is Strategy.CACHE_FIRST:
            if cached is not None:
                return self._from_cache(cached)
            return await self._fetch_and_store(request)

        # Own assets and pages: answer from cache when possible and refresh
        # the entry either way
        if cached is not None:
            self._schedule_refresh(request)
            return self._from_cache(cached)
        return await self._fetch_and_store(request)

    def _match(self, key: str) -> CachedResponse | None:
        try:
            return self.storage.match(self.cache_name, key)
        except Exception as e:
            logger.warning("Cache lookup for %s failed: %s", key, e)
            return None

    def _put(self, key: str, entry: CachedResponse) -> None:
        try:
            self.storage.put(self.cache_name, key, entry)
        except Exception as e:
            logger.warning("Could not cache %s: %s", key, e)

    @staticmethod
    def _from_cache(cached: CachedResponse) -> httpx.Response:
        return httpx.Response(
            cached.status_code,
            headers=cached.headers,
            content=cached.body,
            extensions={CACHE_EXTENSION: "hit"},
        )

    async def _fetch_and_store(self, request: httpx.Request) -> httpx.Response:
        """Fetch from the network, store if cacheable, and return the response."""
        response = await self._transport.handle_async_request(request)
        try:
            body = await response.aread()
        finally:
            await response.aclose()

        headers = [
            (name, value)
            for name, value in response.headers.multi_items()
            if name.lower() not in _DROPPED_HEADERS
        ]

        if is_cacheable(response):
            key = request_key(request.method, str(request.url))
            entry = CachedResponse(status_code=response.status_code, headers=headers, body=body)
            await asyncio.to_thread(self._put, key, entry)
        else:
            logger.debug("Not caching %s (HTTP %d)", request.url, response.status_code)

        return httpx.Response(
            response.status_code,
            headers=headers,
            content=body,
            extensions={CACHE_EXTENSION: "miss"},
        )

    def _schedule_refresh(self, request: httpx.Request) -> None:
        task = asyncio.create_task(self._refresh(request))
        self._refreshes.add(task)
        task.add_done_callback(self._refreshes.discard)

    async def _refresh(self, request: httpx.Request) -> None:
        fresh = httpx.Request(request.method, request.url, headers=request.headers)
        try:
            await self._fetch_and_store(fresh)
        except Exception as e:
            logger.debug("Background refresh of %s failed: %s", request.url, e)

    async def precache(self, url: str) -> bool:
        """Fetch a URL straight into the current generation.

        Returns:
            True if the response was stored
        """
        request = httpx.Request("GET", url)
        try:
            response = await self._fetch_and_store(request)
        except httpx.HTTPError as e:
            logger.warning("Could not pre-cache %s: %s", url, e)
            return False
        return is_cacheable(response)

    async def wait_for_refreshes(self) -> None:
        """Wait until every background refresh scheduled so far has finished."""
        while self._refreshes:
            await asyncio.gather(*list(self._refreshes), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._refreshes):
            task.cancel()
        for task in list(self._refreshes):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._transport.aclose()


class CacheLifecycle:
    """Generation housekeeping for install and activation."""

    def __init__(self, storage: CacheStorage, cache_name: str) -> None:
        self.storage = storage
        self.cache_name = cache_name

    async def install(self, transport: CachingTransport, urls: list[str]) -> int:
        """Pre-cache assets into the current generation.

        Failures are logged and skipped.

        Returns:
            Number of assets stored
        """
        self.storage.open(self.cache_name)
        results = await asyncio.gather(*(transport.precache(url) for url in urls))
        stored = sum(1 for ok in results if ok)
        logger.info("Pre-cached %d/%d assets into %s", stored, len(urls), self.cache_name)
        return stored

    def activate(self) -> list[str]:
        """Delete every generation except the current one.

        Returns:
            Names of the deleted generations
        """
        deleted = []
        for name in self.storage.keys():
            if name != self.cache_name:
                self.storage.delete(name)
                deleted.append(name)
                logger.info("Deleted outdated cache generation %s", name)
        self.storage.open(self.cache_name)
        return deleted
