"""Which caching strategy applies to a request."""

from enum import Enum
from pathlib import PurePosixPath

import httpx

STATIC_EXTENSIONS = frozenset(
    {
        ".js",
        ".mjs",
        ".css",
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".svg",
        ".webp",
        ".ico",
        ".woff",
        ".woff2",
        ".ttf",
        ".webmanifest",
    }
)


class Strategy(Enum):
    """How a request is answered."""

    CACHE_FIRST_REFRESH = "cache-first-refresh"  # Own static assets
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"  # Own pages and data
    CACHE_FIRST = "cache-first"  # Trusted external hosts
    NETWORK_ONLY = "network-only"  # Everything else


class CachePolicy:
    """Classifies requests by origin and path."""

    def __init__(self, app_origin: str, allowed_hosts: list[str]) -> None:
        """Initialize the policy.

        Args:
            app_origin: ``scheme://host[:port]`` of the foreground application
            allowed_hosts: External hosts whose responses may be cached
        """
        origin = httpx.URL(app_origin)
        self._origin = (origin.scheme, origin.host, origin.port)
        self._allowed_hosts = frozenset(host.lower() for host in allowed_hosts)

    def is_same_origin(self, url: httpx.URL) -> bool:
        return (url.scheme, url.host, url.port) == self._origin

    def is_static_asset(self, url: httpx.URL) -> bool:
        return PurePosixPath(url.path).suffix.lower() in STATIC_EXTENSIONS

    def classify(self, request: httpx.Request) -> Strategy:
        if request.method != "GET":
            return Strategy.NETWORK_ONLY

        url = request.url
        if self.is_same_origin(url):
            if self.is_static_asset(url):
                return Strategy.CACHE_FIRST_REFRESH
            return Strategy.STALE_WHILE_REVALIDATE

        if url.host.lower() in self._allowed_hosts:
            return Strategy.CACHE_FIRST

        return Strategy.NETWORK_ONLY
