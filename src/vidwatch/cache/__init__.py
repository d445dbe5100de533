"""Versioned response cache for the agent's HTTP client."""

from .policy import CachePolicy, Strategy
from .storage import CachedResponse, CacheStorage, request_key
from .transport import CacheLifecycle, CachingTransport

__all__ = [
    "CacheLifecycle",
    "CachePolicy",
    "CachedResponse",
    "CacheStorage",
    "CachingTransport",
    "Strategy",
    "request_key",
]
