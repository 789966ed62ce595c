"""Exception taxonomy for streamcache.

Accessor-level errors reach callers through the futures returned by each
operation. Cache errors are defined alongside the cache manager and
re-exported here so callers have a single import location.
"""

from typing import Optional

from streamcache.cache.manager import (
    CacheDiskFullError,
    CacheError,
    CacheLockError,
    CachePermissionError,
)


class StreamCacheError(Exception):
    """Base exception for streamcache errors."""

    pass


class SourceUnavailable(StreamCacheError):
    """Raised when both the API and the cache are deactivated."""

    pass


class RemoteError(StreamCacheError):
    """Raised when a network call fails (transport, HTTP status or timeout)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConnectionClosed(StreamCacheError):
    """Raised when a result arrives after its Connection was closed."""

    pass


class TreeConsistencyWarning(UserWarning):
    """Warning category for streams excluded from the rebuilt tree."""

    pass


__all__ = [
    "StreamCacheError",
    "SourceUnavailable",
    "RemoteError",
    "ConnectionClosed",
    "TreeConsistencyWarning",
    "CacheError",
    "CacheDiskFullError",
    "CachePermissionError",
    "CacheLockError",
]
