"""streamcache: cache-first access to a remote tree of streams and events."""

__version__ = "0.1.0"

from streamcache.accessors import DualResult, Source, SourceResult
from streamcache.connection import Connection
from streamcache.errors import (
    CacheError,
    ConnectionClosed,
    RemoteError,
    SourceUnavailable,
    StreamCacheError,
    TreeConsistencyWarning,
)
from streamcache.model import Event, Stream
from streamcache.scope import ScopeFilter

__all__ = [
    "Connection",
    "ScopeFilter",
    "Stream",
    "Event",
    "DualResult",
    "Source",
    "SourceResult",
    "StreamCacheError",
    "SourceUnavailable",
    "RemoteError",
    "ConnectionClosed",
    "CacheError",
    "TreeConsistencyWarning",
    "__version__",
]
