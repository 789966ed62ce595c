"""Local cache of streams and events.

This module provides the on-disk cache handle used by a Connection: one
namespace folder per account, one JSON file per resource, writes filtered
by the cache scope.

Key components:
- CacheManager: Main cache interface
- CacheConfig: Configuration management
- CacheMetadata: Metadata and statistics
"""

from streamcache.cache.config import CacheConfig
from streamcache.cache.manager import (
    CacheDiskFullError,
    CacheError,
    CacheLockError,
    CacheManager,
    CachePermissionError,
)

__all__ = [
    "CacheManager",
    "CacheConfig",
    "CacheError",
    "CacheDiskFullError",
    "CachePermissionError",
    "CacheLockError",
]
