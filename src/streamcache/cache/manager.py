"""Cache manager: local JSON store of streams and events for one account."""

import contextlib
import logging
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

import orjson
from filelock import FileLock, Timeout

from streamcache.cache.config import CacheConfig
from streamcache.cache.metadata import CacheMetadata
from streamcache.cache.validation import (
    compute_checksum_from_bytes,
    get_ttl_remaining,
    is_ttl_valid,
)
from streamcache.scope import ScopeFilter
from streamcache.utils import CACHE_FOLDER, STREAMS_RESOURCE, CachedResource

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class CacheDiskFullError(CacheError):
    """Raised when disk is full and cannot write to cache."""

    pass


class CachePermissionError(CacheError):
    """Raised when cache directory permissions are insufficient."""

    pass


class CacheLockError(CacheError):
    """Raised when unable to acquire cache lock."""

    pass


class CacheManager:
    """Manages the local cache of one account namespace.

    Each resource ('streams', 'events') is stored as one JSON file holding
    records keyed by id. Writes are filtered through the cache scope and
    replace the file atomically. Thread-safe within a process and across
    processes using file-based locking.
    """

    def __init__(
        self,
        namespace: str,
        config: Optional[CacheConfig] = None,
        scope: Optional[ScopeFilter] = None,
        ttl_override: Optional[int] = None,
    ):
        """Initialize cache manager.

        The namespace directory is created if it does not exist.

        Args:
            namespace: Cache namespace (folder name) of the account
            config: Cache configuration (defaults if None)
            scope: Cache scope; records outside it are not stored
            ttl_override: Override default TTL for this namespace

        Raises:
            CachePermissionError: If the namespace directory is not writable
            CacheError: If the namespace directory cannot be created
        """
        self.namespace = namespace
        self.config = config or CacheConfig()
        self.scope = scope or ScopeFilter()

        # TTL can be overridden per namespace
        self.ttl = ttl_override if ttl_override is not None else self.config.default_ttl

        self.cache_dir = self.config.cache_dir / CACHE_FOLDER / namespace
        self.lock_dir = self.cache_dir / ".locks"
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise CachePermissionError(
                f"Cannot create cache directory at {self.cache_dir}: {e}"
            ) from e
        except OSError as e:
            logger.warning(f"Error creating cache directory: {e}")
            raise CacheError(
                f"Cannot access cache directory at {self.cache_dir}: {e}"
            ) from e

        # Guards metadata and read-modify-write cycles between threads
        self._lock = threading.RLock()

        try:
            self.metadata = CacheMetadata(self.cache_dir, namespace)
        except Exception as e:
            logger.error(f"Failed to load cache metadata: {e}")
            raise CacheError(f"Cannot initialize cache metadata: {e}") from e

    def _get_lock_path(self, resource: str) -> Path:
        return self.lock_dir / f"{resource}.lock"

    def _get_resource_path(self, resource: str) -> Path:
        return self.cache_dir / f"{resource}.json"

    @contextlib.contextmanager
    def _locked(self, resource: str) -> Iterator[None]:
        """Hold the thread lock and the file lock of a resource."""
        lock_path = self._get_lock_path(resource)
        with self._lock:
            try:
                with FileLock(lock_path, timeout=self.config.lock_timeout):
                    yield
            except Timeout as e:
                raise CacheLockError(
                    f"Timeout acquiring lock for {resource} after "
                    f"{self.config.lock_timeout} seconds"
                ) from e

    def configure(self, scope: ScopeFilter) -> None:
        """Set the cache scope.

        Already cached records outside the new scope are kept; only
        subsequent writes are filtered.

        Args:
            scope: New cache scope
        """
        with self._lock:
            self.metadata.set_scope(scope.to_dict())
            self.scope = scope
        logger.debug(f"Cache {self.namespace} scoped to: {scope.describe()}")

    # ==================== Resource file I/O ====================

    def _read_records(self, resource: str) -> Dict[str, Dict[str, Any]]:
        """Read the records of a resource (empty if never written).

        Raises:
            CacheError: If the file exists but cannot be read or parsed
        """
        path = self._get_resource_path(resource)
        if not path.exists():
            return {}

        try:
            data = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError as e:
            logger.error(f"Corrupted cache file {path}: {e}")
            raise CacheError(f"Corrupted cache file for {resource}: {e}") from e
        except OSError as e:
            logger.error(f"OS error reading cache file: {e}")
            raise CacheError(f"Cannot read cache file for {resource}: {e}") from e

        return data.get("records", {})

    def _check_disk_space(self, required_bytes: int) -> None:
        """Check if sufficient disk space is available.

        Raises:
            CacheDiskFullError: If insufficient disk space
        """
        try:
            stat = shutil.disk_usage(self.cache_dir)
            # Require 10% buffer beyond required bytes
            required_with_buffer = int(required_bytes * 1.1)

            if stat.free < required_with_buffer:
                raise CacheDiskFullError(
                    f"Insufficient disk space: {stat.free} bytes available, "
                    f"{required_with_buffer} bytes required"
                )
        except CacheDiskFullError:
            raise
        except OSError as e:
            logger.warning(f"Could not check disk space: {e}")

    def _write_records(
        self, resource: str, records: Dict[str, Dict[str, Any]]
    ) -> None:
        """Write the records of a resource atomically and update metadata."""
        payload: CachedResource = {
            "resource": resource,
            "last_synced": datetime.now(timezone.utc).isoformat(),
            "records": records,
        }
        content = orjson.dumps(payload)
        self._check_disk_space(len(content))

        path = self._get_resource_path(resource)
        temp_path = path.with_suffix(path.suffix + ".tmp")

        try:
            try:
                with open(temp_path, "wb") as f:
                    f.write(content)
            except PermissionError as e:
                raise CachePermissionError(
                    f"Cannot write to cache file {temp_path}: {e}"
                ) from e
            except OSError as e:
                if e.errno == 28:  # ENOSPC - No space left on device
                    raise CacheDiskFullError(
                        f"Disk full while writing {resource} to cache"
                    ) from e
                logger.error(f"OS error writing cache file: {e}")
                raise CacheError(f"Cannot write cache file: {e}") from e

            try:
                temp_path.replace(path)
            except OSError as e:
                logger.error(f"Error renaming temp file to cache path: {e}")
                raise CacheError(f"Cannot finalize cache file: {e}") from e
        except CacheError:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as e:
                    logger.warning(f"Failed to clean up temp file {temp_path}: {e}")
            raise

        try:
            self.metadata.set_resource(
                resource,
                record_count=len(records),
                checksum=compute_checksum_from_bytes(
                    content, self.config.checksum_algorithm
                ),
                size_bytes=len(content),
            )
        except Exception as e:
            # Not critical - records are cached even if metadata update fails
            logger.warning(f"Cache metadata update failed for {resource}: {e}")

    def _stream_lookup(
        self,
        streams: Optional[Mapping[str, Any]],
        extra: Iterable[Dict[str, Any]] = (),
    ) -> Dict[str, Any]:
        """Stream mapping used to resolve ancestry in scope checks."""
        lookup: Dict[str, Any] = dict(self._read_records(STREAMS_RESOURCE))
        if streams:
            lookup.update(streams)
        for record in extra:
            lookup[record["id"]] = record
        return lookup

    # ==================== Public operations ====================

    def get(
        self,
        resource: str,
        scope: Optional[ScopeFilter] = None,
        streams: Optional[Mapping[str, Any]] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        """Get cached records of a resource.

        Args:
            resource: Resource name ('streams' or 'events')
            scope: Optional query filter applied to the cached records
            streams: Stream mapping to resolve ancestry (cached streams are
                used when omitted)

        Returns:
            List of records, or None on a cache miss (resource never written)

        Raises:
            CacheError: If the cache file cannot be read
            CacheLockError: If unable to acquire lock
        """
        with self._locked(resource):
            if not self._get_resource_path(resource).exists():
                self.metadata.record_cache_miss()
                return None

            records = list(self._read_records(resource).values())
            self.metadata.record_cache_hit()

            if scope is None:
                return records
            return scope.select(records, self._stream_lookup(streams))

    def put(
        self,
        resource: str,
        records: Iterable[Dict[str, Any]],
        streams: Optional[Mapping[str, Any]] = None,
        replace: bool = False,
        scope: Optional[ScopeFilter] = None,
    ) -> List[Dict[str, Any]]:
        """Store records, keeping only those inside the cache scope.

        Args:
            resource: Resource name
            records: Records to upsert (keyed by their 'id')
            streams: Stream mapping to resolve ancestry for scope checks
            replace: If True, drop previously cached records of the resource
                (used for full listings)
            scope: Scope to filter with (default: the cache scope)

        Returns:
            The records that were stored

        Raises:
            CacheError: On any storage failure
        """
        records = list(records)
        scope = scope if scope is not None else self.scope
        with self._locked(resource):
            if resource == STREAMS_RESOURCE:
                lookup = self._stream_lookup(streams, records)
            else:
                lookup = self._stream_lookup(streams)

            stored = [r for r in records if scope.apply(r, lookup)]
            skipped = len(records) - len(stored)
            if skipped:
                logger.debug(f"{skipped} {resource} record(s) outside cache scope")

            current = {} if replace else self._read_records(resource)
            for record in stored:
                current[record["id"]] = record
            self._write_records(resource, current)
            return stored

    def delete(self, resource: str, record_id: str) -> bool:
        """Delete one record.

        Returns:
            True if the record was cached
        """
        with self._locked(resource):
            current = self._read_records(resource)
            if record_id not in current:
                return False
            del current[record_id]
            self._write_records(resource, current)
            self.metadata.record_delete()
            return True

    def is_fresh(self, resource: str) -> bool:
        """Check whether a resource was synced within the TTL."""
        entry = self.metadata.get_resource(resource)
        return entry is not None and is_ttl_valid(entry.get("last_synced"), self.ttl)

    def clear_resource(self, resource: str) -> None:
        """Remove a resource from the cache entirely."""
        with self._locked(resource):
            path = self._get_resource_path(resource)
            if path.exists():
                path.unlink()
            self.metadata.remove_resource(resource)

    def clear_all(self) -> None:
        """Clear the entire cache of this namespace."""
        with self._lock:
            for resource in list(self.metadata.get_all_resources()):
                self.clear_resource(resource)
            for path in self.cache_dir.glob("*.json"):
                path.unlink()
            self.metadata = CacheMetadata(self.cache_dir, self.namespace)
            self.metadata.set_scope(self.scope.to_dict())

    def get_status(self, resource: str) -> Optional[Dict[str, Any]]:
        """Get cache status for a resource.

        Returns:
            Status dict, or None if the resource is not cached
        """
        entry = self.metadata.get_resource(resource)
        if entry is None or not self._get_resource_path(resource).exists():
            return None

        return {
            "cached": True,
            "cache_path": str(self._get_resource_path(resource)),
            "record_count": entry["record_count"],
            "size_bytes": entry["size_bytes"],
            "checksum": entry["checksum"],
            "last_synced": entry["last_synced"],
            "fresh": is_ttl_valid(entry["last_synced"], self.ttl),
            "ttl_remaining": get_ttl_remaining(entry["last_synced"], self.ttl),
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Statistics dict
        """
        stats = self.metadata.get_stats()
        stats["namespace"] = self.namespace
        stats["cache_dir"] = str(self.cache_dir)
        stats["ttl_seconds"] = self.ttl
        stats["scope"] = self.scope.describe()
        stats["resources"] = sorted(self.metadata.get_all_resources())

        total_requests = stats["cache_hits"] + stats["cache_misses"]
        stats["cache_hit_rate"] = (
            stats["cache_hits"] / total_requests if total_requests > 0 else 0.0
        )

        return stats
