"""Connection: entry point for reading and writing one account's data."""

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

from streamcache.accessors import (
    ConnectionHandle,
    EventsAccessor,
    SourcePolicy,
    StreamsAccessor,
)
from streamcache.api import ApiClient, HttpApiClient
from streamcache.cache import CacheManager
from streamcache.cache.config import get_global_config
from streamcache.clock import ClockSync
from streamcache.model import Stream
from streamcache.scope import ScopeFilter
from streamcache.tree import StreamRegistry, StreamTreeBuilder, TreeAnomaly
from streamcache.utils import (
    build_registration_url,
    build_url_endpoint,
    derive_namespace,
)

logger = logging.getLogger(__name__)


class Connection:
    """Access to the streams and events of one account.

    A Connection owns the API client, the local cache, the stream registry,
    the server clock estimate and a worker pool. Reads and writes go through
    ``connection.events`` and ``connection.streams``; whether they hit the
    API, the cache, or both is controlled by the activation toggles.

    Examples:
        Read through the cache, then the API:
        >>> conn = Connection('alice', 'my-token', 'example.io')
        >>> pending = conn.streams.get()
        >>> pending.result()                 # authoritative API result
        >>> conn.root_streams                # rebuilt tree

        Offline use:
        >>> conn.deactivate_api()
        >>> events = conn.events.get().result().data   # from cache only

        Restrict what is cached:
        >>> conn.setup_cache_scope(ScopeFilter(stream_ids=['diary']))
    """

    def __init__(
        self,
        username: str,
        token: str,
        domain: str,
        cache_enabled: bool = True,
        cache_dir: Optional[Union[str, Path]] = None,
        cache_ttl: Optional[int] = None,
        api_client: Optional[ApiClient] = None,
        max_workers: int = 4,
        timeout: float = 30.0,
        on_tree_anomaly: Optional[Callable[[TreeAnomaly], None]] = None,
    ):
        """Open a connection.

        Args:
            username: Account username
            token: Access token
            domain: Service domain (the API lives at https://<username>.<domain>/)
            cache_enabled: If True, create and activate the local cache
            cache_dir: Root cache directory (default: global CacheConfig)
            cache_ttl: TTL override in seconds for cache freshness reports
            api_client: Network client (default: HttpApiClient)
            max_workers: Size of the worker pool
            timeout: Request timeout of the default HTTP client
            on_tree_anomaly: Called for each stream the tree builder cannot
                place under a root

        Raises:
            CachePermissionError: If the cache directory cannot be created
            CacheError: If the cache cannot be initialized
        """
        self.username = username
        self.token = token
        self.domain = domain
        self.url_endpoint = build_url_endpoint(username, domain)
        self.registration_url = build_registration_url(domain)

        self.cache_namespace = self.generate_cache_folder_name()

        self._cache_dir = cache_dir
        self._cache_ttl = cache_ttl
        self._lock = threading.RLock()
        self._closed = False

        self.policy = SourcePolicy(api_active=True, cache_active=cache_enabled)
        self.clock = ClockSync()
        self.registry = StreamRegistry(StreamTreeBuilder(on_anomaly=on_tree_anomaly))
        self._scope = ScopeFilter()
        self._handle = ConnectionHandle(self)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="streamcache"
        )

        self.api = api_client or HttpApiClient(self.url_endpoint, token, timeout=timeout)

        self.cache: Optional[CacheManager] = None
        if cache_enabled:
            try:
                self.cache = self._create_cache()
            except Exception:
                self._executor.shutdown(wait=False)
                raise

        accessor_kwargs = dict(
            handle=self._handle,
            policy=self.policy,
            api=self.api,
            cache=self.cache,
            scope=self._scope,
            executor=self._executor,
            registry=self.registry,
            clock=self.clock,
        )
        self.events = EventsAccessor(**accessor_kwargs)
        self.streams = StreamsAccessor(**accessor_kwargs)

    def __repr__(self) -> str:
        return (
            f"Connection({self.url_endpoint!r}, api_active={self.is_api_active}, "
            f"cache_active={self.is_cache_active})"
        )

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _create_cache(self) -> CacheManager:
        """Create the cache handle in this connection's namespace folder."""
        config = dataclasses.replace(get_global_config(), enabled=True)
        if self._cache_dir is not None:
            config = dataclasses.replace(config, cache_dir=Path(self._cache_dir))

        cache = CacheManager(
            self.cache_namespace,
            config=config,
            scope=self._scope,
            ttl_override=self._cache_ttl,
        )
        logger.debug(f"Cache for {self.username} at {cache.cache_dir}")
        return cache

    # ==================== Activation ====================

    @property
    def is_api_active(self) -> bool:
        """Whether operations may use the API."""
        return self.policy.api_active

    @property
    def is_cache_active(self) -> bool:
        """Whether operations may use the local cache."""
        return self.policy.cache_active

    def activate_api(self) -> None:
        """Allow API calls."""
        self.policy.api_active = True

    def deactivate_api(self) -> None:
        """Stop using the API (offline mode)."""
        self.policy.api_active = False

    def activate_cache(self) -> None:
        """Use the local cache, creating it if this connection has none yet.

        Raises:
            CacheError: If the cache has to be created and cannot be
        """
        with self._lock:
            if self.cache is None:
                self.cache = self._create_cache()
                self.events.set_cache(self.cache)
                self.streams.set_cache(self.cache)
            self.policy.cache_active = True

    def deactivate_cache(self) -> None:
        """Stop using the local cache. Cached data is kept."""
        self.policy.cache_active = False

    @property
    def cache_scope(self) -> ScopeFilter:
        """Scope currently applied to cache writes."""
        return self._scope

    def setup_cache_scope(self, scope: ScopeFilter) -> None:
        """Restrict what is stored in the local cache, and activate the cache.

        The cache and both accessors use the new scope when this returns.
        Records already cached outside the new scope are not evicted.

        Args:
            scope: New cache scope
        """
        with self._lock:
            self.activate_cache()
            self.cache.configure(scope)
            self._scope = scope
            self.events.set_cache_scope(scope)
            self.streams.set_cache_scope(scope)
        logger.info(f"Cache scope set to: {scope.describe()}")

    def generate_cache_folder_name(self) -> str:
        """Cache namespace derived from the endpoint, token, username and domain."""
        return derive_namespace(self.url_endpoint, self.token, self.username, self.domain)

    # ==================== Streams ====================

    @property
    def root_streams(self) -> Mapping[str, Stream]:
        """Root streams keyed by id (read-only snapshot)."""
        return self.registry.root_streams

    @property
    def flat_streams(self) -> Mapping[str, Stream]:
        """All known streams keyed by id (read-only snapshot)."""
        return self.registry.flat_streams

    def update_root_streams(self, root_streams: Mapping[str, Stream]) -> None:
        """Replace the root stream view with an externally built tree.

        The input is trusted and not validated against the known streams.
        """
        self.registry.update_root_streams(root_streams)

    # ==================== Time ====================

    def server_time_in_system_date(self, server_time: Optional[float] = None) -> datetime:
        """Current time with server clock semantics, as a UTC datetime.

        See ClockSync.to_local_time: the argument does not affect the result.
        """
        return self.clock.to_local_datetime(server_time)

    # ==================== Cache management ====================

    def cache_status(self, resource: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Get cache statistics or the status of one resource.

        Args:
            resource: 'events' or 'streams'. If None, returns overall stats.

        Returns:
            Status dict, or None if this connection has no cache
        """
        if self.cache is None:
            return None
        if resource is None:
            return self.cache.get_stats()
        return self.cache.get_status(resource)

    def clear_cache(self, resource: Optional[str] = None) -> None:
        """Delete cached data of one resource, or all of it."""
        if self.cache is None:
            return
        if resource is None:
            self.cache.clear_all()
        else:
            self.cache.clear_resource(resource)

    # ==================== Lifecycle ====================

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, wait: bool = False) -> None:
        """Tear down the connection.

        Pending operations fail with ConnectionClosed, queued work is
        cancelled and results still in flight are dropped.

        Args:
            wait: Let already submitted work (cache write-backs included)
                finish before tearing down
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if wait:
            self._executor.shutdown(wait=True)
        self._handle.invalidate()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.events.abandon_pending()
        self.streams.abandon_pending()
        self.api.close()
        logger.debug(f"Connection to {self.url_endpoint} closed")
