"""Dual-source accessors for events and streams.

An accessor decides, per operation, whether to talk to the API, the local
cache, or both, according to the Connection's activation policy:

- both active: cache and API are called concurrently. The cache result is
  delivered first as a tentative preview, the API result second as the final
  result, and the API result is then written back to the cache.
- API only: a single API call, the cache is not touched.
- cache only: a single cache operation whose result is final.
- neither: SourceUnavailable is raised by the call itself.

Each operation returns a DualResult holding two futures (``preview`` and
``final``) and optionally calls ``callback`` with each SourceResult, cache
first.
"""

import logging
import threading
import weakref
from concurrent.futures import Executor, Future, InvalidStateError
from dataclasses import dataclass
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from streamcache.api import ApiClient, ApiResponse
from streamcache.cache import CacheError, CacheManager
from streamcache.clock import ClockSync
from streamcache.errors import ConnectionClosed, RemoteError, SourceUnavailable
from streamcache.model import Event, Stream
from streamcache.scope import ScopeFilter
from streamcache.tree import StreamRegistry
from streamcache.utils import EVENTS_RESOURCE, STREAMS_RESOURCE

if TYPE_CHECKING:
    from streamcache.connection import Connection

logger = logging.getLogger(__name__)

ResultCallback = Callable[["SourceResult"], None]


class Source(Enum):
    """Origin of a result."""

    CACHE = "cache"
    API = "api"


@dataclass(frozen=True)
class SourceResult:
    """One result of an accessor operation.

    Attributes:
        source: Where the data came from
        data: List of models for ``get``, a model for ``create``/``update``,
            a model or the deleted id for ``delete``
        tentative: True for a cache preview that an API result will follow
        server_time: Server timestamp of an API response
        stale: True if the cached resource is older than the cache TTL
    """

    source: Source
    data: Any
    tentative: bool = False
    server_time: Optional[float] = None
    stale: bool = False


def _resolve(
    future: Future, value: Any = None, error: Optional[BaseException] = None
) -> None:
    """Complete a future unless it is already done."""
    try:
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value)
    except InvalidStateError:
        pass


class DualResult:
    """Two-phase result of an accessor operation.

    ``preview`` resolves to the tentative cache SourceResult, or None when
    no preview was produced. ``final`` resolves to the authoritative
    SourceResult or carries the operation's error. When both are produced,
    ``preview`` always resolves before ``final``.

    Examples:
        >>> pending = connection.events.get()
        >>> first = pending.preview.result()   # may be None
        >>> events = pending.result().data     # authoritative list
    """

    def __init__(self):
        self.preview: Future = Future()
        self.final: Future = Future()

    def result(self, timeout: Optional[float] = None) -> SourceResult:
        """Wait for the final result."""
        return self.final.result(timeout)

    def results(self, timeout: Optional[float] = None) -> List[SourceResult]:
        """Wait for the final result and return all results in delivery order."""
        final = self.final.result(timeout)
        preview = None
        # A failed preview is not a result
        if self.preview.done() and self.preview.exception() is None:
            preview = self.preview.result()
        return [r for r in (preview, final) if r is not None]

    def done(self) -> bool:
        return self.final.done()

    def abandon(self, reason: str) -> None:
        """Fail whatever is still pending with ConnectionClosed."""
        _resolve(self.preview, None)
        _resolve(self.final, error=ConnectionClosed(reason))


class SourcePolicy:
    """Activation flags shared by a Connection and its accessors."""

    def __init__(self, api_active: bool = True, cache_active: bool = True):
        self.api_active = api_active
        self.cache_active = cache_active

    def snapshot(self) -> Tuple[bool, bool]:
        """Current (api_active, cache_active) pair."""
        return self.api_active, self.cache_active


class ConnectionHandle:
    """Non-owning reference to a Connection with an explicit closed flag.

    Asynchronous work checks ``alive`` before applying a result so that a
    closed (or garbage collected) Connection is never written into.
    """

    def __init__(self, connection: "Connection"):
        self._ref = weakref.ref(connection)
        self._closed = threading.Event()

    @property
    def alive(self) -> bool:
        return not self._closed.is_set() and self._ref() is not None

    def get(self) -> Optional["Connection"]:
        """The Connection, or None once closed or collected."""
        if self._closed.is_set():
            return None
        return self._ref()

    def invalidate(self) -> None:
        self._closed.set()


class DualSourceAccessor:
    """Shared dual-source logic, specialised per resource.

    Subclasses set the resource names and the model class, and may override
    the hooks ``_parse_listing``, ``_apply`` and ``_write_back_listing``.
    """

    resource: str = ""
    item_key: str = ""
    collection_key: str = ""
    deletion_key: str = ""
    model: Any = None

    def __init__(
        self,
        handle: ConnectionHandle,
        policy: SourcePolicy,
        api: Optional[ApiClient],
        cache: Optional[CacheManager],
        scope: ScopeFilter,
        executor: Executor,
        registry: StreamRegistry,
        clock: ClockSync,
    ):
        """Initialize accessor.

        Args:
            handle: Handle of the owning Connection
            policy: Shared activation flags
            api: Network client
            cache: Cache handle (None while caching was never enabled)
            scope: Shared cache scope
            executor: Worker pool running API and cache calls
            registry: Stream registry of the Connection
            clock: Clock fed with server timestamps
        """
        self._handle = handle
        self.policy = policy
        self.api = api
        self.cache = cache
        self.scope = scope
        self._executor = executor
        self.registry = registry
        self.clock = clock
        self._pending: Set[DualResult] = set()
        self._pending_lock = threading.Lock()

    def set_cache(self, cache: Optional[CacheManager]) -> None:
        """Attach the cache handle."""
        self.cache = cache

    def set_cache_scope(self, scope: ScopeFilter) -> None:
        """Use a new cache scope for write-backs."""
        self.scope = scope

    # ==================== Public operations ====================

    def get(
        self,
        scope: Optional[ScopeFilter] = None,
        callback: Optional[ResultCallback] = None,
    ) -> DualResult:
        """Fetch records matching an optional query filter.

        Args:
            scope: Query filter (None = everything)
            callback: Called with each SourceResult in delivery order

        Returns:
            DualResult whose data is a list of models

        Raises:
            SourceUnavailable: If API and cache are both deactivated
        """

        def from_api() -> ApiResponse:
            return self.api.request("GET", self.resource, scope=scope)

        def from_cache() -> Optional[List[Any]]:
            records = self.cache.get(
                self.resource, scope=scope, streams=self.registry.flat_streams
            )
            if records is None:
                return None
            return [self.model.from_dict(r) for r in records]

        return self._dispatch(
            "get",
            api_call=from_api,
            parse=self._parse_listing,
            cache_call=from_cache,
            apply=lambda data, tentative: self._apply(
                "get", data, scope, tentative
            ),
            write_back=lambda data: self._write_back_listing(data, scope),
            callback=callback,
        )

    def create(
        self, item: Any, callback: Optional[ResultCallback] = None
    ) -> DualResult:
        """Create a record.

        Returns:
            DualResult whose data is the created model
        """

        def from_api() -> ApiResponse:
            return self.api.request("POST", self.resource, payload=item.to_dict())

        return self._dispatch(
            "create",
            api_call=from_api,
            parse=self._parse_item,
            cache_call=lambda: self._cache_put(item),
            apply=lambda data, tentative: self._apply(
                "create", data, None, tentative
            ),
            write_back=self._cache_put,
            callback=callback,
        )

    def update(
        self, item: Any, callback: Optional[ResultCallback] = None
    ) -> DualResult:
        """Update a record (matched by id).

        Returns:
            DualResult whose data is the updated model
        """

        def from_api() -> ApiResponse:
            changes = item.to_dict()
            changes.pop("id", None)
            return self.api.request(
                "PUT", f"{self.resource}/{item.id}", payload=changes
            )

        return self._dispatch(
            "update",
            api_call=from_api,
            parse=self._parse_item,
            cache_call=lambda: self._cache_put(item),
            apply=lambda data, tentative: self._apply(
                "update", data, None, tentative
            ),
            write_back=self._cache_put,
            callback=callback,
        )

    def delete(
        self, item_id: str, callback: Optional[ResultCallback] = None
    ) -> DualResult:
        """Delete a record.

        The API may answer with the trashed record (first deletion) or with
        a deletion notice; the cache always removes the record.

        Returns:
            DualResult whose data is the trashed model or the deleted id
        """

        def from_api() -> ApiResponse:
            return self.api.request("DELETE", f"{self.resource}/{item_id}")

        def from_cache() -> str:
            self.cache.delete(self.resource, item_id)
            return item_id

        def write_back(data: Any) -> None:
            self.cache.delete(self.resource, item_id)
            if isinstance(data, self.model):
                self._cache_put(data)

        return self._dispatch(
            "delete",
            api_call=from_api,
            parse=self._parse_deletion,
            cache_call=from_cache,
            apply=lambda data, tentative: self._apply(
                "delete", data, item_id, tentative
            ),
            write_back=write_back,
            callback=callback,
        )

    def abandon_pending(self) -> None:
        """Fail every unfinished operation with ConnectionClosed."""
        with self._pending_lock:
            pending = list(self._pending)
            self._pending.clear()
        for result in pending:
            result.abandon(
                f"Connection closed before {self.resource} operation completed"
            )

    # ==================== Hooks ====================

    def _parse_listing(self, payload: Dict[str, Any]) -> List[Any]:
        return [self.model.from_dict(r) for r in payload[self.collection_key]]

    def _parse_item(self, payload: Dict[str, Any]) -> Any:
        return self.model.from_dict(payload[self.item_key])

    def _parse_deletion(self, payload: Dict[str, Any]) -> Any:
        if self.item_key in payload:
            return self._parse_item(payload)
        return payload[self.deletion_key]["id"]

    def _apply(
        self, operation: str, data: Any, context: Any, tentative: bool = False
    ) -> None:
        """Apply a delivered result to in-memory state.

        ``tentative`` is True for a cache preview that an API result will
        follow.
        """
        pass

    def _cache_put(self, item: Any) -> Any:
        self.cache.put(
            self.resource,
            [item.to_dict()],
            streams=self.registry.flat_streams,
            scope=self.scope,
        )
        return item

    def _write_back_listing(
        self, data: List[Any], query: Optional[ScopeFilter]
    ) -> None:
        records = [item.to_dict() for item in data]
        self.cache.put(
            self.resource, records, streams=self.registry.flat_streams, scope=self.scope
        )

    # ==================== Dispatch ====================

    def _dispatch(
        self,
        operation: str,
        api_call: Callable[[], ApiResponse],
        parse: Callable[[Dict[str, Any]], Any],
        cache_call: Callable[[], Any],
        apply: Callable[[Any, bool], None],
        write_back: Callable[[Any], None],
        callback: Optional[ResultCallback],
    ) -> DualResult:
        api_on, cache_on = self.policy.snapshot()
        api_on = api_on and self.api is not None
        cache_on = cache_on and self.cache is not None

        if not api_on and not cache_on:
            raise SourceUnavailable(
                f"Cannot {operation} {self.resource}: "
                "API and cache are both deactivated"
            )

        result = DualResult()
        with self._pending_lock:
            self._pending.add(result)
        result.final.add_done_callback(lambda _: self._forget(result))

        label = f"{operation} {self.resource}"
        if api_on and cache_on:
            logger.debug(f"{label}: cache preview + API")
            preview_done = threading.Event()
            self._submit(
                result,
                self._run_preview,
                label,
                result,
                cache_call,
                apply,
                callback,
                preview_done,
            )
            self._submit(
                result,
                self._run_remote,
                label,
                result,
                api_call,
                parse,
                apply,
                write_back,
                callback,
                preview_done,
            )
        elif api_on:
            logger.debug(f"{label}: API only")
            _resolve(result.preview, None)
            self._submit(
                result,
                self._run_remote,
                label,
                result,
                api_call,
                parse,
                apply,
                None,
                callback,
                None,
            )
        else:
            logger.debug(f"{label}: cache only")
            _resolve(result.preview, None)
            self._submit(
                result, self._run_cache_only, label, result, cache_call, apply, callback
            )
        return result

    def _forget(self, result: DualResult) -> None:
        with self._pending_lock:
            self._pending.discard(result)

    def _submit(self, result: DualResult, fn: Callable, *args: Any) -> None:
        try:
            self._executor.submit(fn, *args)
        except RuntimeError as e:
            # Executor already shut down
            result.abandon(f"Connection closed: {e}")

    def _deliver(
        self, callback: Optional[ResultCallback], source_result: SourceResult
    ) -> None:
        if callback is None:
            return
        try:
            callback(source_result)
        except Exception:
            logger.exception(f"Result callback for {self.resource} raised")

    def _is_stale(self) -> bool:
        try:
            return not self.cache.is_fresh(self.resource)
        except Exception as e:
            logger.warning(f"Could not check cache freshness: {e}")
            return True

    def _run_preview(
        self,
        label: str,
        result: DualResult,
        cache_call: Callable[[], Any],
        apply: Callable[[Any, bool], None],
        callback: Optional[ResultCallback],
        preview_done: threading.Event,
    ) -> None:
        try:
            try:
                data = cache_call()
            except (CacheError, ValueError) as e:
                logger.warning(f"Cache {label} failed, relying on API: {e}")
                _resolve(result.preview, None)
                return

            if data is None:
                logger.debug(f"Cache miss for {label}, waiting for API")
                _resolve(result.preview, None)
                return

            if not self._handle.alive:
                _resolve(result.preview, None)
                return

            apply(data, True)
            preview = SourceResult(
                Source.CACHE, data, tentative=True, stale=self._is_stale()
            )
            self._deliver(callback, preview)
            _resolve(result.preview, preview)
        except Exception as e:
            logger.error(f"Unexpected error in cache {label}: {e}")
            _resolve(result.preview, error=e)
        finally:
            preview_done.set()

    def _run_remote(
        self,
        label: str,
        result: DualResult,
        api_call: Callable[[], ApiResponse],
        parse: Callable[[Dict[str, Any]], Any],
        apply: Callable[[Any, bool], None],
        write_back: Optional[Callable[[Any], None]],
        callback: Optional[ResultCallback],
        preview_done: Optional[threading.Event],
    ) -> None:
        try:
            response = api_call()
            data = parse(response.payload)
        except RemoteError as e:
            if preview_done is not None:
                preview_done.wait()
            _resolve(result.final, error=e)
            return
        except (KeyError, TypeError, ValueError) as e:
            error = RemoteError(f"Unexpected API response for {label}: {e}")
            error.__cause__ = e
            if preview_done is not None:
                preview_done.wait()
            _resolve(result.final, error=error)
            return
        except Exception as e:
            error = RemoteError(f"API call for {label} failed: {e}")
            error.__cause__ = e
            if preview_done is not None:
                preview_done.wait()
            _resolve(result.final, error=error)
            return

        # The cache preview, if any, must reach the caller first
        if preview_done is not None:
            preview_done.wait()

        if not self._handle.alive:
            logger.debug(f"Dropping API result of {label}: connection closed")
            closed = ConnectionClosed(f"Connection closed during {label}")
            _resolve(result.final, error=closed)
            return

        try:
            self.clock.observe(response.server_time)
            apply(data, False)
            final = SourceResult(Source.API, data, server_time=response.server_time)
            self._deliver(callback, final)
            _resolve(result.final, final)
        except Exception as e:
            logger.error(f"Failed to apply API result of {label}: {e}")
            _resolve(result.final, error=e)
            return

        if write_back is not None:
            self._run_write_back(label, write_back, data)

    def _run_write_back(
        self, label: str, write_back: Callable[[Any], None], data: Any
    ) -> None:
        if not self._handle.alive:
            return
        try:
            write_back(data)
        except CacheError as e:
            logger.warning(f"Cache write-back of {label} failed: {e}")
        except Exception:
            logger.exception(f"Unexpected error in cache write-back of {label}")

    def _run_cache_only(
        self,
        label: str,
        result: DualResult,
        cache_call: Callable[[], Any],
        apply: Callable[[Any, bool], None],
        callback: Optional[ResultCallback],
    ) -> None:
        try:
            data = cache_call()
        except Exception as e:
            logger.error(f"Cache {label} failed: {e}")
            _resolve(result.final, error=e)
            return

        if not self._handle.alive:
            closed = ConnectionClosed(f"Connection closed during {label}")
            _resolve(result.final, error=closed)
            return

        try:
            if data is None:
                # Miss: nothing cached yet, nothing to apply
                logger.debug(f"Cache miss for {label}")
                data = []
            else:
                apply(data, False)
            final = SourceResult(Source.CACHE, data, stale=self._is_stale())
            self._deliver(callback, final)
            _resolve(result.final, final)
        except Exception as e:
            logger.error(f"Failed to apply cache result of {label}: {e}")
            _resolve(result.final, error=e)


class EventsAccessor(DualSourceAccessor):
    """Events of a Connection.

    Examples:
        >>> pending = connection.events.get(ScopeFilter(stream_ids=['diary']))
        >>> for event in pending.result().data:
        ...     print(event.id, event.time)
    """

    resource = EVENTS_RESOURCE
    item_key = "event"
    collection_key = "events"
    deletion_key = "eventDeletion"
    model = Event


def _flatten_stream_records(
    records: Iterable[Dict[str, Any]],
) -> Iterator[Dict[str, Any]]:
    """Yield stream records depth-first, unnesting 'children' lists."""
    for record in records:
        yield record
        children = record.get("children") or []
        for child in _flatten_stream_records(children):
            if not child.get("parentId"):
                child = dict(child, parentId=record.get("id"))
            yield child


class StreamsAccessor(DualSourceAccessor):
    """Streams of a Connection.

    Every result is applied to the stream registry, which rebuilds the tree
    before the result is delivered: an unfiltered listing replaces the
    registry, filtered listings, cache previews and writes update it.
    """

    resource = STREAMS_RESOURCE
    item_key = "stream"
    collection_key = "streams"
    deletion_key = "streamDeletion"
    model = Stream

    def _parse_listing(self, payload: Dict[str, Any]) -> List[Stream]:
        records = _flatten_stream_records(payload[self.collection_key])
        return [Stream.from_dict(r) for r in records]

    def _apply(
        self, operation: str, data: Any, context: Any, tentative: bool = False
    ) -> None:
        if operation == "get":
            # A preview may be partial (scoped cache), so it never removes streams
            if context is None and not tentative:
                self.registry.replace_all(data)
            else:
                self.registry.upsert_many(data)
        elif operation == "delete":
            if isinstance(data, Stream):
                self.registry.upsert(data)
            else:
                self.registry.remove(context)
        else:
            self.registry.upsert(data)

    def _write_back_listing(
        self, data: List[Stream], query: Optional[ScopeFilter]
    ) -> None:
        # An unfiltered listing is complete: drop streams the server no longer has
        self.cache.put(
            self.resource,
            [stream.to_dict() for stream in data],
            streams=self.registry.flat_streams,
            replace=query is None,
            scope=self.scope,
        )
