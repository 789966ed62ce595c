"""Stream tree reconstruction.

The flat registry (stream id -> Stream) is the single source of truth for
which streams exist and who their parents are. The tree (root streams and
each stream's children) is derived from it by ``StreamTreeBuilder`` and must
be rebuilt whenever the flat registry changes.

Streams whose parent id does not exist in the flat registry are orphans:
they are neither roots nor children. Streams caught in a parent cycle end up
as each other's children but are unreachable from any root. Both cases are
reported as ``TreeAnomaly`` records and logged; neither raises.
"""

import logging
import threading
import warnings
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from streamcache.errors import TreeConsistencyWarning
from streamcache.model import Stream

logger = logging.getLogger(__name__)

ORPHAN = "orphan"
UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class TreeAnomaly:
    """A stream that could not be placed under a root.

    Attributes:
        kind: 'orphan' (parent missing) or 'unreachable' (parent cycle, or
            descendant of an orphan)
        stream_id: Affected stream
        parent_id: Parent id the stream declares
    """

    kind: str
    stream_id: str
    parent_id: Optional[str]

    def __str__(self) -> str:
        if self.kind == ORPHAN:
            return f"stream {self.stream_id} references missing parent {self.parent_id}"
        return f"stream {self.stream_id} is not reachable from any root stream"


@dataclass
class TreeBuildResult:
    """Outcome of a rebuild."""

    roots: Dict[str, Stream] = field(default_factory=dict)
    anomalies: List[TreeAnomaly] = field(default_factory=list)


class StreamTreeBuilder:
    """Rebuilds root streams and child lists from a flat registry.

    Two passes make the result independent of iteration order (a child may
    be visited before its parent): the first collects root streams and
    resets every child list, the second attaches each stream to its parent.
    Child order follows the iteration order of the flat mapping.

    New child lists are assembled aside and assigned at the end, so a
    concurrent reader sees either the old or the new list of a stream.
    """

    def __init__(
        self,
        on_anomaly: Optional[Callable[[TreeAnomaly], None]] = None,
        emit_warnings: bool = False,
    ):
        """Initialize builder.

        Args:
            on_anomaly: Called once per anomaly found during a rebuild
            emit_warnings: Also issue a TreeConsistencyWarning per anomaly
        """
        self.on_anomaly = on_anomaly
        self.emit_warnings = emit_warnings

    def rebuild(self, flat: Mapping[str, Stream]) -> TreeBuildResult:
        """Rebuild the tree.

        Args:
            flat: Mapping of stream id -> Stream. The caller must keep it
                stable for the duration of the call.

        Returns:
            TreeBuildResult with the new root mapping and any anomalies
        """
        result = TreeBuildResult()
        children: Dict[str, List[Stream]] = {}

        # Pass 1: reset children, collect roots
        for stream_id, stream in flat.items():
            children[stream_id] = []
            if stream.is_root:
                logger.debug(f"Adding root stream: id={stream_id}, name={stream.name}")
                result.roots[stream_id] = stream

        # Pass 2: attach children to their parents
        for stream_id, stream in flat.items():
            if stream.is_root:
                continue
            if stream.parent_id not in flat:
                result.anomalies.append(
                    TreeAnomaly(ORPHAN, stream_id, stream.parent_id)
                )
                continue
            logger.debug(
                f"Adding child stream: id={stream_id}, name={stream.name} "
                f"to {stream.parent_id}"
            )
            children[stream.parent_id].append(stream)

        for stream_id, stream in flat.items():
            stream.children = children[stream_id]

        result.anomalies.extend(self._find_unreachable(flat, result, children))
        for anomaly in result.anomalies:
            self._report(anomaly)

        return result

    @staticmethod
    def _find_unreachable(
        flat: Mapping[str, Stream],
        result: TreeBuildResult,
        children: Dict[str, List[Stream]],
    ) -> List[TreeAnomaly]:
        reached = set()
        pending = list(result.roots)
        while pending:
            stream_id = pending.pop()
            if stream_id in reached:
                continue
            reached.add(stream_id)
            pending.extend(child.id for child in children.get(stream_id, []))

        orphans = {a.stream_id for a in result.anomalies}
        return [
            TreeAnomaly(UNREACHABLE, stream_id, stream.parent_id)
            for stream_id, stream in flat.items()
            if stream_id not in reached and stream_id not in orphans
        ]

    def _report(self, anomaly: TreeAnomaly) -> None:
        logger.warning(f"Stream tree: {anomaly}")
        if self.emit_warnings:
            warnings.warn(str(anomaly), TreeConsistencyWarning, stacklevel=3)
        if self.on_anomaly is not None:
            try:
                self.on_anomaly(anomaly)
            except Exception as e:
                logger.error(f"Tree anomaly hook failed: {e}")


class StreamRegistry:
    """Flat and root stream registries of one Connection.

    Writers (``replace_all``, ``upsert``, ``remove``, ``rebuild``) run the
    flat-registry mutation and the tree rebuild as a single unit under one
    lock. Readers get read-only snapshots that are swapped in after each
    write and never block.

    Examples:
        >>> registry = StreamRegistry()
        >>> _ = registry.replace_all([Stream('a'), Stream('b', parent_id='a')])
        >>> list(registry.root_streams)
        ['a']
        >>> registry.get('a').child_ids
        ['b']
    """

    def __init__(self, builder: Optional[StreamTreeBuilder] = None):
        self.builder = builder or StreamTreeBuilder()
        self._lock = threading.RLock()
        self._flat: Dict[str, Stream] = {}
        self._flat_view: Mapping[str, Stream] = MappingProxyType({})
        self._roots_view: Mapping[str, Stream] = MappingProxyType({})
        self._anomalies: Tuple[TreeAnomaly, ...] = ()

    @property
    def flat_streams(self) -> Mapping[str, Stream]:
        """Snapshot of all known streams, keyed by id."""
        return self._flat_view

    @property
    def root_streams(self) -> Mapping[str, Stream]:
        """Snapshot of the root streams, keyed by id."""
        return self._roots_view

    @property
    def anomalies(self) -> List[TreeAnomaly]:
        """Anomalies found by the last rebuild."""
        return list(self._anomalies)

    def get(self, stream_id: str) -> Optional[Stream]:
        """Get a stream by id."""
        return self._flat_view.get(stream_id)

    def __contains__(self, stream_id: object) -> bool:
        return stream_id in self._flat_view

    def __len__(self) -> int:
        return len(self._flat_view)

    def replace_all(self, streams: Iterable[Stream]) -> TreeBuildResult:
        """Replace the whole flat registry (full listing) and rebuild."""
        with self._lock:
            self._flat = {stream.id: stream for stream in streams}
            return self._rebuild_locked()

    def upsert(self, stream: Stream) -> TreeBuildResult:
        """Add or replace one stream and rebuild.

        A replaced stream keeps its position in the registry order.
        """
        with self._lock:
            self._flat[stream.id] = stream
            return self._rebuild_locked()

    def upsert_many(self, streams: Iterable[Stream]) -> TreeBuildResult:
        """Add or replace several streams with a single rebuild."""
        with self._lock:
            for stream in streams:
                self._flat[stream.id] = stream
            return self._rebuild_locked()

    def remove(self, stream_id: str) -> Optional[Stream]:
        """Remove a stream and rebuild.

        Returns:
            The removed stream, or None if it was unknown
        """
        with self._lock:
            removed = self._flat.pop(stream_id, None)
            self._rebuild_locked()
            return removed

    def rebuild(self) -> TreeBuildResult:
        """Rebuild the tree from the current flat registry."""
        with self._lock:
            return self._rebuild_locked()

    def update_root_streams(self, roots: Mapping[str, Stream]) -> None:
        """Replace the root view with an externally computed tree.

        The input is trusted: it bypasses the tree builder and is not
        checked against the flat registry. The next rebuild overwrites it.
        """
        with self._lock:
            self._roots_view = MappingProxyType(dict(roots))

    def _rebuild_locked(self) -> TreeBuildResult:
        result = self.builder.rebuild(self._flat)
        self._flat_view = MappingProxyType(dict(self._flat))
        self._roots_view = MappingProxyType(dict(result.roots))
        self._anomalies = tuple(result.anomalies)
        return result


def walk_tree(roots: Mapping[str, Stream]) -> Iterator[Tuple[int, Stream]]:
    """Depth-first walk yielding (depth, stream), each stream at most once."""
    seen = set()
    stack: List[Tuple[int, Stream]] = [(0, s) for s in reversed(list(roots.values()))]
    while stack:
        depth, stream = stack.pop()
        if stream.id in seen:
            continue
        seen.add(stream.id)
        yield depth, stream
        stack.extend((depth + 1, child) for child in reversed(stream.children))
