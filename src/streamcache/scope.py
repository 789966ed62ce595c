"""Cache scope: which streams and events are eligible for local caching.

A ScopeFilter is shared by reference between the Connection, the cache
manager and both accessors. It doubles as the query filter sent to the API.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from streamcache.model import Event, Stream
from streamcache.utils import is_absent_id

Candidate = Union[Stream, Event, Dict[str, Any]]


def _parent_of(node: Any) -> Optional[str]:
    """Parent id of a Stream or a stream record."""
    if isinstance(node, Stream):
        return node.parent_id
    if isinstance(node, dict):
        return node.get("parentId")
    return None


@dataclass
class ScopeFilter:
    """Predicate over streams and events.

    All criteria are optional; an empty filter accepts everything except
    trashed items.

    Attributes:
        stream_ids: Accept only these streams and their descendants
        from_time: Earliest event time (seconds, inclusive)
        to_time: Latest event time (seconds, inclusive)
        tags: Accept events carrying at least one of these tags
        types: Accept events of these types ('class/format' or 'class/*')
        limit: Maximum number of events returned by ``select``
        include_trashed: Also accept trashed streams and events

    Examples:
        >>> scope = ScopeFilter(stream_ids=['health'], from_time=0.0)
        >>> scope.apply({'id': 'e1', 'streamId': 'health', 'time': 10.0})
        True
        >>> scope.apply({'id': 'e2', 'streamId': 'work', 'time': 10.0})
        False
    """

    stream_ids: Optional[List[str]] = None
    from_time: Optional[float] = None
    to_time: Optional[float] = None
    tags: Optional[List[str]] = None
    types: Optional[List[str]] = None
    limit: Optional[int] = None
    include_trashed: bool = False

    @property
    def is_empty(self) -> bool:
        """True if no criterion is set."""
        return (
            self.stream_ids is None
            and self.from_time is None
            and self.to_time is None
            and not self.tags
            and not self.types
            and self.limit is None
        )

    def in_stream_scope(
        self, stream_id: Optional[str], streams: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """Check whether a stream id lies inside the scoped subtrees.

        Ancestors are looked up in ``streams`` through their parent ids. A
        stream whose ancestry cannot be resolved is only in scope if it is
        listed itself. Parent cycles are walked at most once.

        Args:
            stream_id: Stream identifier to test
            streams: Flat mapping of stream id -> Stream or stream record

        Returns:
            True if in scope
        """
        if self.stream_ids is None:
            return True
        if is_absent_id(stream_id):
            return False

        wanted = set(self.stream_ids)
        streams = streams or {}
        visited = set()
        current = stream_id
        while not is_absent_id(current) and current not in visited:
            if current in wanted:
                return True
            visited.add(current)
            node = streams.get(current)
            if node is None:
                break
            current = _parent_of(node)
        return False

    def _type_matches(self, event_type: Optional[str]) -> bool:
        if not self.types:
            return True
        if event_type is None:
            return False
        for wanted in self.types:
            if wanted == event_type:
                return True
            if wanted.endswith("/*") and event_type.startswith(wanted[:-1]):
                return True
        return False

    def _apply_event(
        self, event: Event, streams: Optional[Mapping[str, Any]]
    ) -> bool:
        if event.trashed and not self.include_trashed:
            return False
        if not self.in_stream_scope(event.stream_id, streams):
            return False
        if self.from_time is not None or self.to_time is not None:
            if event.time is None:
                return False
            if self.from_time is not None and event.time < self.from_time:
                return False
            if self.to_time is not None and event.time > self.to_time:
                return False
        if self.tags and not set(self.tags).intersection(event.tags):
            return False
        return self._type_matches(event.type)

    def _apply_stream(
        self, stream: Stream, streams: Optional[Mapping[str, Any]]
    ) -> bool:
        if stream.trashed and not self.include_trashed:
            return False
        lookup = dict(streams or {})
        lookup.setdefault(stream.id, stream)
        return self.in_stream_scope(stream.id, lookup)

    def apply(
        self, candidate: Candidate, streams: Optional[Mapping[str, Any]] = None
    ) -> bool:
        """Test whether a stream or event is inside the scope.

        Args:
            candidate: Stream, Event, or a raw record (a record carrying a
                'streamId' is treated as an event)
            streams: Flat mapping used to resolve stream ancestry

        Returns:
            True if the candidate may be cached
        """
        if isinstance(candidate, dict):
            if "streamId" in candidate:
                candidate = Event.from_dict(candidate)
            else:
                candidate = Stream.from_dict(candidate)

        if isinstance(candidate, Event):
            return self._apply_event(candidate, streams)
        if isinstance(candidate, Stream):
            return self._apply_stream(candidate, streams)
        raise TypeError(f"Cannot apply scope to {type(candidate).__name__}")

    def select(
        self,
        candidates: Iterable[Candidate],
        streams: Optional[Mapping[str, Any]] = None,
    ) -> List[Candidate]:
        """Keep in-scope candidates.

        Events are returned newest first and truncated to ``limit``; streams
        keep their input order.
        """
        kept = [c for c in candidates if self.apply(c, streams)]

        def is_event(candidate: Candidate) -> bool:
            if isinstance(candidate, dict):
                return "streamId" in candidate
            return isinstance(candidate, Event)

        def event_time(candidate: Candidate) -> float:
            if isinstance(candidate, Event):
                value = candidate.time
            else:
                value = candidate.get("time")
            return float("-inf") if value is None else float(value)

        events = [c for c in kept if is_event(c)]
        if not events:
            return kept

        events.sort(key=event_time, reverse=True)
        if self.limit is not None:
            events = events[: self.limit]
        return events

    def to_params(self) -> Dict[str, Any]:
        """Query parameters for the API.

        Examples:
            >>> ScopeFilter(stream_ids=['a'], limit=10).to_params()
            {'streams[]': ['a'], 'limit': 10}
        """
        params: Dict[str, Any] = {}
        if self.from_time is not None:
            params["fromTime"] = self.from_time
        if self.to_time is not None:
            params["toTime"] = self.to_time
        if self.stream_ids is not None:
            params["streams[]"] = list(self.stream_ids)
        if self.tags:
            params["tags[]"] = list(self.tags)
        if self.types:
            params["types[]"] = list(self.types)
        if self.limit is not None:
            params["limit"] = self.limit
        if self.include_trashed:
            params["state"] = "all"
        return params

    def describe(self) -> str:
        """Short human-readable summary."""
        if self.is_empty and not self.include_trashed:
            return "everything"

        parts = []
        if self.stream_ids is not None:
            parts.append(f"streams={','.join(self.stream_ids) or '-'}")
        if self.from_time is not None or self.to_time is not None:
            parts.append(f"time=[{self.from_time}, {self.to_time}]")
        if self.tags:
            parts.append(f"tags={','.join(self.tags)}")
        if self.types:
            parts.append(f"types={','.join(self.types)}")
        if self.limit is not None:
            parts.append(f"limit={self.limit}")
        if self.include_trashed:
            parts.append("trashed")
        return " ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict form, stored in cache metadata."""
        return {
            "stream_ids": self.stream_ids,
            "from_time": self.from_time,
            "to_time": self.to_time,
            "tags": self.tags,
            "types": self.types,
            "limit": self.limit,
            "include_trashed": self.include_trashed,
        }
