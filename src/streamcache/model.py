"""Stream and Event models.

Only the fields needed for identity, tree reconstruction and scoping are
modelled explicitly. Everything else in a record is kept in ``extra`` and
written back unchanged by ``to_dict()``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from streamcache.utils import is_absent_id


@dataclass(eq=False)
class Stream:
    """A node of the stream hierarchy.

    Attributes:
        id: Unique stream identifier
        name: Display name
        parent_id: Identifier of the parent stream, None for root streams
        children: Child streams, derived by the tree builder (not authoritative)
        trashed: Whether the stream is in the trash
        extra: Remaining record fields, carried through opaquely
    """

    id: str
    name: str = ""
    parent_id: Optional[str] = None
    children: List["Stream"] = field(default_factory=list, repr=False)
    trashed: bool = False
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _KNOWN_FIELDS = ("id", "name", "parentId", "trashed", "children")

    @property
    def is_root(self) -> bool:
        """True if the stream declares no parent."""
        return is_absent_id(self.parent_id)

    @property
    def child_ids(self) -> List[str]:
        """Identifiers of the current child streams, in order."""
        return [child.id for child in self.children]

    def clear_children(self) -> None:
        """Forget all child streams."""
        self.children = []

    def add_child(self, child: "Stream") -> None:
        """Append a child stream."""
        self.children.append(child)

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "Stream":
        """Build a Stream from its wire record.

        Nested ``children`` records are ignored; the tree is always rebuilt
        from parent identifiers.

        Raises:
            ValueError: If the record has no id
        """
        if is_absent_id(record.get("id")):
            raise ValueError(f"Stream record has no id: {record!r}")

        extra = {k: v for k, v in record.items() if k not in cls._KNOWN_FIELDS}
        return cls(
            id=record["id"],
            name=record.get("name") or "",
            parent_id=record.get("parentId") or None,
            trashed=bool(record.get("trashed", False)),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire record (without children)."""
        record = dict(self.extra)
        record.update(
            {
                "id": self.id,
                "name": self.name,
                "parentId": self.parent_id,
            }
        )
        if self.trashed:
            record["trashed"] = True
        return record


@dataclass
class Event:
    """A time-stamped record attached to a stream."""

    id: str
    stream_id: str
    time: Optional[float] = None
    type: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    content: Any = None
    trashed: bool = False
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    _KNOWN_FIELDS = ("id", "streamId", "time", "type", "tags", "content", "trashed")

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "Event":
        """Build an Event from its wire record.

        Raises:
            ValueError: If the record has no id or no stream id
        """
        if is_absent_id(record.get("id")):
            raise ValueError(f"Event record has no id: {record!r}")
        if is_absent_id(record.get("streamId")):
            raise ValueError(f"Event {record['id']} has no streamId")

        extra = {k: v for k, v in record.items() if k not in cls._KNOWN_FIELDS}
        time_value = record.get("time")
        return cls(
            id=record["id"],
            stream_id=record["streamId"],
            time=float(time_value) if time_value is not None else None,
            type=record.get("type"),
            tags=list(record.get("tags") or []),
            content=record.get("content"),
            trashed=bool(record.get("trashed", False)),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire record."""
        record = dict(self.extra)
        record.update({"id": self.id, "streamId": self.stream_id})
        if self.time is not None:
            record["time"] = self.time
        if self.type is not None:
            record["type"] = self.type
        if self.tags:
            record["tags"] = list(self.tags)
        if self.content is not None:
            record["content"] = self.content
        if self.trashed:
            record["trashed"] = True
        return record
