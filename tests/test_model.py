"""Tests for the Stream and Event models."""

import pytest

from streamcache.model import Event, Stream


class TestStream:
    """Test Stream conversion and helpers."""

    def test_from_dict(self):
        """Test parsing a wire record."""
        stream = Stream.from_dict(
            {"id": "b", "name": "Bee", "parentId": "a", "clientData": {"x": 1}}
        )

        assert stream.id == "b"
        assert stream.name == "Bee"
        assert stream.parent_id == "a"
        assert stream.extra == {"clientData": {"x": 1}}
        assert stream.is_root is False

    def test_empty_parent_is_root(self):
        """Test that an empty parentId counts as no parent."""
        stream = Stream.from_dict({"id": "a", "parentId": ""})
        assert stream.parent_id is None
        assert stream.is_root is True

    def test_nested_children_ignored(self):
        """Test that nested children do not become the child list."""
        stream = Stream.from_dict({"id": "a", "children": [{"id": "b"}]})
        assert stream.children == []

    def test_missing_id(self):
        """Test that a record without id is rejected."""
        with pytest.raises(ValueError):
            Stream.from_dict({"name": "nameless"})

    def test_to_dict_roundtrip_keeps_extra(self):
        """Test that unknown fields survive conversion."""
        record = {"id": "a", "name": "A", "parentId": None, "created": 12.5}
        assert Stream.from_dict(record).to_dict() == record

    def test_to_dict_trashed(self):
        stream = Stream("a", trashed=True)
        assert stream.to_dict()["trashed"] is True

    def test_children_helpers(self):
        """Test add_child, child_ids and clear_children."""
        parent = Stream("a")
        parent.add_child(Stream("b", parent_id="a"))
        parent.add_child(Stream("c", parent_id="a"))

        assert parent.child_ids == ["b", "c"]

        parent.clear_children()
        assert parent.children == []

    def test_identity_equality(self):
        """Test that streams compare by identity, not by value."""
        assert Stream("a") != Stream("a")


class TestEvent:
    """Test Event conversion."""

    def test_from_dict(self):
        event = Event.from_dict(
            {
                "id": "e1",
                "streamId": "diary",
                "time": 10,
                "type": "note/txt",
                "tags": ["x"],
                "content": "hello",
                "modified": 11.0,
            }
        )

        assert event.stream_id == "diary"
        assert event.time == 10.0
        assert event.tags == ["x"]
        assert event.extra == {"modified": 11.0}

    def test_requires_stream_id(self):
        """Test that events must reference a stream."""
        with pytest.raises(ValueError, match="streamId"):
            Event.from_dict({"id": "e1"})

    def test_to_dict_omits_unset_fields(self):
        record = Event("e1", "diary").to_dict()
        assert record == {"id": "e1", "streamId": "diary"}
