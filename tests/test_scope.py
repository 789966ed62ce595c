"""Tests for the cache scope filter."""

import pytest

from streamcache.model import Event, Stream
from streamcache.scope import ScopeFilter


@pytest.fixture
def streams():
    """Flat stream records: health > sleep > naps, work."""
    return {
        "health": {"id": "health", "parentId": None},
        "sleep": {"id": "sleep", "parentId": "health"},
        "naps": {"id": "naps", "parentId": "sleep"},
        "work": {"id": "work", "parentId": None},
    }


def event(event_id="e1", stream_id="naps", **fields):
    record = {"id": event_id, "streamId": stream_id}
    record.update(fields)
    return record


class TestEmptyScope:
    """Test the default scope."""

    def test_accepts_everything(self, streams):
        scope = ScopeFilter()
        assert scope.is_empty
        assert scope.apply(event(), streams)
        assert scope.apply(streams["work"], streams)

    def test_rejects_trashed(self, streams):
        """Test that trashed items are excluded unless asked for."""
        assert not ScopeFilter().apply(event(trashed=True), streams)
        assert ScopeFilter(include_trashed=True).apply(event(trashed=True), streams)


class TestStreamScope:
    """Test stream subtree membership."""

    def test_descendants_in_scope(self, streams):
        """Test that descendants of a scoped stream are accepted."""
        scope = ScopeFilter(stream_ids=["health"])

        assert scope.in_stream_scope("naps", streams)
        assert scope.in_stream_scope("health", streams)
        assert not scope.in_stream_scope("work", streams)

    def test_unknown_ancestry(self):
        """Test that unresolvable streams are only accepted when listed."""
        scope = ScopeFilter(stream_ids=["health"])
        assert scope.in_stream_scope("health", {})
        assert not scope.in_stream_scope("naps", {})

    def test_absent_id(self, streams):
        scope = ScopeFilter(stream_ids=["health"])
        assert not scope.in_stream_scope(None, streams)
        assert not scope.in_stream_scope("", streams)

    def test_parent_cycle_terminates(self):
        """Test that a parent cycle does not loop forever."""
        cyclic = {
            "a": Stream("a", parent_id="b"),
            "b": Stream("b", parent_id="a"),
        }
        assert not ScopeFilter(stream_ids=["x"]).in_stream_scope("a", cyclic)

    def test_apply_stream_model(self, streams):
        """Test scoping a Stream not yet in the lookup."""
        scope = ScopeFilter(stream_ids=["health"])
        assert scope.apply(Stream("new", parent_id="sleep"), streams)
        assert not scope.apply(Stream("other", parent_id="work"), streams)

    def test_event_in_scoped_subtree(self, streams):
        scope = ScopeFilter(stream_ids=["sleep"])
        assert scope.apply(event(stream_id="naps"), streams)
        assert not scope.apply(event(stream_id="health"), streams)


class TestEventCriteria:
    """Test time, tag and type criteria."""

    def test_time_range(self, streams):
        """Test inclusive time bounds."""
        scope = ScopeFilter(from_time=10.0, to_time=20.0)

        assert scope.apply(event(time=10.0), streams)
        assert scope.apply(event(time=20.0), streams)
        assert not scope.apply(event(time=9.9), streams)
        assert not scope.apply(event(time=20.1), streams)

    def test_time_range_requires_time(self, streams):
        """Test that events without time fail a time-bounded scope."""
        assert not ScopeFilter(from_time=0.0).apply(event(), streams)

    def test_tags(self, streams):
        """Test that one matching tag is enough."""
        scope = ScopeFilter(tags=["a", "b"])
        assert scope.apply(event(tags=["b", "z"]), streams)
        assert not scope.apply(event(tags=["z"]), streams)

    def test_types_with_wildcard(self, streams):
        """Test exact and class-wide type matching."""
        scope = ScopeFilter(types=["note/*", "mass/kg"])

        assert scope.apply(event(type="note/txt"), streams)
        assert scope.apply(event(type="mass/kg"), streams)
        assert not scope.apply(event(type="mass/lb"), streams)
        assert not scope.apply(event(), streams)

    def test_apply_event_model(self, streams):
        scope = ScopeFilter(stream_ids=["health"])
        assert scope.apply(Event("e1", "naps"), streams)

    def test_unsupported_candidate(self):
        with pytest.raises(TypeError):
            ScopeFilter().apply(42)


class TestSelect:
    """Test candidate selection."""

    def test_events_newest_first_with_limit(self, streams):
        """Test that events are sorted by time descending and truncated."""
        records = [
            event("old", time=1.0),
            event("new", time=3.0),
            event("mid", time=2.0),
            event("untimed"),
        ]

        selected = ScopeFilter(limit=2).select(records, streams)

        assert [r["id"] for r in selected] == ["new", "mid"]

    def test_streams_keep_order(self, streams):
        """Test that streams keep their input order."""
        selected = ScopeFilter(stream_ids=["health"]).select(
            list(streams.values()), streams
        )
        assert [r["id"] for r in selected] == ["health", "sleep", "naps"]


class TestSerialization:
    """Test parameter and description helpers."""

    def test_to_params(self):
        scope = ScopeFilter(
            stream_ids=["a"],
            from_time=1.0,
            to_time=2.0,
            tags=["t"],
            types=["note/txt"],
            limit=5,
            include_trashed=True,
        )

        assert scope.to_params() == {
            "fromTime": 1.0,
            "toTime": 2.0,
            "streams[]": ["a"],
            "tags[]": ["t"],
            "types[]": ["note/txt"],
            "limit": 5,
            "state": "all",
        }

    def test_empty_params(self):
        assert ScopeFilter().to_params() == {}

    def test_describe(self):
        assert ScopeFilter().describe() == "everything"
        assert ScopeFilter(stream_ids=["a", "b"], limit=3).describe() == (
            "streams=a,b limit=3"
        )

    def test_to_dict(self):
        data = ScopeFilter(stream_ids=["a"]).to_dict()
        assert data["stream_ids"] == ["a"]
        assert data["include_trashed"] is False
