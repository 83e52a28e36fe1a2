"""
EventEmitter Tests
"""

import pytest

from shard_system.core.event_emitter import EventEmitter, EventTier


class TestEventEmitter:

    def test_default_tiers_stream_critical_and_system(self):
        emitter = EventEmitter()
        seen = []
        emitter.add_listener(seen.append)

        emitter.emit("graph_changed", {"reason": "root"}, point_id="T001")
        emitter.emit("child_appended", {})
        emitter.emit("tree_built", {})

        assert [e.event_type for e in seen] == ["graph_changed", "child_appended"]
        assert seen[0].tier == EventTier.CRITICAL
        assert seen[0].point_id == "T001"
        assert len(emitter.get_recent_events()) == 3

    def test_sequence_and_to_dict(self):
        emitter = EventEmitter()
        first = emitter.emit("point_created", {"a": 1})
        second = emitter.emit("point_created", {"a": 2})
        assert second.sequence == first.sequence + 1

        data = second.to_dict()
        assert data["type"] == "point_created"
        assert data["tier_name"] == "system"

    def test_unknown_event_is_debug(self):
        assert EventEmitter().emit("something_new", {}).tier == EventTier.DEBUG

    def test_tier_override(self):
        emitter = EventEmitter()
        emitter.set_tier_override("tree_built", EventTier.CRITICAL)
        assert emitter.emit("tree_built", {}).tier == EventTier.CRITICAL

        emitter.clear_tier_override("tree_built")
        assert emitter.emit("tree_built", {}).tier == EventTier.DEBUG
        assert emitter.emit("tree_built", {}, tier_override=EventTier.SYSTEM).tier == EventTier.SYSTEM

    def test_broken_listener_does_not_break_emit(self):
        emitter = EventEmitter()
        seen = []

        def broken(event):
            raise RuntimeError("listener bug")

        emitter.add_listener(broken)
        emitter.add_listener(seen.append)
        emitter.emit("graph_changed", {})
        assert len(seen) == 1

        emitter.remove_listener(broken)
        assert emitter.stats()["listener_count"] == 1

    def test_buffer_is_bounded(self):
        emitter = EventEmitter(buffer_max_size=5)
        for i in range(8):
            emitter.emit("point_stored", {"i": i})
        recent = emitter.get_recent_events()
        assert len(recent) == 5
        assert recent[0].payload["i"] == 3
        assert emitter.stats()["total_emitted"] == 8

    @pytest.mark.parametrize("tier, expected", [
        (EventTier.CRITICAL, ["graph_changed"]),
        (EventTier.DEBUG, ["shard_skipped"]),
    ])
    def test_filter_recent_by_tier(self, tier, expected):
        emitter = EventEmitter()
        emitter.emit("graph_changed", {})
        emitter.emit("shard_skipped", {})
        assert [e.event_type for e in emitter.get_recent_events(tier=tier)] == expected


class TestSubscriptionsAndReplay:

    def test_typed_listener_gets_debug_events(self):
        emitter = EventEmitter()
        seen = []
        emitter.add_listener(seen.append, event_types={"shard_skipped"})

        emitter.emit("graph_changed", {})
        emitter.emit("shard_skipped", {"shard_id": "S1"})

        assert [e.event_type for e in seen] == ["shard_skipped"]

    def test_events_since(self):
        emitter = EventEmitter()
        emitter.emit("point_created", {}, point_id="T001")
        mark = emitter.last_sequence
        emitter.emit("graph_changed", {}, point_id="T001")
        emitter.emit("point_created", {}, point_id="T002")

        assert [e.event_type for e in emitter.events_since(mark)] == ["graph_changed", "point_created"]
        assert len(emitter.events_for_point("T001")) == 2
