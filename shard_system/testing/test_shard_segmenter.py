"""
Shard Segmenter Tests

Anchor validation, shard reuse and child -> shard resolution.
"""

import pytest
from unittest.mock import MagicMock

from shard_system.core.datashapes import (
    Anchor,
    InvalidAnchorError,
    PersistenceError,
    ShardNotFoundForChild,
)
from shard_system.core.shard_segmenter import (
    ShardSegmenter,
    merge_shard,
    new_shard_id,
    require_shard_id,
    resolve_shard_id,
    validate_anchor,
)


class TestValidateAnchor:

    @pytest.mark.parametrize("anchor", [Anchor(0, 0), Anchor(3, 9, "x"), Anchor(0, 10_000)])
    def test_accepts(self, anchor):
        validate_anchor(anchor)

    @pytest.mark.parametrize("anchor", [Anchor(30, 20), Anchor(-1, 4)])
    def test_rejects(self, anchor):
        with pytest.raises(InvalidAnchorError) as exc_info:
            validate_anchor(anchor)
        assert exc_info.value.anchor == anchor


class TestMergeShard:

    def test_creates_shard(self, point_factory):
        point = point_factory("T001", "q", "Third planet from the Sun")
        updated = merge_shard(point, "T002", Anchor(22, 25, "Sun"), shard_id_factory=lambda: "S1")

        assert point.shards == ()
        assert len(updated.shards) == 1
        assert updated.shards[0].shard_id == "S1"
        assert updated.shards[0].children == ("T002",)

    def test_reuses_identical_anchor(self, point_factory, shard_factory):
        point = point_factory("T001", shards=[shard_factory("S1", 22, 25, ["T002"], "Sun")])
        updated = merge_shard(point, "T003", Anchor(22, 25, "Sun"), shard_id_factory=lambda: "NEW")
        assert [s.shard_id for s in updated.shards] == ["S1"]
        assert updated.shards[0].children == ("T002", "T003")

    def test_same_offsets_different_text_is_new_shard(self, point_factory, shard_factory):
        point = point_factory("T001", shards=[shard_factory("S1", 22, 25, ["T002"], "Sun")])
        updated = merge_shard(point, "T003", Anchor(22, 25, "sun"), shard_id_factory=lambda: "S2")
        assert [s.shard_id for s in updated.shards] == ["S1", "S2"]

    def test_shard_ids_sort_by_creation(self):
        first = new_shard_id()
        second = new_shard_id()
        assert first < second


class TestResolveShardId:

    def test_found(self, point_factory, shard_factory):
        point = point_factory("T001", shards=[
            shard_factory("S1", 0, 1, ["a"]),
            shard_factory("S2", 2, 3, ["b", "c"]),
        ])
        assert resolve_shard_id(point, "c") == "S2"
        assert require_shard_id(point, "a") == "S1"

    def test_absent(self, point_factory):
        point = point_factory("T001")
        assert resolve_shard_id(point, "x") is None
        with pytest.raises(ShardNotFoundForChild):
            require_shard_id(point, "x")


class TestShardSegmenter:

    def test_attach_goes_through_backend(self, point_factory):
        parent = point_factory("T001", "q", "Third planet from the Sun")
        persisted = merge_shard(parent, "T002", Anchor(22, 25, "Sun"), shard_id_factory=lambda: "S1")
        backend = MagicMock()
        backend.attach_shard.return_value = persisted

        result = ShardSegmenter(backend).attach_shard(parent, "T002", Anchor(22, 25, "Sun"))

        assert result is persisted
        backend.attach_shard.assert_called_once_with("T001", Anchor(22, 25, "Sun"), "T002")

    def test_invalid_anchor_never_reaches_backend(self, point_factory):
        backend = MagicMock()
        with pytest.raises(InvalidAnchorError):
            ShardSegmenter(backend).attach_shard(point_factory("T001"), "T002", Anchor(30, 20))
        backend.attach_shard.assert_not_called()

    def test_backend_returning_nothing(self, point_factory):
        backend = MagicMock()
        backend.attach_shard.return_value = None
        with pytest.raises(PersistenceError):
            ShardSegmenter(backend).attach_shard(point_factory("T001"), "T002", Anchor(0, 1))

    def test_resolve_missing_is_none(self, point_factory):
        assert ShardSegmenter(MagicMock()).resolve_shard_id(point_factory("T001"), "T002") is None
