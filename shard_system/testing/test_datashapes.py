"""
Datashapes Tests

Entity helpers and the camelCase wire format.
"""

import pytest

from shard_system.core.datashapes import (
    Anchor,
    Choice,
    InvalidAnchorError,
    NodeType,
    Point,
    Response,
    TreeNode,
    TurnContext,
    after_node_id,
    fallback_node_id,
    segment_node_id,
)


class TestAnchor:

    @pytest.mark.parametrize("start, end, length, fits", [
        (0, 0, 0, True),
        (2, 5, 5, True),
        (2, 6, 5, False),
        (30, 20, 40, False),
        (-1, 3, 10, False),
    ])
    def test_fits(self, start, end, length, fits):
        assert Anchor(start, end).fits(length) is fits

    def test_equality_includes_selected_text(self):
        assert Anchor(1, 2, "a") == Anchor(1, 2, "a")
        assert Anchor(1, 2, "a") != Anchor(1, 2, "b")

    def test_error_message_names_offsets(self):
        error = InvalidAnchorError(Anchor(30, 20), "start position is after end position")
        assert "start=30" in str(error)
        assert error.reason == "start position is after end position"


class TestPoint:

    def test_root_is_self_parented(self, point_factory):
        assert point_factory("T001").is_root
        assert not point_factory("T002", parent="T001").is_root

    def test_with_child_is_ordered_set(self, point_factory):
        point = point_factory("T001").with_child("a").with_child("b").with_child("a")
        assert point.children == ("a", "b")

    def test_with_child_copies(self, point_factory):
        original = point_factory("T001")
        updated = original.with_child("a")
        assert original.children == ()
        assert updated is not original

    def test_with_response(self, point_factory):
        point = point_factory("T001", "q").with_response(Response.from_text("r"))
        assert point.response_text == "r"

    def test_with_response_needs_exchange(self):
        with pytest.raises(ValueError):
            Point(id="T001", parent_point_id="T001").with_response(Response.from_text("r"))

    def test_get_shard(self, point_factory, shard_factory):
        point = point_factory("T001", shards=[shard_factory("S1", 0, 1)])
        assert point.get_shard("S1").shard_id == "S1"
        assert point.get_shard("S9") is None

    def test_to_dict_uses_camel_case(self, point_factory, shard_factory):
        point = point_factory("T002", "q", "r", parent="T001", parent_shard_id="S1",
                              shards=[shard_factory("S2", 0, 1, ["T003"], "r")])
        data = point.to_dict()

        assert data["parentPointId"] == "T001"
        assert data["parentShardId"] == "S1"
        assert data["shards"][0]["shardId"] == "S2"
        assert data["shards"][0]["anchor"] == {"startPosition": 0, "endPosition": 1, "selectedText": "r"}
        assert data["exchanges"][0]["response"]["choices"][0]["content"] == "r"
        assert Point.from_dict(data) == point

    def test_from_dict_missing_parent_means_root(self):
        point = Point.from_dict({"id": "T001", "children": ["a", "a", "b"]})
        assert point.is_root
        assert point.children == ("a", "b")

    def test_from_dict_openai_style_choice(self):
        data = {
            "id": "T001",
            "exchanges": [{
                "exchangeId": "E1",
                "prompt": {"role": "user", "content": "q"},
                "response": {"model": "m", "choices": [{"message": {"role": "assistant", "content": "r"}}]},
            }],
        }
        point = Point.from_dict(data)
        assert point.response_text == "r"
        assert point.last_exchange.response.extra == {"model": "m"}


class TestTurnContext:

    @pytest.mark.parametrize("is_shard_child, selected, fork", [
        (True, "Sun", True),
        (True, "", False),
        (True, None, False),
        (False, "Sun", False),
    ])
    def test_is_fork(self, is_shard_child, selected, fork):
        assert TurnContext(is_shard_child=is_shard_child, selected_text=selected).is_fork is fork

    def test_anchor(self):
        context = TurnContext(is_shard_child=True, selected_text="Sun", start_position=22, end_position=25)
        assert context.anchor() == Anchor(22, 25, "Sun")

    def test_anchor_needs_both_offsets(self):
        context = TurnContext(is_shard_child=True, selected_text="Sun", start_position=22)
        with pytest.raises(InvalidAnchorError) as exc_info:
            context.anchor()
        assert "no start/end position" in str(exc_info.value)


class TestTreeNode:

    def test_synthetic_ids(self):
        assert segment_node_id("T001", "S1") == "T001::S1"
        assert after_node_id("T001") == "T001::after"
        assert fallback_node_id("T001") == "T001::response"

    def test_to_dict(self):
        child = TreeNode(id="T001::S1", point_id="T001", node_type=NodeType.SHARD_RESPONSE,
                         shard_id="S1", shard_start_position=0, shard_end_position=3)
        node = TreeNode(id="T001", point_id="T001", children=[child], has_children=True)

        flat = node.to_dict()
        assert flat["nodeType"] == "exchange"
        assert "children" not in flat

        nested = node.to_dict(include_children=True)
        assert nested["children"][0]["nodeType"] == "shardResponse"
        assert nested["children"][0]["shardStartPosition"] == 0

    def test_choice_defaults_to_assistant(self):
        assert Choice.from_dict({"content": "x"}).role == "assistant"
