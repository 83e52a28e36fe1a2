#!/usr/bin/env python3
"""
tree_builder.py - Graph store + root order -> nested TreeNode list

Three passes over the points named in root_order:

    Pass 1 - node creation. Every point with an exchange becomes either one
             regular node (prompt + full response) or, when it owns valid
             shards, a split group: main node (prompt only), one segment
             node per shard, and a trailing "after" node. Points forked from
             a shard are pulled from the graph store (not root_order) and
             nested under that shard's segment node, together with their own
             split groups.
    Pass 2 - hierarchy. Roots go top level. Everything else hangs under its
             structural parent: the segment node for (parent, shard) when it
             is a fork, otherwise the parent's main node. A point's segment
             and after nodes are siblings of its main node, never its children.
    Pass 3 - flags. hasChildren, levels (= depth) and expansion.

A segment is a partition of the same response, so it sits next to the
prompt; sub-prompt children are nested conversations, so they sit one level
deeper, under the segment they were forked from.

Failures are contained: a bad point degrades to main node + one fallback
child with the whole response (its forks hang under that main node), and a
structural failure yields [] (the empty tree is a legitimate UI state).
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from shard_system.core.datashapes import (
    NodeType,
    Point,
    Shard,
    TreeNode,
    after_node_id,
    fallback_node_id,
    segment_node_id,
)
from shard_system.core.error_handler import ErrorCategory, ErrorHandler, ErrorSeverity
from shard_system.core.event_emitter import EventEmitter
from shard_system.core.expansion_state import ExpansionState
from shard_system.core.graph_store import GraphStore

logger = logging.getLogger(__name__)


def valid_shards(point: Point, response: Optional[str]) -> List[Shard]:
    """Shards whose anchor satisfies 0 <= start <= end <= len(response)."""
    if response is None:
        return []
    length = len(response)
    return [s for s in point.shards if s.anchor.fits(length)]


def order_shards(shards: Iterable[Shard]) -> List[Shard]:
    """Ascending start, shard id breaks ties."""
    return sorted(shards, key=lambda s: (s.anchor.start_position, s.shard_id))


class TreeBuilder:
    """
    Builds the nested display tree. Reentrant: all per-build state lives in
    a _BuildPass, so one builder can be reused for every rebuild.

    Usage:
        builder = TreeBuilder()
        roots = builder.build(store, [store.get("T001"), store.get("T003")])
    """

    def __init__(
        self,
        error_handler: Optional[ErrorHandler] = None,
        emitter: Optional[EventEmitter] = None,
        expansion_state: Optional[ExpansionState] = None
    ):
        self.error_handler = error_handler
        self.emitter = emitter
        self.expansion_state = expansion_state

    def build(self, graph_store: GraphStore, root_order: Sequence[Point]) -> List[TreeNode]:
        """
        Args:
            graph_store: Where shard children are resolved from
            root_order: The active top-level sequence of points

        Returns:
            Top-level TreeNodes, children nested. [] when there is nothing to show.
        """
        if graph_store is None or len(graph_store) == 0 or not root_order:
            return []

        try:
            build_pass = _BuildPass(self, graph_store)
            roots = build_pass.run(root_order)
        except Exception as e:
            self._report(e, ErrorSeverity.MEDIUM_ALERT, "build", "structural failure, showing empty tree")
            return []

        if self.emitter is not None:
            self.emitter.emit("tree_built", {
                "top_level": len(roots),
                "nodes": len(build_pass.nodes),
                "skipped_shards": build_pass.skipped_shards,
            })
        return roots

    def _report(self, error: Exception, severity: ErrorSeverity, operation: str, context: str,
                point_id: Optional[str] = None) -> None:
        if self.error_handler is not None:
            self.error_handler.handle_error(
                error, ErrorCategory.TREE_BUILD, severity,
                context=context, operation=operation, point_id=point_id
            )
        else:
            logger.warning(f"{operation}: {context}: {error}")


class _BuildPass:
    """State for a single build() call."""

    def __init__(self, builder: TreeBuilder, store: GraphStore):
        self.builder = builder
        self.store = store
        self.nodes: Dict[str, TreeNode] = {}        # synthetic id -> node
        self.groups: Dict[str, List[TreeNode]] = {} # point id -> [main, segments..., after]
        self.placed: Set[str] = set()               # point ids already hung under a segment
        self.skipped_shards = 0

    def run(self, root_order: Sequence[Point]) -> List[TreeNode]:
        # Pass 1 - node creation. Forks listed in root_order go last so the
        # ones their parent reaches are built under its segment, in shard order.
        forks_last = sorted(
            (p for p in root_order if p is not None),
            key=lambda p: p.parent_shard_id is not None,
        )
        for point in forks_last:
            if not point.exchanges or point.id in self.groups:
                continue
            self.groups[point.id] = self.create_point_nodes(point, base_level=0, lineage=frozenset())

        # Pass 2 - hierarchy assembly
        top_level: List[TreeNode] = []
        for point in root_order:
            if point is None or point.id in self.placed:
                continue
            group = self.groups.get(point.id)
            if not group:
                continue
            self.placed.add(point.id)

            if point.is_root:
                top_level.extend(group)
                continue

            parent_node = self.structural_parent(point)
            if parent_node is None or self.would_cycle(parent_node, group):
                logger.warning(
                    f"No structural parent for {point.id} (parent {point.parent_point_id}, "
                    f"shard {point.parent_shard_id}) - showing it top level"
                )
                top_level.extend(group)
                continue

            for node in group:
                node.parent_id = parent_node.id
                node.level = parent_node.level + 1
                parent_node.children.append(node)

        # Pass 3 - flags
        self.finalize(top_level)
        return top_level

    # -------------------------------------------------------------------------
    # Pass 1
    # -------------------------------------------------------------------------

    def register(self, node: TreeNode) -> TreeNode:
        self.nodes[node.id] = node
        return node

    def main_node(self, point: Point, base_level: int, with_response: bool) -> TreeNode:
        return self.register(TreeNode(
            id=point.id,
            point_id=point.id,
            node_type=NodeType.SHARD if point.parent_shard_id is not None else NodeType.EXCHANGE,
            level=base_level,
            prompt_content=point.prompt_text,
            response_content=point.response_text if with_response else None,
        ))

    def create_point_nodes(self, point: Point, base_level: int, lineage: frozenset) -> List[TreeNode]:
        known = set(self.groups)
        try:
            response = point.response_text
            if response is not None and valid_shards(point, response):
                return self.create_shard_split_nodes(point, response, base_level, lineage)
            return [self.main_node(point, base_level, with_response=True)]
        except Exception as e:
            self.builder._report(e, ErrorSeverity.MEDIUM_ALERT, "create_point_nodes",
                                 f"point {point.id} degraded to fallback", point_id=point.id)
            self.discard_groups([pid for pid in self.groups if pid not in known])
            return self.fallback_group(point, base_level, lineage)

    def discard_groups(self, point_ids: List[str]) -> None:
        """Forget groups built by a split that failed part way."""
        dropped = set(point_ids)
        for point_id in dropped:
            self.groups.pop(point_id, None)
            self.placed.discard(point_id)
        self.nodes = {nid: node for nid, node in self.nodes.items() if node.point_id not in dropped}

    def fallback_group(self, point: Point, base_level: int, lineage: frozenset) -> List[TreeNode]:
        """
        Main node plus the whole response as one child.

        Forks of the point still render, hung under the main node after the
        response.
        """
        for node_id in [n for n in self.nodes if n == point.id or n.startswith(f"{point.id}::")]:
            del self.nodes[node_id]

        main = self.main_node(point, base_level, with_response=False)
        main.children = []
        if point.response_text is not None:
            main.children.append(self.register(TreeNode(
                id=fallback_node_id(point.id),
                point_id=point.id,
                node_type=NodeType.SHARD_RESPONSE,
                parent_id=main.id,
                level=base_level + 1,
                response_content=point.response_text,
            )))

        known = set(self.groups)
        kept = len(main.children)
        try:
            for shard in point.shards:
                for child_id in shard.children:
                    self.attach_shard_child(point, shard, main, child_id, base_level, lineage)
        except Exception as e:
            self.builder._report(e, ErrorSeverity.LOW_DEBUG, "fallback_group",
                                 f"forks of {point.id} not shown", point_id=point.id)
            self.discard_groups([pid for pid in self.groups if pid not in known])
            del main.children[kept:]
        return [main]

    def create_shard_split_nodes(self, point: Point, response: str,
                                 base_level: int, lineage: frozenset) -> List[TreeNode]:
        main = self.main_node(point, base_level, with_response=False)
        group = [main]

        shards = valid_shards(point, response)
        if not shards:
            main.children.append(self.register(TreeNode(
                id=fallback_node_id(point.id),
                point_id=point.id,
                node_type=NodeType.SHARD_RESPONSE,
                parent_id=main.id,
                level=base_level + 1,
                response_content=response,
            )))
            return group

        length = len(response)
        cursor = 0
        for shard in order_shards(shards):
            end = shard.anchor.end_position
            if cursor >= end or cursor >= length:
                self.skip_shard(point, shard, cursor)
                continue

            segment = self.register(TreeNode(
                id=segment_node_id(point.id, shard.shard_id),
                point_id=point.id,
                node_type=NodeType.SHARD_RESPONSE,
                level=base_level,
                response_content=response[cursor:min(end, length)],
                shard_id=shard.shard_id,
                shard_start_position=cursor,
                shard_end_position=end,
            ))
            group.append(segment)

            for child_id in shard.children:
                self.attach_shard_child(point, shard, segment, child_id, base_level, lineage)

            cursor = end

        if cursor < length:
            group.append(self.register(TreeNode(
                id=after_node_id(point.id),
                point_id=point.id,
                node_type=NodeType.SHARD_RESPONSE,
                level=base_level,
                response_content=response[cursor:],
                shard_start_position=cursor,
                shard_end_position=length,
            )))

        return group

    def skip_shard(self, point: Point, shard: Shard, cursor: int) -> None:
        self.skipped_shards += 1
        logger.warning(
            f"Skipping shard {shard.shard_id} on {point.id}: "
            f"[{shard.anchor.start_position}:{shard.anchor.end_position}] ends at or before cursor {cursor}"
        )
        if self.builder.emitter is not None:
            self.builder.emitter.emit("shard_skipped", {
                "shard_id": shard.shard_id,
                "cursor": cursor,
                "end_position": shard.anchor.end_position,
            }, point_id=point.id)

    def attach_shard_child(self, point: Point, shard: Shard, segment: TreeNode,
                           child_id: str, base_level: int, lineage: frozenset) -> None:
        child = self.store.get(child_id)
        if child is None:
            logger.warning(f"Shard {shard.shard_id} on {point.id} lists missing child {child_id}")
            return
        if child_id in lineage or child_id == point.id:
            logger.warning(f"Shard child {child_id} of {point.id} loops back to an ancestor - skipped")
            return
        if child_id in self.groups or child_id in self.placed:
            logger.warning(f"Shard child {child_id} already placed elsewhere - skipped under {segment.id}")
            return
        if not child.exchanges:
            logger.debug(f"Shard child {child_id} has no exchange yet - skipped")
            return

        child_group = self.create_point_nodes(child, base_level + 1, lineage | {point.id})
        for node in child_group:
            node.parent_id = segment.id
            node.level = base_level + 1
            segment.children.append(node)
        self.groups[child_id] = child_group
        self.placed.add(child_id)

    # -------------------------------------------------------------------------
    # Pass 2
    # -------------------------------------------------------------------------

    def structural_parent(self, point: Point) -> Optional[TreeNode]:
        if point.parent_shard_id is not None:
            segment = self.nodes.get(segment_node_id(point.parent_point_id, point.parent_shard_id))
            if segment is not None:
                return segment
            logger.warning(
                f"Segment for shard {point.parent_shard_id} of {point.parent_point_id} not built - "
                f"falling back to the parent's main node for {point.id}"
            )
        return self.nodes.get(point.parent_point_id)

    def would_cycle(self, parent_node: TreeNode, group: List[TreeNode]) -> bool:
        group_ids = {node.id for node in group}
        seen = set()
        current: Optional[TreeNode] = parent_node
        while current is not None and current.id not in seen:
            if current.id in group_ids:
                return True
            seen.add(current.id)
            current = self.nodes.get(current.parent_id) if current.parent_id else None
        return False

    # -------------------------------------------------------------------------
    # Pass 3
    # -------------------------------------------------------------------------

    def finalize(self, top_level: List[TreeNode]) -> None:
        expansion = self.builder.expansion_state
        stack = [(node, None, 0) for node in reversed(top_level)]
        seen = set()
        while stack:
            node, parent_id, level = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))

            node.parent_id = parent_id
            node.level = level
            node.has_children = bool(node.children)
            if expansion is not None:
                node.is_expanded = expansion.is_expanded(node.id)

            for child in reversed(node.children):
                stack.append((child, node.id, level + 1))
