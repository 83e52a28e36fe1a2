#!/usr/bin/env python3
"""
tree_flattener.py - Nested TreeNodes -> render order

Depth-first, pre-order. A collapsed node stays in the output but hides its
subtree. Pure: same tree + same expansion lookup gives the same list, and the
nodes in it are the tree's own objects.
"""

from typing import List, Optional, Sequence

from shard_system.core.datashapes import Point, TreeNode
from shard_system.core.expansion_state import ExpansionState
from shard_system.core.graph_store import GraphStore
from shard_system.core.tree_builder import TreeBuilder


def flatten(nodes: Sequence[TreeNode], expansion_state: Optional[ExpansionState] = None) -> List[TreeNode]:
    """
    Args:
        nodes: Top-level nodes from TreeBuilder.build()
        expansion_state: Lookup by node id; falls back to node.is_expanded

    Returns:
        Visible nodes in display order
    """
    output: List[TreeNode] = []
    seen = set()
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        output.append(node)

        if expansion_state is not None:
            expanded = expansion_state.is_expanded(node.id)
        else:
            expanded = node.is_expanded
        if expanded and node.children:
            stack.extend(reversed(node.children))
    return output


def build_flat_tree_list(
    graph_store: GraphStore,
    root_order: Sequence[Point],
    expansion_state: Optional[ExpansionState] = None,
    builder: Optional[TreeBuilder] = None
) -> List[TreeNode]:
    """build() then flatten()."""
    builder = builder or TreeBuilder(expansion_state=expansion_state)
    return flatten(builder.build(graph_store, root_order), expansion_state)
