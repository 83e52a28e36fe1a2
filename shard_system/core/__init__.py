"""Conversation graph, shard segmentation and tree build/flatten."""

from shard_system.core.conversation_session import ConversationSession
from shard_system.core.datashapes import (
    Anchor,
    InvalidAnchorError,
    NodeType,
    ParentNotFoundError,
    Point,
    Shard,
    ShardNotFoundForChild,
    TreeNode,
    TurnContext,
)
from shard_system.core.expansion_state import ExpansionState
from shard_system.core.graph_store import GraphStore
from shard_system.core.tree_builder import TreeBuilder
from shard_system.core.tree_flattener import build_flat_tree_list, flatten
