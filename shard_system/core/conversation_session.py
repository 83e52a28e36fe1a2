#!/usr/bin/env python3
"""
ConversationSession - One conversation surface wired end to end

Holds the GraphStore, the persistence collaborator, the ThreadGraphManager,
the TreeBuilder and the ExpansionState, and keeps the active root order:
ids of root and continuation points in the order they were created. Shard
forks are not listed there; the builder reaches them through their shard.

The rendering side calls:
    add_turn / submit_turn       -> new Point (a graph_changed event follows)
    build_flat_tree_list()       -> visible TreeNodes in display order
    toggle_expansion(node_id)    -> then rebuild
    selection_context(node, ...) -> TurnContext for forking from a selection
"""

import logging
from collections import deque
from typing import Any, Dict, List, Optional, Sequence

from shard_system.core.config import get_config
from shard_system.core.datashapes import (
    ModelConfig,
    NodeType,
    PersistenceError,
    Point,
    TreeNode,
    TurnContext,
)
from shard_system.core.error_handler import ErrorHandler
from shard_system.core.event_emitter import EventEmitter
from shard_system.core.expansion_state import ExpansionState
from shard_system.core.graph_store import GraphStore
from shard_system.core.llm_connector import CompletionClient
from shard_system.core.persistence import InMemoryPointBackend, PointBackend
from shard_system.core.shard_segmenter import resolve_shard_id
from shard_system.core.thread_graph_manager import ThreadGraphManager
from shard_system.core.tree_builder import TreeBuilder
from shard_system.core.tree_flattener import flatten

logger = logging.getLogger(__name__)


class ConversationSession:
    """
    Usage:
        session = ConversationSession()
        root = session.submit_turn("What is Earth?")
        rows = session.build_flat_tree_list()
        context = session.selection_context(rows[0], 22, 25, "Sun")
        session.submit_turn("Why the Sun?", context)
    """

    def __init__(
        self,
        backend: Optional[PointBackend] = None,
        config=None,
        store: Optional[GraphStore] = None,
        emitter: Optional[EventEmitter] = None,
        error_handler: Optional[ErrorHandler] = None,
        expansion_state: Optional[ExpansionState] = None
    ):
        self.config = config or get_config()
        self.store = store if store is not None else GraphStore()
        self.emitter = emitter or EventEmitter()
        self.error_handler = error_handler or ErrorHandler(debug_mode=self.config.DEBUG)
        self.expansion_state = expansion_state or ExpansionState(
            default_expanded=self.config.DEFAULT_EXPANDED
        )
        self.backend = backend or InMemoryPointBackend(
            completion_client=CompletionClient.from_config(self.config)
        )
        self.model_config = self.config.get_model_config()

        self.manager = ThreadGraphManager(
            self.store,
            self.backend,
            emitter=self.emitter,
            error_handler=self.error_handler,
        )
        self.builder = TreeBuilder(
            error_handler=self.error_handler,
            emitter=self.emitter,
            expansion_state=self.expansion_state,
        )
        self._root_order: List[str] = []

        logger.info(f"Conversation session ready ({self.backend.get_name()})")

    # =========================================================================
    # ROOT ORDER
    # =========================================================================

    @property
    def root_order(self) -> List[Point]:
        """Active top-level sequence, resolved against the store."""
        points = []
        for point_id in self._root_order:
            point = self.store.get(point_id)
            if point is not None:
                points.append(point)
        return points

    def _track(self, point: Point) -> None:
        if point.parent_shard_id is None and point.id not in self._root_order:
            self._root_order.append(point.id)

    def reset(self) -> None:
        """Forget the current conversation (store, order, expansion)."""
        self.store.clear()
        self._root_order = []
        self.expansion_state.restore({})

    # =========================================================================
    # TURNS
    # =========================================================================

    def add_turn(self, prompt_text: str, context: Optional[TurnContext] = None) -> Point:
        point = self.manager.add_turn(prompt_text, context or TurnContext())
        self._track(point)
        return point

    def complete_turn(self, point: Point, model_config: Optional[ModelConfig] = None) -> Point:
        return self.manager.complete_turn(point, model_config or self.model_config)

    def submit_turn(
        self,
        prompt_text: str,
        context: Optional[TurnContext] = None,
        model_config: Optional[ModelConfig] = None
    ) -> Point:
        point = self.add_turn(prompt_text, context)
        return self.complete_turn(point, model_config)

    def continue_context(self, point_id: str) -> TurnContext:
        """TurnContext for a plain follow-up to point_id."""
        return TurnContext(current_point_id=point_id, parent_point_id=point_id)

    def selection_context(
        self,
        node: TreeNode,
        local_start: int,
        local_end: int,
        selected_text: str
    ) -> TurnContext:
        """
        Fork context for a selection made inside a rendered node.

        Segment and after nodes show a slice of the response, so the offsets
        the UI reports are relative to that slice; shift them by the slice's
        start to get offsets into the full response.
        """
        offset = 0
        if node.node_type == NodeType.SHARD_RESPONSE and node.shard_start_position is not None:
            offset = node.shard_start_position

        return TurnContext(
            current_point_id=node.point_id,
            parent_point_id=node.point_id,
            is_shard_child=True,
            selected_text=selected_text,
            start_position=offset + local_start,
            end_position=offset + local_end,
        )

    def resolve_shard_id_for_child(self, parent_point: Point, child_id: str) -> Optional[str]:
        shard_id = resolve_shard_id(parent_point, child_id)
        if shard_id is None:
            logger.info(f"{child_id} does not hang off a shard of {parent_point.id}")
        return shard_id

    # =========================================================================
    # TREE
    # =========================================================================

    def build_tree(
        self,
        graph_store: Optional[GraphStore] = None,
        root_order: Optional[Sequence[Point]] = None
    ) -> List[TreeNode]:
        store = graph_store if graph_store is not None else self.store
        order = root_order if root_order is not None else self.root_order
        return self.builder.build(store, order)

    def build_flat_tree_list(
        self,
        graph_store: Optional[GraphStore] = None,
        root_order: Optional[Sequence[Point]] = None
    ) -> List[TreeNode]:
        return flatten(self.build_tree(graph_store, root_order), self.expansion_state)

    def toggle_expansion(self, node_id: str) -> bool:
        """Flip the stored flag. Callers rebuild afterwards."""
        expanded = self.expansion_state.toggle(node_id)
        self.emitter.emit("expansion_toggled", {"node_id": node_id, "expanded": expanded})
        return expanded

    # =========================================================================
    # LOADING
    # =========================================================================

    def load_conversation(self, root_id: str) -> int:
        """
        Pull a whole conversation from the collaborator into the store.

        Walks plain children and shard children breadth first from root_id.
        Points that are not shard forks join the root order in walk order.

        Returns:
            Number of points loaded

        Raises:
            PersistenceError: root_id is unknown to the collaborator
        """
        root = self.backend.fetch_point(root_id)
        if root is None:
            raise PersistenceError(f"Point '{root_id}' does not exist")

        loaded = 0
        seen = set()
        queue = deque([root])
        while queue:
            point = queue.popleft()
            if point.id in seen:
                continue
            seen.add(point.id)

            self.store.put(point)
            self.emitter.emit("point_stored", {"source": "load"}, point_id=point.id)
            self._track(point)
            loaded += 1

            child_ids = list(point.children)
            for shard in point.shards:
                child_ids.extend(shard.children)
            for child_id in child_ids:
                if child_id in seen:
                    continue
                child = self.backend.fetch_point(child_id)
                if child is None:
                    logger.warning(f"{point.id} lists {child_id} but the collaborator does not have it")
                    continue
                queue.append(child)

        logger.info(f"Loaded {loaded} points from root {root_id}")
        self.emitter.emit("graph_changed", {"reason": "load"}, point_id=root_id)
        return loaded

    def status(self) -> Dict[str, Any]:
        return {
            "backend": self.backend.get_name(),
            "points": len(self.store),
            "root_order": len(self._root_order),
            "expansion_flags": len(self.expansion_state),
            "events": self.emitter.stats(),
            "errors": self.error_handler.get_error_summary(),
        }
