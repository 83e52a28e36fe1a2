#!/usr/bin/env python3
"""
ThreadGraphManager - Decides where a new turn goes and links it in.

Every new turn is one of:
    root          - the collaborator made a self-parented point, just store it
    continuation  - append the new point to the parent's children
    shard fork    - attach/reuse a shard on the parent for the selected text
                    and hang the new point off it (parent_shard_id)

The read-modify-write for one turn always runs in the same order:
validate fork anchor -> create point -> resolve parent -> fork or continue -> store.
Nothing is written to the GraphStore for a step that failed; earlier writes
are not rolled back. Errors from the collaborator propagate unchanged.

Does NOT handle:
- Building or flattening the display tree (tree_builder / tree_flattener)
- Retry/backoff (caller)
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional

from shard_system.core.datashapes import (
    CompletionError,
    InvalidAnchorError,
    ModelConfig,
    ParentNotFoundError,
    PersistenceError,
    Point,
    TurnContext,
)
from shard_system.core.error_handler import ErrorCategory, ErrorHandler, ErrorSeverity
from shard_system.core.event_emitter import EventEmitter
from shard_system.core.graph_store import GraphStore
from shard_system.core.persistence import PointBackend
from shard_system.core.shard_segmenter import ShardSegmenter, validate_anchor

logger = logging.getLogger(__name__)


class ThreadGraphManager:
    """
    Owns the turn-level graph updates.

    Usage:
        manager = ThreadGraphManager(store, backend)
        root = manager.add_turn("What is Earth?", TurnContext())
        fork = manager.add_turn("Why the Sun?", TurnContext(
            current_point_id=root.id, parent_point_id=root.id,
            is_shard_child=True, selected_text="Sun",
            start_position=22, end_position=25))
    """

    def __init__(
        self,
        store: GraphStore,
        backend: PointBackend,
        emitter: Optional[EventEmitter] = None,
        error_handler: Optional[ErrorHandler] = None,
        segmenter: Optional[ShardSegmenter] = None
    ):
        self.store = store
        self.backend = backend
        self.emitter = emitter or EventEmitter()
        self.error_handler = error_handler
        self.segmenter = segmenter or ShardSegmenter(backend)

    # =========================================================================
    # NEW TURNS
    # =========================================================================

    def add_turn(self, prompt_text: str, context: TurnContext) -> Point:
        """
        Create the point for a new turn and link it into the graph.

        Args:
            prompt_text: What the user asked
            context: Where the turn goes (continuation or fork selection)

        Returns:
            The new point, with parent_shard_id set when it is a fork

        Raises:
            ParentNotFoundError: parent is neither cached nor known to the collaborator
            InvalidAnchorError: fork selection has bad offsets
            PersistenceError: collaborator failure
        """
        try:
            return self._add_turn(prompt_text, context)
        except Exception as e:
            self._report(e, self._category_for(e), "add_turn",
                         f"current={context.current_point_id} fork={context.is_fork}",
                         point_id=context.current_point_id)
            self.emitter.emit("turn_failed", {
                "operation": "add_turn",
                "error_type": type(e).__name__,
                "message": str(e),
            }, point_id=context.current_point_id)
            raise

    def _add_turn(self, prompt_text: str, context: TurnContext) -> Point:
        anchor = None
        if context.is_fork:
            anchor = context.anchor()
            validate_anchor(anchor)

        new_point = self.backend.create_point(context, prompt_text)
        if new_point is None:
            raise PersistenceError("create_point returned no point")
        self.emitter.emit("point_created", {"parent_point_id": new_point.parent_point_id},
                          point_id=new_point.id)

        if new_point.is_root:
            self.store.put(new_point)
            logger.info(f"New root point {new_point.id}")
            self._emit_changed(new_point.id, "root")
            return new_point

        parent = self._resolve_parent(new_point.parent_point_id, new_point.id)

        if context.is_fork:
            updated_parent = self.segmenter.attach_shard(parent, new_point.id, anchor)
            shard_id = self.segmenter.resolve_shard_id(updated_parent, new_point.id)
            if shard_id is not None:
                new_point = replace(new_point, parent_shard_id=shard_id)

            self.store.put(updated_parent)
            self.store.put(new_point)
            self.emitter.emit("shard_attached", {
                "parent_point_id": updated_parent.id,
                "shard_id": shard_id,
                "start_position": anchor.start_position,
                "end_position": anchor.end_position,
            }, point_id=new_point.id)
            logger.info(f"Forked {new_point.id} from shard {shard_id} of {updated_parent.id}")
            self._emit_changed(new_point.id, "fork")
        else:
            if context.is_shard_child:
                logger.info(f"Shard turn without selected text - continuing {parent.id} instead")
            updated_parent = self.backend.append_child(parent.id, new_point.id)
            if updated_parent is None:
                raise PersistenceError(f"append_child on '{parent.id}' returned no point")

            self.store.put(updated_parent)
            self.store.put(new_point)
            self.emitter.emit("child_appended", {"parent_point_id": updated_parent.id},
                              point_id=new_point.id)
            logger.info(f"Continued {updated_parent.id} with {new_point.id}")
            self._emit_changed(new_point.id, "continuation")

        return new_point

    def _resolve_parent(self, parent_id: str, child_id: str) -> Point:
        parent = self.store.get(parent_id)
        if parent is not None:
            return parent

        parent = self.backend.fetch_point(parent_id)
        if not parent:
            raise ParentNotFoundError(parent_id, child_id)

        self.store.put(parent)
        self.emitter.emit("point_stored", {"source": "fetch"}, point_id=parent.id)
        return parent

    # =========================================================================
    # COMPLETION
    # =========================================================================

    def build_context_messages(self, point_id: str) -> List[Dict[str, str]]:
        """
        Chat messages for completing point_id, oldest first.

        Walks parent_point_id up to the root. Each ancestor contributes its
        prompt and response; a shard fork is preceded by a quote of the
        excerpt it was forked from.
        """
        chain: List[Point] = []
        seen = set()
        current = self.store.get(point_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current)
            if current.is_root:
                break
            current = self.store.get(current.parent_point_id)
        chain.reverse()

        messages: List[Dict[str, str]] = []
        for point in chain:
            if point.is_shard_child:
                excerpt = self._fork_excerpt(point)
                if excerpt:
                    messages.append({
                        "role": "user",
                        "content": f'Regarding this part of your previous answer: "{excerpt}"',
                    })
            for exchange in point.exchanges:
                messages.append({"role": exchange.prompt.role, "content": exchange.prompt.content})
                if exchange.response is not None and exchange.response.choices:
                    choice = exchange.response.choices[0]
                    messages.append({"role": choice.role, "content": choice.content})
        return messages

    def _fork_excerpt(self, point: Point) -> Optional[str]:
        parent = self.store.get(point.parent_point_id)
        if parent is None:
            return None
        shard = parent.get_shard(point.parent_shard_id)
        if shard is None:
            return None
        return shard.anchor.selected_text or None

    def complete_turn(self, point: Point, model_config: ModelConfig) -> Point:
        """
        Ask the collaborator to populate point's response and store the result.

        Raises:
            CompletionError / PersistenceError: propagated unchanged
        """
        try:
            messages = self.build_context_messages(point.id)
            completed = self.backend.complete_prompt(point.id, messages, model_config)
            if completed is None:
                raise PersistenceError(f"complete_prompt on '{point.id}' returned no point")
        except Exception as e:
            self._report(e, ErrorCategory.COMPLETION, "complete_turn", f"point={point.id}",
                         point_id=point.id)
            self.emitter.emit("turn_failed", {
                "operation": "complete_turn",
                "error_type": type(e).__name__,
                "message": str(e),
            }, point_id=point.id)
            raise

        # Keep the shard link we already hold if the collaborator dropped it
        current = self.store.get(point.id) or point
        if completed.parent_shard_id is None and current.parent_shard_id is not None:
            completed = replace(completed, parent_shard_id=current.parent_shard_id)

        self.store.put(completed)
        self.emitter.emit("turn_completed", {
            "response_length": len(completed.response_text or ""),
        }, point_id=completed.id)
        self._emit_changed(completed.id, "completion")
        return completed

    def submit_turn(self, prompt_text: str, context: TurnContext, model_config: ModelConfig) -> Point:
        """add_turn() followed by complete_turn()."""
        point = self.add_turn(prompt_text, context)
        return self.complete_turn(point, model_config)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _category_for(self, error: Exception) -> ErrorCategory:
        if isinstance(error, InvalidAnchorError):
            return ErrorCategory.SHARD_SEGMENTATION
        if isinstance(error, (PersistenceError, CompletionError)):
            return ErrorCategory.PERSISTENCE
        return ErrorCategory.THREAD_GRAPH

    def _emit_changed(self, point_id: str, reason: str) -> None:
        self.emitter.emit("graph_changed", {"reason": reason}, point_id=point_id)

    def _report(self, error: Exception, category: ErrorCategory, operation: str, context: str,
                point_id: Optional[str] = None) -> None:
        if self.error_handler is not None:
            self.error_handler.handle_error(
                error,
                category,
                ErrorSeverity.HIGH_DEGRADE,
                context=context,
                operation=operation,
                point_id=point_id,
                suppress_duplicate_minutes=0
            )
        else:
            logger.error(f"{operation} failed ({context}): {error}")
