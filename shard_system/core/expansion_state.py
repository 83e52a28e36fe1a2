#!/usr/bin/env python3
"""
expansion_state.py - Per-node expanded/collapsed flags

TreeNodes are rebuilt from scratch on every build, so the only thing that
survives a rebuild is this map, keyed by synthetic node id
("T001", "T001::<shard>", "T001::after", ...). Unknown ids fall back to the
default.
"""

import logging
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class ExpansionState:
    """
    Usage:
        state = ExpansionState()
        state.toggle("T001")          # -> False
        flatten(roots, state)
    """

    def __init__(self, default_expanded: bool = True, states: Optional[Dict[str, bool]] = None):
        self.default_expanded = default_expanded
        self._states: Dict[str, bool] = dict(states or {})

    def is_expanded(self, node_id: str) -> bool:
        return self._states.get(node_id, self.default_expanded)

    def set_expanded(self, node_id: str, expanded: bool) -> None:
        self._states[node_id] = bool(expanded)

    def toggle(self, node_id: str) -> bool:
        """Flip the stored flag and return the new value."""
        expanded = not self.is_expanded(node_id)
        self._states[node_id] = expanded
        logger.debug(f"Node {node_id} {'expanded' if expanded else 'collapsed'}")
        return expanded

    def expand_all(self, node_ids: Optional[Iterable[str]] = None) -> None:
        """Expand the given ids, or every id we have a flag for."""
        for node_id in (list(self._states) if node_ids is None else node_ids):
            self._states[node_id] = True

    def collapse_all(self, node_ids: Iterable[str]) -> None:
        for node_id in node_ids:
            self._states[node_id] = False

    def forget(self, node_id: str) -> None:
        self._states.pop(node_id, None)

    def snapshot(self) -> Dict[str, bool]:
        return dict(self._states)

    def restore(self, states: Dict[str, bool]) -> None:
        self._states = {k: bool(v) for k, v in states.items()}

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._states

    def __len__(self) -> int:
        return len(self._states)
