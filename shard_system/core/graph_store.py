#!/usr/bin/env python3
"""
graph_store.py - In-process point cache

The authoritative id -> Point mapping for the active conversation, written
through after every collaborator call. Values are frozen Points, so an
update is always put(replace(point, ...)); nobody mutates a stored entry.

No eviction, no lock. Two turns that resolve the same parent concurrently
can both read the pre-update parent and the last put() wins.
"""

import logging
from typing import Dict, Iterator, List, Optional

from shard_system.core.datashapes import Point

logger = logging.getLogger(__name__)


class GraphStore:
    """
    Owned arena of Points keyed by point id.

    Usage:
        store = GraphStore()
        store.put(point)
        store.get("T001")   # Point or None
        store.has("T001")   # True
    """

    def __init__(self, points: Optional[List[Point]] = None):
        self._points: Dict[str, Point] = {}
        for point in points or []:
            self.put(point)

    def get(self, point_id: str) -> Optional[Point]:
        return self._points.get(point_id)

    def put(self, point: Point) -> None:
        """Store (or overwrite) the value at point.id."""
        if not isinstance(point, Point):
            raise TypeError(f"GraphStore only holds Point, got {type(point).__name__}")
        self._points[point.id] = point
        logger.debug(f"Stored point {point.id}")

    def has(self, point_id: str) -> bool:
        return point_id in self._points

    def roots(self) -> List[Point]:
        """Root points in insertion order."""
        return [p for p in self._points.values() if p.is_root]

    def values(self) -> List[Point]:
        return list(self._points.values())

    def clear(self) -> None:
        self._points.clear()

    def __contains__(self, point_id: object) -> bool:
        return point_id in self._points

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._points))
