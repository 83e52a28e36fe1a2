#!/usr/bin/env python3
"""
event_emitter.py - Graph change notifications

The thread graph manager returns updated entities AND emits discrete events
here. The rendering side listens for "graph_changed" / "expansion_toggled"
and calls build_flat_tree_list() again itself - nothing is re-rendered
implicitly.

Event Tiers:
    Tier 1 (Critical): graph_changed, turn_failed
    Tier 2 (System): point_created, child_appended, shard_attached, turn_completed, expansion_toggled
    Tier 3 (Debug): point_stored, tree_built, shard_skipped

Usage:
    from shard_system.core.event_emitter import EventEmitter

    emitter = EventEmitter()
    emitter.add_listener(lambda event: redraw(), event_types={"graph_changed"})
    emitter.emit("graph_changed", {"reason": "fork"}, point_id="T002")

A renderer that was not listening can catch up with events_since(sequence).
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)


class EventTier(Enum):
    """Controls which events reach listeners. Everything is buffered regardless."""
    CRITICAL = 1
    SYSTEM = 2
    DEBUG = 3


@dataclass
class GraphEvent:
    """A single change notification."""
    sequence: int
    timestamp: str
    event_type: str
    payload: Dict[str, Any]
    tier: EventTier
    point_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "type": self.event_type,
            "payload": self.payload,
            "tier": self.tier.value,
            "tier_name": self.tier.name.lower(),
            "point_id": self.point_id,
        }


EVENT_TIER_MAP: Dict[str, EventTier] = {
    # Tier 1: Critical
    "graph_changed": EventTier.CRITICAL,
    "turn_failed": EventTier.CRITICAL,

    # Tier 2: System
    "point_created": EventTier.SYSTEM,
    "child_appended": EventTier.SYSTEM,
    "shard_attached": EventTier.SYSTEM,
    "turn_completed": EventTier.SYSTEM,
    "expansion_toggled": EventTier.SYSTEM,

    # Tier 3: Debug
    "point_stored": EventTier.DEBUG,
    "tree_built": EventTier.DEBUG,
    "shard_skipped": EventTier.DEBUG,
}

Listener = Callable[[GraphEvent], None]


class EventEmitter:
    """
    Sequence-numbered, tiered events with a bounded replay buffer.

    A listener gets every event of a streamed tier, or only the event types
    it subscribed to.
    """

    def __init__(self, stream_tiers: Optional[Set[EventTier]] = None, buffer_max_size: int = 1000):
        """
        Args:
            stream_tiers: Which tiers reach listeners. Default: CRITICAL and SYSTEM.
            buffer_max_size: How many recent events to keep for replay.
        """
        self._sequence = 0
        self._stream_tiers = set(stream_tiers or {EventTier.CRITICAL, EventTier.SYSTEM})
        self._tier_overrides: Dict[str, EventTier] = {}
        self._listeners: List[Tuple[Listener, Optional[FrozenSet[str]]]] = []
        self._buffer: Deque[GraphEvent] = deque(maxlen=buffer_max_size)

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def tier_of(self, event_type: str) -> EventTier:
        """Unknown event types are DEBUG."""
        return self._tier_overrides.get(event_type, EVENT_TIER_MAP.get(event_type, EventTier.DEBUG))

    def set_tier_override(self, event_type: str, tier: EventTier) -> None:
        self._tier_overrides[event_type] = tier

    def clear_tier_override(self, event_type: str) -> None:
        self._tier_overrides.pop(event_type, None)

    def set_stream_tiers(self, tiers: Iterable[EventTier]) -> None:
        self._stream_tiers = set(tiers)

    def add_listener(self, callback: Listener, event_types: Optional[Iterable[str]] = None) -> None:
        """
        Args:
            callback: Called synchronously with each GraphEvent
            event_types: Only these types (any tier); None means every streamed tier
        """
        self._listeners.append((callback, frozenset(event_types) if event_types is not None else None))

    def remove_listener(self, callback: Listener) -> None:
        self._listeners = [(cb, types) for cb, types in self._listeners if cb is not callback]

    # =========================================================================
    # EMIT
    # =========================================================================

    def emit(
        self,
        event_type: str,
        payload: Dict[str, Any],
        point_id: Optional[str] = None,
        tier_override: Optional[EventTier] = None
    ) -> GraphEvent:
        """
        Args:
            event_type: e.g. "graph_changed"
            payload: Event-specific data
            point_id: Point the event is about, if any
            tier_override: Force a tier for this emit only

        Returns:
            The buffered GraphEvent
        """
        self._sequence += 1
        event = GraphEvent(
            sequence=self._sequence,
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type,
            payload=payload,
            tier=tier_override or self.tier_of(event_type),
            point_id=point_id,
        )
        self._buffer.append(event)

        for callback, types in list(self._listeners):
            if types is None and event.tier not in self._stream_tiers:
                continue
            if types is not None and event_type not in types:
                continue
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Listener error on {event_type} #{event.sequence}: {e}")

        return event

    # =========================================================================
    # REPLAY
    # =========================================================================

    def get_recent_events(
        self,
        count: int = 100,
        tier: Optional[EventTier] = None,
        event_type: Optional[str] = None
    ) -> List[GraphEvent]:
        """Newest last."""
        events = [
            e for e in self._buffer
            if (tier is None or e.tier == tier) and (event_type is None or e.event_type == event_type)
        ]
        return events[-count:]

    def events_since(self, sequence: int) -> List[GraphEvent]:
        """Buffered events with a sequence number greater than `sequence`."""
        return [e for e in self._buffer if e.sequence > sequence]

    def events_for_point(self, point_id: str) -> List[GraphEvent]:
        return [e for e in self._buffer if e.point_id == point_id]

    @property
    def last_sequence(self) -> int:
        return self._sequence

    def stats(self) -> Dict[str, Any]:
        tier_counts = {tier.name.lower(): 0 for tier in EventTier}
        type_counts: Dict[str, int] = {}
        for event in self._buffer:
            tier_counts[event.tier.name.lower()] += 1
            type_counts[event.event_type] = type_counts.get(event.event_type, 0) + 1

        return {
            "total_emitted": self._sequence,
            "buffer_size": len(self._buffer),
            "buffer_max": self._buffer.maxlen,
            "stream_tiers": sorted(t.name.lower() for t in self._stream_tiers),
            "listener_count": len(self._listeners),
            "tier_counts": tier_counts,
            "type_counts": type_counts,
        }
