#!/usr/bin/env python3
"""
shard_segmenter.py - Anchored sub-prompt regions on a parent point

A shard is created the first time someone forks from a given anchor and
reused for every later fork from the identical anchor (same start, end and
selected text). Shards are only ever appended, never removed.

merge_shard() is the pure rule; ShardSegmenter.attach_shard() validates the
anchor and asks the persistence collaborator to apply it.
"""

import logging
from dataclasses import replace
from typing import Callable, Optional, TYPE_CHECKING

from uuid_extensions import uuid7

from shard_system.core.datashapes import (
    Anchor,
    InvalidAnchorError,
    PersistenceError,
    Point,
    Shard,
    ShardNotFoundForChild,
)

if TYPE_CHECKING:
    from shard_system.core.persistence import PointBackend

logger = logging.getLogger(__name__)


def new_shard_id() -> str:
    """Time-ordered id, so ascending id order is creation order."""
    return str(uuid7())


def validate_anchor(anchor: Anchor) -> None:
    """
    Reject anchors with negative or inverted offsets.

    Raises:
        InvalidAnchorError: start < 0 or start > end
    """
    if anchor.start_position < 0:
        raise InvalidAnchorError(anchor, "start position is negative")
    if anchor.start_position > anchor.end_position:
        raise InvalidAnchorError(anchor, "start position is after end position")


def find_matching_shard(point: Point, anchor: Anchor) -> Optional[Shard]:
    for shard in point.shards:
        if shard.anchor == anchor:
            return shard
    return None


def merge_shard(
    point: Point,
    child_id: str,
    anchor: Anchor,
    shard_id_factory: Callable[[], str] = new_shard_id
) -> Point:
    """
    Return a copy of point with child_id registered under the shard for anchor.

    Reuses the shard whose anchor is identical, otherwise appends a new shard
    with children = (child_id,).
    """
    existing = find_matching_shard(point, anchor)
    if existing is not None:
        shards = tuple(
            shard.with_child(child_id) if shard.shard_id == existing.shard_id else shard
            for shard in point.shards
        )
        return replace(point, shards=shards)

    shard = Shard(shard_id=shard_id_factory(), anchor=anchor, children=(child_id,))
    return replace(point, shards=point.shards + (shard,))


def resolve_shard_id(updated_parent: Point, point_id: str) -> Optional[str]:
    """
    Id of the shard on updated_parent whose children contain point_id.

    None when no shard lists it; callers treat that as "no shard".
    """
    for shard in updated_parent.shards:
        if shard.contains_child(point_id):
            return shard.shard_id
    return None


def require_shard_id(updated_parent: Point, point_id: str) -> str:
    """Strict variant of resolve_shard_id()."""
    shard_id = resolve_shard_id(updated_parent, point_id)
    if shard_id is None:
        raise ShardNotFoundForChild(updated_parent.id, point_id)
    return shard_id


class ShardSegmenter:
    """
    Creates and links shards through the persistence collaborator.

    Usage:
        segmenter = ShardSegmenter(backend)
        parent = segmenter.attach_shard(parent, "T002", Anchor(22, 25, "Sun"))
        segmenter.resolve_shard_id(parent, "T002")
    """

    def __init__(self, backend: "PointBackend"):
        self.backend = backend

    def attach_shard(self, parent_point: Point, new_point_id: str, anchor: Anchor) -> Point:
        """
        Register new_point_id under the shard for anchor on parent_point.

        Args:
            parent_point: Current value of the parent
            new_point_id: The forked child
            anchor: Selection inside the parent's response

        Returns:
            The updated parent as persisted by the collaborator

        Raises:
            InvalidAnchorError: anchor offsets are invalid (nothing is persisted)
            PersistenceError: collaborator returned nothing
        """
        validate_anchor(anchor)

        reused = find_matching_shard(parent_point, anchor)
        updated = self.backend.attach_shard(parent_point.id, anchor, new_point_id)
        if updated is None:
            raise PersistenceError(
                f"attach_shard on '{parent_point.id}' returned no point"
            )

        if reused is not None:
            logger.debug(f"Reused shard {reused.shard_id} on {parent_point.id} for {new_point_id}")
        else:
            logger.debug(
                f"Created shard on {parent_point.id} "
                f"[{anchor.start_position}:{anchor.end_position}] for {new_point_id}"
            )
        return updated

    def resolve_shard_id(self, updated_parent: Point, point_id: str) -> Optional[str]:
        shard_id = resolve_shard_id(updated_parent, point_id)
        if shard_id is None:
            logger.warning(
                f"No shard on {updated_parent.id} lists child {point_id} - treating as no shard"
            )
        return shard_id
