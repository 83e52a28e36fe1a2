#!/usr/bin/env python3
"""
datashapes.py - Centralized Data Shape Definitions

All dataclasses, enums and exceptions used across the shard system live here.
No graph logic - just definitions of what data looks like.

Other files import from here to ensure consistent structures:
    from shard_system.core.datashapes import Point, Shard, Anchor, TreeNode

Entities (Point, Shard, Anchor, Exchange) are frozen. Updates are always
"make a new copy with dataclasses.replace() and put it back in the store",
never in-place field mutation.

Wire format uses the camelCase keys the persistence service speaks
(parentPointId, shardId, startPosition, ...). to_dict()/from_dict() are the
only place that translation happens.

Created: 2026-02-11
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List, Dict, Any, Tuple


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ShardSystemError(Exception):
    """Base class for everything the shard system raises on purpose."""
    pass


class ParentNotFoundError(ShardSystemError):
    """Parent point could not be resolved from the store or the collaborator."""

    def __init__(self, parent_point_id: str, child_point_id: Optional[str] = None):
        self.parent_point_id = parent_point_id
        self.child_point_id = child_point_id
        message = f"Parent point '{parent_point_id}' not found"
        if child_point_id:
            message += f" (while linking '{child_point_id}')"
        super().__init__(message)


class InvalidAnchorError(ShardSystemError):
    """Anchor offsets are out of order or negative. Never clamped."""

    def __init__(self, anchor: "Anchor", reason: str = ""):
        self.anchor = anchor
        self.reason = reason
        message = (
            f"Invalid anchor start={anchor.start_position} end={anchor.end_position}"
        )
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ShardNotFoundForChild(ShardSystemError):
    """No shard on the parent lists the child. Callers usually treat this as 'no shard'."""

    def __init__(self, parent_point_id: str, child_point_id: str):
        self.parent_point_id = parent_point_id
        self.child_point_id = child_point_id
        super().__init__(
            f"No shard on '{parent_point_id}' lists child '{child_point_id}'"
        )


class PersistenceError(ShardSystemError):
    """Transport or protocol failure talking to the persistence collaborator."""
    pass


class CompletionError(ShardSystemError):
    """The AI completion service failed or returned something unusable."""
    pass


# =============================================================================
# ENUMS
# =============================================================================

class NodeType(Enum):
    """What a TreeNode represents on screen."""
    EXCHANGE = "exchange"              # Plain prompt + response
    SHARD = "shard"                    # Prompt + response of a sub-prompt fork
    SHARD_RESPONSE = "shardResponse"   # One slice of a split response


# =============================================================================
# CORE ENTITIES - Anchor, Shard, Exchange, Point
# =============================================================================

@dataclass(frozen=True)
class Anchor:
    """
    Character range inside a parent point's response text.

    Offsets are code-unit positions into a single response string.
    Well-formed means 0 <= start <= end; fitting a response additionally
    needs end <= len(response).
    """
    start_position: int
    end_position: int
    selected_text: str = ""

    def is_well_formed(self) -> bool:
        return 0 <= self.start_position <= self.end_position

    def fits(self, length: int) -> bool:
        """True if this anchor is well formed and lies inside a text of `length`."""
        return self.is_well_formed() and self.end_position <= length

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startPosition": self.start_position,
            "endPosition": self.end_position,
            "selectedText": self.selected_text,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Anchor":
        return cls(
            start_position=int(data.get("startPosition", 0)),
            end_position=int(data.get("endPosition", 0)),
            selected_text=data.get("selectedText") or "",
        )


@dataclass(frozen=True)
class Shard:
    """
    Anchored sub-region of a parent point's response.

    shard_id is unique within the owning point. children lists the ids of
    points forked from this region, in the order they were forked.
    """
    shard_id: str
    anchor: Anchor
    children: Tuple[str, ...] = ()

    def contains_child(self, point_id: str) -> bool:
        return point_id in self.children

    def with_child(self, point_id: str) -> "Shard":
        """Copy of this shard with point_id appended (no duplicates)."""
        if point_id in self.children:
            return self
        return replace(self, children=self.children + (point_id,))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shardId": self.shard_id,
            "children": list(self.children),
            "anchor": self.anchor.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Shard":
        return cls(
            shard_id=str(data["shardId"]),
            anchor=Anchor.from_dict(data.get("anchor") or {}),
            children=tuple(str(c) for c in data.get("children") or []),
        )


@dataclass(frozen=True)
class Prompt:
    """The user side of an exchange."""
    role: str = "user"
    content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prompt":
        return cls(role=data.get("role", "user"), content=data.get("content") or "")


@dataclass(frozen=True)
class Choice:
    """One candidate completion."""
    role: str = "assistant"
    content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Choice":
        # OpenAI-style payloads nest the text under "message"
        if "message" in data and isinstance(data["message"], dict):
            data = data["message"]
        return cls(role=data.get("role", "assistant"), content=data.get("content") or "")


@dataclass(frozen=True)
class Response:
    """
    The assistant side of an exchange.

    extra keeps any provider fields (model, usage, ...) we don't model.
    """
    choices: Tuple[Choice, ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> Optional[str]:
        if not self.choices:
            return None
        return self.choices[0].content

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result["choices"] = [c.to_dict() for c in self.choices]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Response":
        extra = {k: v for k, v in data.items() if k != "choices"}
        return cls(
            choices=tuple(Choice.from_dict(c) for c in data.get("choices") or []),
            extra=extra,
        )

    @classmethod
    def from_text(cls, text: str, role: str = "assistant") -> "Response":
        return cls(choices=(Choice(role=role, content=text),))


@dataclass(frozen=True)
class Exchange:
    """
    One prompt/response pair. response is None while awaiting completion.
    """
    exchange_id: str
    prompt: Prompt
    response: Optional[Response] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "exchangeId": self.exchange_id,
            "prompt": self.prompt.to_dict(),
        }
        if self.response is not None:
            result["response"] = self.response.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Exchange":
        response = data.get("response")
        return cls(
            exchange_id=str(data.get("exchangeId", "")),
            prompt=Prompt.from_dict(data.get("prompt") or {}),
            response=Response.from_dict(response) if response else None,
        )


@dataclass(frozen=True)
class Point:
    """
    A conversation node.

    Key concept: a point is a ROOT iff parent_point_id == id (self-reference
    sentinel, never None). parent_shard_id is set only for sub-prompt forks;
    plain continuations live in the parent's children and have no shard.
    """
    # === Identity & Hierarchy ===
    id: str
    parent_point_id: str
    children: Tuple[str, ...] = ()              # Plain continuations, ordered, unique
    parent_shard_id: Optional[str] = None       # Shard (in the parent) this fork hangs off

    # === Content ===
    shards: Tuple[Shard, ...] = ()              # Anchors into THIS point's response
    exchanges: Tuple[Exchange, ...] = ()        # One per point today, list for later

    @property
    def is_root(self) -> bool:
        return self.parent_point_id == self.id

    @property
    def is_shard_child(self) -> bool:
        return self.parent_shard_id is not None

    @property
    def last_exchange(self) -> Optional[Exchange]:
        return self.exchanges[-1] if self.exchanges else None

    @property
    def prompt_text(self) -> Optional[str]:
        exchange = self.last_exchange
        return exchange.prompt.content if exchange else None

    @property
    def response_text(self) -> Optional[str]:
        exchange = self.last_exchange
        if exchange is None or exchange.response is None:
            return None
        return exchange.response.text

    def get_shard(self, shard_id: str) -> Optional[Shard]:
        for shard in self.shards:
            if shard.shard_id == shard_id:
                return shard
        return None

    def with_child(self, child_id: str) -> "Point":
        """Copy with child_id appended to children (ordered set semantics)."""
        if child_id in self.children:
            return self
        return replace(self, children=self.children + (child_id,))

    def with_response(self, response: Response) -> "Point":
        """Copy with the last exchange's response populated."""
        if not self.exchanges:
            raise ValueError(f"Point '{self.id}' has no exchange to attach a response to")
        last = replace(self.exchanges[-1], response=response)
        return replace(self, exchanges=self.exchanges[:-1] + (last,))

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "parentPointId": self.parent_point_id,
            "children": list(self.children),
            "shards": [s.to_dict() for s in self.shards],
            "exchanges": [e.to_dict() for e in self.exchanges],
        }
        if self.parent_shard_id is not None:
            result["parentShardId"] = self.parent_shard_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Point":
        point_id = str(data["id"])
        parent_id = data.get("parentPointId")
        children: List[str] = []
        for child in data.get("children") or []:
            if str(child) not in children:
                children.append(str(child))
        return cls(
            id=point_id,
            # Missing parent on the wire means root
            parent_point_id=str(parent_id) if parent_id else point_id,
            children=tuple(children),
            parent_shard_id=data.get("parentShardId") or None,
            shards=tuple(Shard.from_dict(s) for s in data.get("shards") or []),
            exchanges=tuple(Exchange.from_dict(e) for e in data.get("exchanges") or []),
        )


# =============================================================================
# TURN CONTEXT & MODEL CONFIG - What callers hand to add_turn / complete
# =============================================================================

@dataclass
class TurnContext:
    """
    Where a new turn goes.

    Fork turns set is_shard_child=True plus the selection (selected_text,
    start_position, end_position, absolute offsets into the parent's
    response). Everything else is a continuation of current_point_id.
    """
    current_point_id: Optional[str] = None
    parent_point_id: Optional[str] = None
    parent_shard_id: Optional[str] = None
    is_shard_child: bool = False
    selected_text: Optional[str] = None
    start_position: Optional[int] = None
    end_position: Optional[int] = None

    @property
    def is_fork(self) -> bool:
        return self.is_shard_child and bool(self.selected_text)

    def anchor(self) -> Anchor:
        """
        Anchor described by this fork selection.

        Raises:
            InvalidAnchorError: start_position or end_position was not given
        """
        anchor = Anchor(
            start_position=self.start_position,
            end_position=self.end_position,
            selected_text=self.selected_text or "",
        )
        if self.start_position is None or self.end_position is None:
            raise InvalidAnchorError(anchor, "selection has no start/end position")
        return anchor

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentPointId": self.current_point_id,
            "parentPointId": self.parent_point_id,
            "parentShardId": self.parent_shard_id,
            "isShardChild": self.is_shard_child,
            "selectedText": self.selected_text,
            "startPosition": self.start_position,
            "endPosition": self.end_position,
        }


@dataclass
class ModelConfig:
    """Model settings passed through to the completion service."""
    model: str = "local-model"
    temperature: float = 0.7
    max_tokens: int = 1024
    system_prompt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "model": self.model,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
        }
        if self.system_prompt:
            result["systemPrompt"] = self.system_prompt
        return result


# =============================================================================
# TREE NODE - Display projection, rebuilt on every pass, never persisted
# =============================================================================

@dataclass
class TreeNode:
    """
    Render-ready node produced by the tree builder.

    id is synthetic: the point id for main/regular nodes, "<point>::<shard>"
    for segment nodes, "<point>::after" and "<point>::response" for trailing
    and fallback slices. Mutable only while the builder assembles it.
    """
    id: str
    point_id: str
    node_type: NodeType = NodeType.EXCHANGE
    parent_id: Optional[str] = None
    level: int = 0
    is_expanded: bool = True
    has_children: bool = False
    prompt_content: Optional[str] = None
    response_content: Optional[str] = None
    children: List["TreeNode"] = field(default_factory=list)

    # === Segment bookkeeping (shardResponse nodes only) ===
    shard_id: Optional[str] = None
    shard_start_position: Optional[int] = None
    shard_end_position: Optional[int] = None

    def to_dict(self, include_children: bool = False) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "pointId": self.point_id,
            "parentId": self.parent_id,
            "level": self.level,
            "isExpanded": self.is_expanded,
            "hasChildren": self.has_children,
            "promptContent": self.prompt_content,
            "responseContent": self.response_content,
            "nodeType": self.node_type.value,
        }
        if self.shard_id is not None:
            result["shardId"] = self.shard_id
            result["shardStartPosition"] = self.shard_start_position
            result["shardEndPosition"] = self.shard_end_position
        if include_children:
            result["children"] = [c.to_dict(include_children=True) for c in self.children]
        return result


def segment_node_id(point_id: str, shard_id: str) -> str:
    """Synthetic id of the segment node keyed by (point, shard)."""
    return f"{point_id}::{shard_id}"


def after_node_id(point_id: str) -> str:
    return f"{point_id}::after"


def fallback_node_id(point_id: str) -> str:
    return f"{point_id}::response"
