#!/usr/bin/env python3
"""
persistence.py - Point storage collaborators

The core never stores anything durable itself. It talks to a PointBackend:

    create_point(context, prompt_text)              -> Point (no response yet)
    fetch_point(point_id)                           -> Point | None
    append_child(parent_id, child_id)               -> updated parent
    attach_shard(parent_id, anchor, child_id)       -> updated parent
    complete_prompt(point_id, messages, config)     -> Point with response

Backends:
    InMemoryPointBackend - reference implementation, good for dev/testing
    JSONFilePointBackend - in-memory plus an atomic JSON snapshot per write
    HTTPPointBackend     - REST service over requests

Errors raised here propagate unchanged through add_turn(); the caller owns
retry/backoff.
"""

import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import requests
from uuid_extensions import uuid7

from shard_system.core.datashapes import (
    Anchor,
    Choice,
    CompletionError,
    Exchange,
    ModelConfig,
    PersistenceError,
    Point,
    Prompt,
    Response,
    TurnContext,
)
from shard_system.core.llm_connector import CompletionClient
from shard_system.core.shard_segmenter import merge_shard

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid7())


# =============================================================================
# BACKEND ABSTRACTION
# =============================================================================

class PointBackend(ABC):
    """
    Abstract persistence/completion collaborator.

    Implement this interface to plug the core into a storage service.
    """

    @abstractmethod
    def create_point(self, context: TurnContext, prompt_text: str) -> Point:
        """Create a point for a new turn. The response is not populated yet."""
        pass

    @abstractmethod
    def fetch_point(self, point_id: str) -> Optional[Point]:
        """Return the stored point, or None if it does not exist."""
        pass

    @abstractmethod
    def append_child(self, parent_id: str, child_id: str) -> Point:
        """Add child_id to the parent's children and return the updated parent."""
        pass

    @abstractmethod
    def attach_shard(self, parent_id: str, anchor: Anchor, child_id: str) -> Point:
        """Create or reuse the shard for anchor, link child_id, return the updated parent."""
        pass

    @abstractmethod
    def complete_prompt(
        self,
        point_id: str,
        context_messages: List[Dict[str, str]],
        model_config: ModelConfig
    ) -> Point:
        """Run the completion for the point's prompt and return the populated point."""
        pass

    def is_available(self) -> bool:
        return True

    def get_name(self) -> str:
        """Human-readable backend name."""
        return self.__class__.__name__


class InMemoryPointBackend(PointBackend):
    """
    Reference collaborator kept entirely in process.

    Assigns uuid7 ids, keeps its own copy of every point (separate from the
    core's GraphStore) and applies the same shard-reuse rule as the segmenter.
    complete_prompt() needs a CompletionClient (or any object with
    complete(messages, model_config) -> str).
    """

    def __init__(self, completion_client: Optional[CompletionClient] = None,
                 id_factory: Callable[[], str] = _new_id):
        self.completion_client = completion_client
        self.id_factory = id_factory
        self._records: Dict[str, Point] = {}

    # -------------------------------------------------------------------------
    # Storage hooks
    # -------------------------------------------------------------------------

    def _write(self, point: Point) -> Point:
        self._records[point.id] = point
        self._after_write()
        return point

    def _after_write(self) -> None:
        """Subclasses persist here."""
        pass

    def _require(self, point_id: str) -> Point:
        point = self._records.get(point_id)
        if point is None:
            raise PersistenceError(f"Point '{point_id}' does not exist")
        return point

    def put_point(self, point: Point) -> Point:
        """Seed or overwrite a point directly (imports, fixtures)."""
        return self._write(point)

    def export_state(self) -> Dict[str, Any]:
        return {"points": [p.to_dict() for p in self._records.values()]}

    def import_state(self, state: Dict[str, Any]) -> int:
        count = 0
        for data in state.get("points", []):
            point = Point.from_dict(data)
            self._records[point.id] = point
            count += 1
        return count

    # -------------------------------------------------------------------------
    # PointBackend
    # -------------------------------------------------------------------------

    def create_point(self, context: TurnContext, prompt_text: str) -> Point:
        point_id = self.id_factory()
        parent_id = context.parent_point_id or context.current_point_id or point_id

        point = Point(
            id=point_id,
            parent_point_id=parent_id,
            exchanges=(Exchange(exchange_id=self.id_factory(), prompt=Prompt(content=prompt_text)),),
        )
        logger.debug(f"Created point {point_id} (parent {parent_id})")
        return self._write(point)

    def fetch_point(self, point_id: str) -> Optional[Point]:
        return self._records.get(point_id)

    def append_child(self, parent_id: str, child_id: str) -> Point:
        parent = self._require(parent_id)
        return self._write(parent.with_child(child_id))

    def attach_shard(self, parent_id: str, anchor: Anchor, child_id: str) -> Point:
        parent = self._require(parent_id)
        updated = merge_shard(parent, child_id, anchor, shard_id_factory=self.id_factory)

        # Keep our copy of the child consistent with the shard it now hangs off
        child = self._records.get(child_id)
        if child is not None:
            for shard in updated.shards:
                if shard.contains_child(child_id):
                    self._records[child_id] = replace(child, parent_shard_id=shard.shard_id)
                    break

        return self._write(updated)

    def complete_prompt(
        self,
        point_id: str,
        context_messages: List[Dict[str, str]],
        model_config: ModelConfig
    ) -> Point:
        point = self._require(point_id)
        if self.completion_client is None:
            raise CompletionError("No completion client configured")

        text = self.completion_client.complete(context_messages, model_config)
        response = Response(choices=(Choice(content=text),), extra={"model": model_config.model})
        return self._write(point.with_response(response))


class JSONFilePointBackend(InMemoryPointBackend):
    """
    In-memory collaborator with a JSON snapshot on disk.

    Uses atomic write (temp file + rename) and keeps a .bak of the previous
    snapshot. Loads the snapshot, if any, on construction.
    """

    def __init__(self, file_path: str,
                 completion_client: Optional[CompletionClient] = None,
                 id_factory: Callable[[], str] = _new_id):
        super().__init__(completion_client=completion_client, id_factory=id_factory)
        self.file_path = file_path
        loaded = self.load()
        if loaded:
            logger.info(f"Loaded {loaded} points from {self.file_path}")

    def _after_write(self) -> None:
        self.save()

    def save(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.file_path))
        os.makedirs(directory, exist_ok=True)

        if os.path.exists(self.file_path):
            shutil.copy2(self.file_path, self.file_path + ".bak")

        temp_path = self.file_path + ".tmp"
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(self.export_state(), f, indent=2)
            os.replace(temp_path, self.file_path)
        except OSError as e:
            raise PersistenceError(f"Could not write {self.file_path}: {e}") from e

    def load(self) -> int:
        if not os.path.exists(self.file_path):
            return 0
        try:
            with open(self.file_path, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read {self.file_path}: {e}") from e
        return self.import_state(state)

    def restore_from_backup(self) -> bool:
        """Replace the snapshot with its .bak copy and reload."""
        backup_path = self.file_path + ".bak"
        if not os.path.exists(backup_path):
            logger.warning("No backup file exists to restore from")
            return False

        shutil.copy2(backup_path, self.file_path)
        self._records.clear()
        self.load()
        logger.info(f"Restored point store from {backup_path}")
        return True


class HTTPPointBackend(PointBackend):
    """
    REST collaborator.

        POST /points                    {"context", "promptText"}
        GET  /points/{id}               404 -> None
        POST /points/{id}/children      {"childId"}
        POST /points/{id}/shards        {"anchor", "childId"}
        POST /points/{id}/complete      {"messages", "modelConfig"}

    Every endpoint answers with a point payload, either bare or under "point".
    """

    def __init__(self, base_url: str, timeout: int = 30, headers: Optional[Dict[str, str]] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.headers = headers or {}

    @classmethod
    def from_config(cls, config) -> "HTTPPointBackend":
        return cls(base_url=config.API_URL, timeout=config.API_TIMEOUT)

    def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            if method == "GET":
                return requests.get(url, headers=self.headers, timeout=self.timeout)
            return requests.post(url, json=payload, headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise PersistenceError(f"{method} {path} failed: {e}") from e

    def _point_from(self, response: requests.Response, operation: str) -> Point:
        if response.status_code not in (200, 201):
            raise PersistenceError(
                f"{operation} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
            if isinstance(data, dict) and isinstance(data.get("point"), dict):
                data = data["point"]
            return Point.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"{operation} returned an unreadable point: {e}") from e

    def is_available(self) -> bool:
        try:
            response = requests.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def create_point(self, context: TurnContext, prompt_text: str) -> Point:
        response = self._request("POST", "/points", {
            "context": context.to_dict(),
            "promptText": prompt_text,
        })
        return self._point_from(response, "create_point")

    def fetch_point(self, point_id: str) -> Optional[Point]:
        response = self._request("GET", f"/points/{point_id}")
        if response.status_code == 404:
            return None
        if response.status_code == 200 and not response.content:
            return None
        return self._point_from(response, "fetch_point")

    def append_child(self, parent_id: str, child_id: str) -> Point:
        response = self._request("POST", f"/points/{parent_id}/children", {"childId": child_id})
        return self._point_from(response, "append_child")

    def attach_shard(self, parent_id: str, anchor: Anchor, child_id: str) -> Point:
        response = self._request("POST", f"/points/{parent_id}/shards", {
            "anchor": anchor.to_dict(),
            "childId": child_id,
        })
        return self._point_from(response, "attach_shard")

    def complete_prompt(
        self,
        point_id: str,
        context_messages: List[Dict[str, str]],
        model_config: ModelConfig
    ) -> Point:
        response = self._request("POST", f"/points/{point_id}/complete", {
            "messages": context_messages,
            "modelConfig": model_config.to_dict(),
        })
        return self._point_from(response, "complete_prompt")
