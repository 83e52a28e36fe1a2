"""
Shared fixtures for the shard system tests.

Builds points by hand for tree tests, and a fully wired session over the
in-memory collaborator (completion client mocked) for turn tests.
"""

import itertools

import pytest
from unittest.mock import MagicMock

from shard_system.core.config import TestConfig
from shard_system.core.datashapes import Anchor, Exchange, Point, Prompt, Response, Shard
from shard_system.core.error_handler import ErrorHandler
from shard_system.core.event_emitter import EventEmitter, EventTier
from shard_system.core.expansion_state import ExpansionState
from shard_system.core.graph_store import GraphStore
from shard_system.core.persistence import InMemoryPointBackend
from shard_system.core.thread_graph_manager import ThreadGraphManager


# =============================================================================
# PYTEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "critical: must-pass tests for tree shape and turn routing")
    config.addinivalue_line("markers", "persistence: tests data written to disk or over HTTP")
    config.addinivalue_line("markers", "scenario: end-to-end conversation walkthroughs")


# =============================================================================
# KEY CONSTANTS
# =============================================================================

EARTH_PROMPT = "What is Earth?"
EARTH_RESPONSE = "Third planet from the Sun"


# =============================================================================
# POINT BUILDERS
# =============================================================================

def make_point(point_id, prompt="prompt", response=None, parent=None,
               children=(), shards=(), parent_shard_id=None):
    """Point with one exchange. parent=None makes it a root."""
    exchange = Exchange(
        exchange_id=f"E-{point_id}",
        prompt=Prompt(content=prompt),
        response=Response.from_text(response) if response is not None else None,
    )
    return Point(
        id=point_id,
        parent_point_id=parent or point_id,
        children=tuple(children),
        parent_shard_id=parent_shard_id,
        shards=tuple(shards),
        exchanges=(exchange,),
    )


def make_shard(shard_id, start, end, children=(), text=""):
    return Shard(shard_id=shard_id, anchor=Anchor(start, end, text), children=tuple(children))


@pytest.fixture
def point_factory():
    return make_point


@pytest.fixture
def shard_factory():
    return make_shard


# =============================================================================
# CORE FIXTURES
# =============================================================================

@pytest.fixture
def id_factory():
    """Deterministic ids: T001, T002, ..."""
    counter = itertools.count(1)
    return lambda: f"T{next(counter):03d}"


@pytest.fixture
def mock_completion_client():
    """Completion client that always answers with the Earth response."""
    client = MagicMock()
    client.complete.return_value = EARTH_RESPONSE
    return client


@pytest.fixture
def backend(mock_completion_client, id_factory):
    return InMemoryPointBackend(completion_client=mock_completion_client, id_factory=id_factory)


@pytest.fixture
def store():
    return GraphStore()


@pytest.fixture
def emitter():
    """Emitter that streams every tier so tests can observe debug events too."""
    return EventEmitter(stream_tiers={EventTier.CRITICAL, EventTier.SYSTEM, EventTier.DEBUG})


@pytest.fixture
def error_handler():
    """Real ErrorHandler with the console mocked out."""
    return ErrorHandler(console=MagicMock(), debug_mode=True)


@pytest.fixture
def manager(store, backend, emitter, error_handler):
    return ThreadGraphManager(store, backend, emitter=emitter, error_handler=error_handler)


@pytest.fixture
def expansion_state():
    return ExpansionState()


@pytest.fixture
def session(backend, emitter, error_handler):
    from shard_system.core.conversation_session import ConversationSession

    return ConversationSession(
        backend=backend,
        config=TestConfig,
        emitter=emitter,
        error_handler=error_handler,
    )


@pytest.fixture
def recorded_events(emitter):
    """List that fills with every event the emitter streams."""
    events = []
    emitter.add_listener(events.append)
    return events
