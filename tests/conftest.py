"""Shared fixtures for board tests."""

import tempfile
from pathlib import Path

import httpx
import pytest

from agent_board.core.board import Board
from agent_board.core.events import EventBus
from agent_board.db.engine import init_db
from agent_board.integrations.runtime import AgentRuntimeClient


@pytest.fixture
def db():
    """Create a temporary SQLite database for testing."""
    with tempfile.TemporaryDirectory() as tmp:
        conn = init_db(Path(tmp) / "test.db")
        yield conn
        conn.close()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def board(db, bus):
    return Board(db, bus)


@pytest.fixture
def spawn_requests():
    """Requests received by the mock agent runtime."""
    return []


@pytest.fixture
def runtime(spawn_requests):
    """Runtime client backed by a mock transport that accepts every spawn."""

    def handler(request: httpx.Request) -> httpx.Response:
        spawn_requests.append(request)
        return httpx.Response(200, json={"sessionKey": f"sess-{len(spawn_requests)}"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AgentRuntimeClient("http://runtime.test", "secret-token", http_client=client)


@pytest.fixture
def offline_runtime():
    """Runtime client with no URL configured."""
    return AgentRuntimeClient(None)
