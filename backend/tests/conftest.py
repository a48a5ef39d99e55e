"""Shared test fixtures and configuration for backend tests."""
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from friendstalk.auth import issue_token
from friendstalk.config import reset_config
from friendstalk.main import app
from friendstalk.messages import InMemoryMessageStore
from friendstalk.presence import Connection
from friendstalk.realtime import ConnectionLifecycleManager, set_lifecycle


class FakeWebSocket:
    """Transport double that records every event the server sends."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.closed_with: Optional[int] = None
        self.fail = fail

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("connection lost")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def events(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.sent if event["type"] == event_type]

    def last(self, event_type: str) -> Dict[str, Any]:
        matching = self.events(event_type)
        assert matching, f"no {event_type!r} event in {self.sent}"
        return matching[-1]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture(autouse=True)
def lifecycle():
    """Install a fresh lifecycle manager backed by an in-memory store."""
    reset_config()
    manager = ConnectionLifecycleManager.create(store=InMemoryMessageStore())
    set_lifecycle(manager)
    yield manager
    set_lifecycle(None)
    reset_config()


@pytest.fixture
def make_connection():
    """Factory for (Connection, FakeWebSocket) pairs bound to a user."""
    def _make(user_id: str, fail: bool = False) -> Tuple[Connection, FakeWebSocket]:
        transport = FakeWebSocket(fail=fail)
        return Connection(transport, user_id), transport

    return _make


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user."""
    def _headers(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {issue_token(user_id)}"}

    return _headers
