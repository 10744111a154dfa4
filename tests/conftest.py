"""
Pytest configuration for the proctoring backend tests
"""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# never reach for a real MongoDB while importing the app
os.environ.setdefault("STORE_BACKEND", "memory")

T0 = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def make_event():
    """Factory for stored-style events"""
    from proctoring.models import Event

    def _make(event_type, minutes=0, message=None, candidate_id="cand-1", session_id="session-1"):
        return Event(
            candidate_id=candidate_id,
            candidate_name="Asha Rao",
            event_type=event_type,
            message=message or f"{event_type} observed",
            timestamp=T0 + timedelta(minutes=minutes),
            session_id=session_id,
        )

    return _make


@pytest.fixture
def event_payload():
    """Factory for POST /events bodies"""

    def _payload(event_type="look-away", minutes=None, **overrides):
        body = {
            "candidateId": "cand-1",
            "candidateName": "Asha Rao",
            "eventType": event_type,
            "message": f"{event_type} observed",
            "sessionId": "session-1",
        }
        if minutes is not None:
            body["timestamp"] = (T0 + timedelta(minutes=minutes)).isoformat()
        body.update(overrides)
        return body

    return _payload


@pytest.fixture
def store():
    from proctoring.storage import MemoryStore
    return MemoryStore()


@pytest.fixture
def app(store):
    from proctoring.main import app, get_event_store

    app.dependency_overrides[get_event_store] = lambda: store
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """FastAPI test client backed by a fresh in-memory store"""
    return TestClient(app)
