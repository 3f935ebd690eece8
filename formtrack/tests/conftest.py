import os
import sys
from datetime import UTC, datetime, timedelta

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

import pytest
from fastapi.testclient import TestClient

from formtrack.config import clear_settings_cache
from formtrack.db.memory import InMemoryEventStore, InMemorySessionStore
from formtrack.events import build_event
from formtrack.sessions import SessionTracker

BASE_TS = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

_ENV_VARS = (
    "STORAGE_EVENTS",
    "STORAGE_SESSIONS",
    "FORM_OWNERS",
    "AUTH_USER_HEADER",
    "AUTH_REVEAL_FORM_EXISTENCE",
    "GEOIP_DB_PATH",
)


@pytest.fixture
def make_event():
    """Factory for typed events; ``offset`` is seconds after BASE_TS."""

    def _make(event_type, form_id="form-1", session_id="S", field_id=None, time_spent=0, offset=0, **extra):
        return build_event(
            event_type=event_type,
            form_id=form_id,
            session_id=session_id,
            field_id=field_id,
            time_spent=time_spent,
            occurred_at=BASE_TS + timedelta(seconds=offset),
            **extra,
        )

    return _make


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def tracker(session_store):
    return SessionTracker(session_store)


@pytest.fixture
def client_env():
    """Extra environment for the app under test; override per test class."""
    return {}


@pytest.fixture
def client(monkeypatch, client_env):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("FORM_OWNERS", "form-1:user-1,form-2:user-2")
    monkeypatch.setenv("GEOIP_DB_PATH", "/nonexistent/GeoLite2-Country.mmdb")
    for name, value in client_env.items():
        monkeypatch.setenv(name, value)
    clear_settings_cache()

    import formtrack.main as main

    with TestClient(main.app) as c:
        yield c
    clear_settings_cache()


@pytest.fixture
def resources(client):
    return client.app.state.resources
