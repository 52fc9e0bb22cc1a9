"""
Shared pytest fixtures for the setlist-guard test suite.

Every engine under test gets its own in-memory stores and an event logger
wired to an in-memory audit sink, so tests can assert on recorded events
without touching the filesystem. SQLite-backed tests use ``tmp_path``.
"""

from datetime import datetime, timezone

import pytest

from setlist_guard.config import GuardSettings
from setlist_guard.core.audit_log import SecurityEventLogger
from setlist_guard.core.models import ResourceType
from setlist_guard.stores.memory import (
    InMemoryAuditSink,
    InMemoryCredentialStore,
    InMemoryOwnershipStore,
)


@pytest.fixture(autouse=True)
def _isolate_guard_env(monkeypatch):
    """Keep SETLIST_GUARD_* variables from the developer's shell out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("SETLIST_GUARD_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings():
    return GuardSettings(store_timeout_seconds=0.5, sample_interval_seconds=0)


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def event_logger(audit_sink, settings):
    return SecurityEventLogger(audit_sink, settings=settings)


@pytest.fixture
def ownership_store():
    """alice owns song 10 and setlist 10; bob owns song 20."""
    return InMemoryOwnershipStore({
        ResourceType.SONG: {10: "alice", 20: "bob"},
        ResourceType.SETLIST: {10: "alice"},
        ResourceType.SETLIST_SONG: {100: "alice"},
    })


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


class FrozenClock:
    """Controllable UTC clock for lockout tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, delta):
        self.now = self.now + delta


@pytest.fixture
def clock():
    return FrozenClock()
