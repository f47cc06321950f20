"""
Pytest fixtures and test configuration for notesync tests.
"""

from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from notesync.config import SyncSettings, get_settings
from notesync.session import Session
from notesync.storage import SQLiteStorage
from notesync.sync import SyncClock, SyncCoordinator
from notesync.types import CheckpointPolicy, MergePolicy

OWNER_ID = "owner-1"
BACKEND_URL = "https://notes.example.com/graphql"


class FakeChannel:
    """In-memory stand-in for RemoteChannel.

    ``snapshot`` is returned for the sync query (or raised if it is an
    exception). ``failures`` maps a record id to an exception, or a list
    of exceptions consumed one per attempt.
    """

    def __init__(self, snapshot: Any = None, failures: Optional[Dict[str, Any]] = None):
        self.snapshot = snapshot if snapshot is not None else {"user": {"folders": []}}
        self.failures = failures or {}
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True

    async def execute(self, name: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((name, dict(variables)))
        if name == "sync":
            if isinstance(self.snapshot, BaseException):
                raise self.snapshot
            return self.snapshot
        failure = self.failures.get(variables.get("id"))
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure
        return {name: {"id": variables["id"]}}

    def mutations(self, name: Optional[str] = None) -> List[Tuple[str, Dict[str, Any]]]:
        return [c for c in self.calls if c[0] != "sync" and (name is None or c[0] == name)]

    def pushed_ids(self, name: Optional[str] = None) -> List[str]:
        return sorted(variables["id"] for _, variables in self.mutations(name))


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep credentials and default databases out of the real home directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("NOTESYNC_HOME", str(home))
    for var in ("NOTESYNC_BACKEND_URL", "NOTESYNC_AUTH_TOKEN", "NOTESYNC_USER_ID", "NOTESYNC_DB_PATH"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield home
    get_settings.cache_clear()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "notes.db"


@pytest.fixture
def storage(temp_db):
    """Create a SQLiteStorage instance for testing."""
    storage = SQLiteStorage(OWNER_ID, db_path=temp_db, max_write_attempts=3)
    yield storage
    storage.close()


@pytest.fixture
def session():
    return Session(owner_id=OWNER_ID, token="test-token", backend_url=BACKEND_URL)


@pytest.fixture
def make_settings():
    def _make(**overrides):
        values = {
            "merge_policy": MergePolicy.NEWER_WINS,
            "checkpoint_policy": CheckpointPolicy.HIGH_WATER_MARK,
            "max_concurrency": 4,
            "mutation_retries": 0,
            "retry_backoff_s": 0.0,
            "max_write_attempts": 3,
        }
        values.update(overrides)
        return SyncSettings(_env_file=None, **values)

    return _make


@pytest.fixture
def clock(storage):
    return SyncClock(storage, OWNER_ID)


@pytest.fixture
def make_coordinator(session, storage, make_settings):
    """Build a coordinator wired to a FakeChannel and a fixed clock."""

    def _make(channel: FakeChannel, now: int = 1_000, session_override=None, **settings):
        return SyncCoordinator(
            session_override or session,
            storage,
            settings=make_settings(**settings),
            channel_factory=lambda s: channel,
            now_fn=lambda: now,
            sleep=AsyncMock(),
        )

    return _make


@pytest.fixture
def fake_channel():
    """Factory for FakeChannel instances."""
    return FakeChannel
