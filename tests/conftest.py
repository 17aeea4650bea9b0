"""
Pytest fixtures and test configuration for taakl tests.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import pytest

from taakl.storage import SQLiteStorage, SyncEngine
from taakl.storage import accounts
from taakl.types import TIMESTAMP_FORMAT

# Server clock starts here; client timestamps in tests are chosen around it.
SERVER_START = "2024-01-01 10:00:00"


class FakeClock:
    """Settable server clock returning the stored wall-clock form."""

    def __init__(self, start: str = SERVER_START):
        self.current = start

    def __call__(self) -> str:
        return self.current

    def set(self, value: str) -> None:
        self.current = value

    def advance(self, seconds: int = 1) -> str:
        moment = datetime.strptime(self.current, TIMESTAMP_FORMAT) + timedelta(seconds=seconds)
        self.current = moment.strftime(TIMESTAMP_FORMAT)
        return self.current


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(temp_db, clock):
    """Create a SQLiteStorage instance driven by the fake clock."""
    storage = SQLiteStorage(db_path=temp_db, clock=clock)
    yield storage
    storage.close()


def _create_account(storage: SQLiteStorage, username: str) -> Dict[str, Any]:
    with storage.transaction() as conn:
        return accounts.create_user(conn, username, "not-a-real-hash", storage.now())


@pytest.fixture
def account(storage):
    """The account most tests act as."""
    return _create_account(storage, "alice")


@pytest.fixture
def other_account(storage):
    """A second account, for scoping checks."""
    return _create_account(storage, "bob")


@pytest.fixture
def engine(storage, account):
    return SyncEngine(storage, account["id"], account["uuid"])


@pytest.fixture
def make_change():
    """Build a wire-shaped mutation dict."""

    def _make(
        action: str,
        type: str,
        uuid: str,
        data: Optional[Dict[str, Any]] = None,
        timestamp: Optional[str] = None,
        parent: Optional[str] = None,
    ) -> Dict[str, Any]:
        change: Dict[str, Any] = {"action": action, "type": type, "uuid": uuid, "data": data or {}}
        if timestamp is not None:
            change["timestamp"] = timestamp
        if parent is not None:
            change["parentUuid"] = parent
        return change

    return _make


@pytest.fixture
def sync(engine):
    """Run one incremental sync batch and return its wire result."""

    def _sync(*changes: Dict[str, Any], cutoff: Optional[str] = None) -> Dict[str, Any]:
        return engine.process_incremental_sync(list(changes), cutoff).to_wire()

    return _sync


@pytest.fixture
def fetch_row(storage):
    """Read one stored row by table and uuid (tombstones included)."""

    def _fetch(table: str, uuid: str) -> Optional[Dict[str, Any]]:
        with storage.connect() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE uuid = ?", (uuid,)).fetchone()
        return dict(row) if row else None

    return _fetch
