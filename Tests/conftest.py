# Tests/conftest.py
# Shared fixtures for the offline_sync test suite.
#
# Imports
import asyncio
from typing import Any, List, Optional, Tuple
#
# Third-Party Imports
import pytest
#
# Local Imports
from offline_sync.DB.KV_Store_DB import KeyValueDatabase
from offline_sync.exceptions import SyncError
from offline_sync.remote_api.memory import InMemoryBackend
from offline_sync.Sync.connectivity import ConnectivityMonitor
from offline_sync.Sync.mutation_queue import MutationQueue
from offline_sync.Sync.sync_engine import SyncEngine
#
########################################################################################################################
#
# Helpers:

async def settle(turns: int = 3) -> None:
    """Lets change-feed deliveries scheduled with call_soon run."""
    for _ in range(turns):
        await asyncio.sleep(0)


class RecordingBackend(InMemoryBackend):
    """InMemoryBackend that records every write call and can be told to fail the next N of them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: List[Tuple[str, str, Any]] = []
        self.fail_with: Optional[SyncError] = None
        self.fail_times = 0
        self.query_error: Optional[SyncError] = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None and self.fail_times > 0:
            self.fail_times -= 1
            raise self.fail_with

    def fail_next(self, error: SyncError, times: int = 1) -> None:
        self.fail_with = error
        self.fail_times = times

    async def query(self, resource, filter=None, order_by=None):
        if self.query_error is not None:
            raise self.query_error
        return await super().query(resource, filter, order_by)

    async def insert(self, resource, payload):
        self.calls.append(("insert", resource, dict(payload)))
        self._maybe_fail()
        return await super().insert(resource, payload)

    async def update(self, resource, record_id, payload):
        self.calls.append(("update", resource, record_id))
        self._maybe_fail()
        return await super().update(resource, record_id, payload)

    async def delete(self, resource, record_id):
        self.calls.append(("delete", resource, record_id))
        self._maybe_fail()
        return await super().delete(resource, record_id)


# --- Fixtures ---

@pytest.fixture
def kv_path(tmp_path):
    return tmp_path / "offline_sync_test.db"


@pytest.fixture
def kv_store(kv_path):
    db = KeyValueDatabase(kv_path)
    yield db
    db.close_connection()


@pytest.fixture
def weight_logs_rows():
    return [
        {"id": 1, "weight": 80, "recorded_at": "2024-01-02"},
        {"id": 2, "weight": 81, "recorded_at": "2024-01-01"},
    ]


@pytest.fixture
def backend(weight_logs_rows):
    return RecordingBackend({"weight_logs": weight_logs_rows})


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initial_online=True)


@pytest.fixture
def queue(kv_store, backend):
    return MutationQueue(kv_store, backend)


@pytest.fixture
def engine(backend, kv_store, monitor):
    return SyncEngine(backend, kv_store, monitor)

#
# End of conftest.py
########################################################################################################################
