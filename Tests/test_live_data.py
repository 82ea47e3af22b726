# test_live_data.py
#
# Tests for the owner-scoped live data hub.
#
# Imports
#
# Third-Party Imports
import pytest
#
# Local Imports
from conftest import RecordingBackend, settle
from offline_sync.live_data import LiveDataHub
from offline_sync.remote_api.schemas import OrderBy
from offline_sync.Sync.connectivity import ConnectivityMonitor
from offline_sync.Sync.sync_engine import SyncEngine
#
########################################################################################################################
#
# Functions:

pytestmark = pytest.mark.asyncio

RESOURCES = {
    "weight_logs": OrderBy(column="measured_at", ascending=False),
    "nutrition_logs": OrderBy(column="completed_at", ascending=False),
    "profiles": None,
}


@pytest.fixture
def live_backend():
    return RecordingBackend({
        "weight_logs": [
            {"id": 1, "user_id": "alice", "weight": 60, "measured_at": "2024-01-01"},
            {"id": 2, "user_id": "bob", "weight": 90, "measured_at": "2024-01-02"},
            {"id": 3, "user_id": "alice", "weight": 59, "measured_at": "2024-01-03"},
        ],
        "nutrition_logs": [
            {"id": 10, "user_id": "alice", "calories": 500, "completed_at": "2024-01-03T08:00"},
        ],
        "profiles": [{"id": 20, "user_id": "alice", "height": 170}, {"id": 21, "user_id": "bob", "height": 180}],
    })


@pytest.fixture
def hub(live_backend, kv_store):
    engine = SyncEngine(live_backend, kv_store, ConnectivityMonitor())
    return LiveDataHub(engine, RESOURCES)


async def test_no_stores_until_owner_is_set(hub):
    assert hub.stores == {}
    assert not hub.is_loading


async def test_set_owner_opens_filtered_ordered_stores(hub):
    await hub.set_owner("alice")

    assert set(hub.stores) == set(RESOURCES)
    assert hub["weight_logs"].ids == [3, 1]
    assert hub["nutrition_logs"].ids == [10]
    assert hub["profiles"].ids == [20]
    assert not hub.is_loading


async def test_live_events_for_other_owners_are_ignored(hub, live_backend):
    await hub.set_owner("alice")

    await live_backend.insert("weight_logs", {"user_id": "bob", "weight": 91, "measured_at": "2024-01-04"})
    await live_backend.insert("weight_logs", {"user_id": "alice", "weight": 58, "measured_at": "2024-01-05"})
    await settle()

    assert hub["weight_logs"].ids == [23, 3, 1]


async def test_switching_owner_replaces_stores(hub, live_backend):
    await hub.set_owner("alice")
    previous = hub["weight_logs"]

    await hub.set_owner("bob")

    assert previous.closed
    assert hub["weight_logs"].ids == [2]
    assert hub["profiles"].ids == [21]
    assert live_backend.feed.subscriber_count("weight_logs") == 1


async def test_setting_same_owner_keeps_stores(hub):
    await hub.set_owner("alice")
    store = hub["weight_logs"]
    await hub.set_owner("alice")
    assert hub["weight_logs"] is store


async def test_clearing_owner_closes_everything(hub, live_backend):
    await hub.set_owner("alice")
    await hub.set_owner(None)
    assert hub.stores == {}
    assert live_backend.feed.subscriber_count() == 0
    assert hub.engine.stores == []


async def test_refetch_reloads_every_store(hub, live_backend):
    await hub.set_owner("alice")
    live_backend.tables["nutrition_logs"].append(
        {"id": 11, "user_id": "alice", "calories": 300, "completed_at": "2024-01-04T12:00"})

    await hub.refetch()

    assert hub["nutrition_logs"].ids == [11, 10]

#
# End of test_live_data.py
########################################################################################################################
