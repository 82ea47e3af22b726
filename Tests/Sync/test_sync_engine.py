# test_sync_engine.py
#
# End-to-end tests for the sync engine: offline round trips, reconnect drains, cache fallback after a
# restart and store lifecycle.
#
# Imports
import asyncio
#
# Third-Party Imports
import pytest
#
# Local Imports
from conftest import RecordingBackend, settle
from offline_sync.DB.KV_Store_DB import KeyValueDatabase
from offline_sync.exceptions import TransientNetworkError
from offline_sync.remote_api.client import RestBackend
from offline_sync.remote_api.memory import InMemoryBackend
from offline_sync.remote_api.schemas import OrderBy
from offline_sync.Sync.connectivity import ConnectivityMonitor
from offline_sync.Sync.sync_engine import SyncEngine
#
########################################################################################################################
#
# Functions:

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]

RECORDED_DESC = OrderBy(column="recorded_at", ascending=False)


async def test_weight_logs_scenario(engine, backend):
    store = await engine.open_store("weight_logs", order_by=RECORDED_DESC)
    assert store.ids == [1, 2]

    await engine.set_online(False)
    await store.update(2, {"weight": 79})

    assert store.data == [
        {"id": 1, "weight": 80, "recorded_at": "2024-01-02"},
        {"id": 2, "weight": 79, "recorded_at": "2024-01-01"},
    ]
    pending = engine.pending()
    assert [(m.operation, m.target_id(), m.payload) for m in pending] == [("update", 2, {"id": 2, "weight": 79})]

    result = await engine.set_online(True)
    await settle()

    assert result.ok
    assert engine.pending() == []
    await store.fetch()
    assert store.data == [
        {"id": 1, "weight": 80, "recorded_at": "2024-01-02"},
        {"id": 2, "weight": 79, "recorded_at": "2024-01-01"},
    ]


async def test_offline_insert_round_trip(engine, backend):
    store = await engine.open_store("weight_logs", order_by=RECORDED_DESC)
    await engine.set_online(False)

    inserted = await store.insert({"weight": 78, "recorded_at": "2024-01-03"})
    local_id = inserted.data["id"]
    assert len(engine.queue) == 1
    assert local_id in store.ids

    result = await engine.set_online(True)
    await settle()

    assert result.ok
    assert len(engine.queue) == 0
    await store.fetch()
    matching = [r for r in store.data if r["weight"] == 78]
    assert len(matching) == 1
    assert matching[0]["id"] == 3
    assert local_id not in store.ids
    assert backend.calls[0] == ("insert", "weight_logs", {"weight": 78, "recorded_at": "2024-01-03"})


async def test_optimistic_record_is_confirmed_without_refetch(backend, kv_store):
    engine = SyncEngine(backend, kv_store, ConnectivityMonitor(), refetch_after_sync=False)
    store = await engine.open_store("weight_logs", order_by=RECORDED_DESC)
    await engine.set_online(False)
    local_id = (await store.insert({"weight": 78, "recorded_at": "2024-01-03"})).data["id"]

    await engine.set_online(True)
    await settle()

    assert store.ids == [3, 1, 2]
    assert not store.is_optimistic(local_id)


async def test_edits_to_optimistic_record_follow_server_id(engine, backend):
    store = await engine.open_store("weight_logs", order_by=RECORDED_DESC)
    await engine.set_online(False)
    local_id = (await store.insert({"weight": 78, "recorded_at": "2024-01-03"})).data["id"]
    await store.update(local_id, {"weight": 77})

    result = await engine.set_online(True)
    await settle()

    assert result.replayed == 2
    assert backend.calls[1] == ("update", "weight_logs", 3)
    assert store.get(3)["weight"] == 77


async def test_drain_calls_backend_in_arrival_order(engine, backend):
    store = await engine.open_store("weight_logs")
    await engine.set_online(False)

    await store.update(1, {"weight": 75})
    await store.remove(2)
    await store.insert({"weight": 90})

    await engine.set_online(True)

    assert [(c[0], c[2] if c[0] != "insert" else None) for c in backend.calls] == [
        ("update", 1), ("delete", 2), ("insert", None)]


async def test_failed_drain_keeps_queue_and_still_records_sync(engine, backend):
    store = await engine.open_store("weight_logs")
    await engine.set_online(False)
    await store.remove(1)
    backend.fail_next(TransientNetworkError("connection reset"))

    result = await engine.set_online(True)

    assert isinstance(result.error, TransientNetworkError)
    assert len(engine.queue) == 1
    assert engine.status.last_sync is not None
    assert not engine.status.is_syncing

    retry = await engine.trigger_sync()
    assert retry.ok
    assert len(engine.queue) == 0


async def test_timed_out_drain_keeps_entry_and_can_be_retried(engine, backend):
    store = await engine.open_store("weight_logs")
    await engine.set_online(False)
    await store.remove(1)
    gate = asyncio.Event()
    delete = backend.delete

    async def stalled_delete(resource, record_id):
        await gate.wait()
        return await delete(resource, record_id)

    backend.delete = stalled_delete
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(engine.set_online(True), timeout=0.05)

    assert not engine.status.is_syncing
    assert not engine.queue.is_draining
    assert len(engine.queue) == 1

    gate.set()
    retry = await engine.trigger_sync()
    assert retry.ok
    assert len(engine.queue) == 0


async def test_trigger_sync_offline_is_a_noop(engine, backend):
    store = await engine.open_store("weight_logs")
    await engine.set_online(False)
    await store.remove(1)

    assert await engine.trigger_sync() is None
    assert len(engine.queue) == 1
    assert backend.calls == []


async def test_queue_and_cache_survive_restart(kv_path):
    backend = RecordingBackend({"weight_logs": [{"id": 1, "weight": 80, "recorded_at": "2024-01-02"}]})
    first = SyncEngine(backend, KeyValueDatabase(kv_path), ConnectivityMonitor())
    store = await first.open_store("weight_logs")
    await first.set_online(False)
    await store.update(1, {"weight": 70})
    await first.aclose()

    backend.query_error = TransientNetworkError("offline")
    second = SyncEngine(backend, KeyValueDatabase(kv_path), ConnectivityMonitor(initial_online=False))
    restored = await second.open_store("weight_logs")

    assert restored.ids == [1]
    assert restored.data[0]["weight"] == 80
    assert isinstance(restored.error, TransientNetworkError)
    assert len(second.queue) == 1

    backend.query_error = None
    result = await second.set_online(True)
    assert result.ok
    assert restored.data[0]["weight"] == 70
    await second.aclose()


async def test_refetch_after_sync_refreshes_open_stores(engine, backend):
    store = await engine.open_store("weight_logs")
    await engine.set_online(False)
    backend.tables["weight_logs"].append({"id": 50, "weight": 60, "recorded_at": "2023-12-31"})

    await engine.set_online(True)

    assert 50 in store.ids


async def test_close_store_detaches_from_feed(engine, backend):
    store = await engine.open_store("weight_logs")
    assert backend.feed.subscriber_count("weight_logs") == 1

    engine.close_store(store)
    engine.close_store(store)
    await backend.insert("weight_logs", {"weight": 1})
    await settle()

    assert backend.feed.subscriber_count("weight_logs") == 0
    assert store.closed
    assert 3 not in store.ids
    assert engine.stores == []


async def test_live_updates_from_other_clients(engine, backend):
    store = await engine.open_store("weight_logs", order_by=RECORDED_DESC)

    await backend.insert("weight_logs", {"weight": 85, "recorded_at": "2024-02-01"})
    await settle()

    assert store.ids == [3, 1, 2]


async def test_start_watching_drives_connectivity(engine, monkeypatch):
    async def unreachable(host, port, timeout):
        return False

    monkeypatch.setattr("offline_sync.Sync.sync_engine.tcp_probe", unreachable)
    task = engine.start_watching(interval=0)
    assert engine.start_watching(interval=0) is task
    await settle()

    assert not engine.status.is_online
    await engine.aclose()
    assert task.done()


async def test_from_settings_builds_rest_backend_and_store(tmp_path):
    settings = {
        "database": {"kv_store_path": str(tmp_path / "engine.db")},
        "backend": {"base_url": "http://sync.local/", "rest_prefix": "/rest/v1", "api_key": "k", "timeout": 5},
        "sync": {"id_field": "uid", "offline_queue_key": "q", "cache_key_prefix": "c_", "refetch_after_sync": False,
                 "probe_host": "sync.local", "probe_port": 443},
    }

    engine = SyncEngine.from_settings(settings)

    assert isinstance(engine.backend, RestBackend)
    assert engine.backend.base_url == "http://sync.local"
    assert engine.backend.id_field == "uid"
    assert engine.queue.storage_key == "q"
    assert engine.cache_key_prefix == "c_"
    assert engine.refetch_after_sync is False
    assert engine.probe_settings["host"] == "sync.local"
    assert engine.probe_settings["port"] == 443
    assert engine.probe_settings["interval"] == 15.0
    assert (tmp_path / "engine.db").exists()
    await engine.aclose()


async def test_from_settings_accepts_injected_backend(tmp_path):
    backend = InMemoryBackend()
    engine = SyncEngine.from_settings({"database": {"kv_store_path": str(tmp_path / "e.db")}}, backend=backend)
    assert engine.backend is backend
    assert engine.refetch_after_sync is True
    await engine.aclose()

#
# End of test_sync_engine.py
########################################################################################################################
