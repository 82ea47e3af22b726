# sync_engine.py
# Description: Process-wide sync context. Wires the backend, durable store, connectivity monitor,
# offline mutation queue and change-feed merger, and hands out per-resource stores.
#
# Imports
import asyncio
from typing import Any, Dict, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import (CACHE_KEY_PREFIX, DEFAULT_ID_FIELD, DEFAULT_PROBE_HOST, DEFAULT_PROBE_INTERVAL_SECONDS,
                         DEFAULT_PROBE_PORT, DEFAULT_PROBE_TIMEOUT_SECONDS, OFFLINE_QUEUE_KEY)
from ..DB.KV_Store_DB import DatabaseError, KeyValueDatabase
from ..remote_api.base import RemoteBackend
from ..remote_api.client import RestBackend
from ..remote_api.schemas import OrderBy, PendingMutation, QueryFilter, Record
from .change_feed import ChangeFeedMerger, Subscription
from .connectivity import ConnectivityMonitor, ConnectivityState, tcp_probe
from .mutation_queue import DrainResult, MutationQueue
from .resource_store import LocalResourceStore
#
#######################################################################################################################
#
# Functions:

class SyncEngine:
    """
    Created once by the application and passed to every consumer.

    There is no teardown beyond `aclose()`; the engine is expected to live for the whole process.
    """

    def __init__(
        self,
        backend: RemoteBackend,
        kv_store: Optional[KeyValueDatabase] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        *,
        id_field: str = DEFAULT_ID_FIELD,
        queue_key: str = OFFLINE_QUEUE_KEY,
        cache_key_prefix: str = CACHE_KEY_PREFIX,
        refetch_after_sync: bool = True,
    ):
        self.backend = backend
        self.kv_store = kv_store
        self.monitor = monitor or ConnectivityMonitor()
        self.id_field = id_field
        self.cache_key_prefix = cache_key_prefix
        self.refetch_after_sync = refetch_after_sync
        self.queue = MutationQueue(kv_store, backend, storage_key=queue_key, id_field=id_field)
        self.merger = ChangeFeedMerger(backend)
        self._subscriptions: Dict[int, Subscription] = {}
        self._stores: List[LocalResourceStore] = []
        self._watch_task: Optional[asyncio.Task] = None
        self.probe_settings: Dict[str, Any] = {
            "host": DEFAULT_PROBE_HOST,
            "port": DEFAULT_PROBE_PORT,
            "interval": DEFAULT_PROBE_INTERVAL_SECONDS,
            "timeout": DEFAULT_PROBE_TIMEOUT_SECONDS,
        }

        self.monitor.set_drain_callback(self._drain_and_refresh)
        self.queue.add_replay_listener(self._on_replayed)
        logger.info(f"SyncEngine initialized ({len(self.queue)} pending offline mutation(s)).")

    @classmethod
    def from_settings(cls, settings: Dict[str, Any], backend: Optional[RemoteBackend] = None,
                      kv_store: Optional[KeyValueDatabase] = None) -> "SyncEngine":
        from ..config import get_kv_store_path

        sync_section = settings.get("sync", {})
        backend_section = settings.get("backend", {})
        id_field = sync_section.get("id_field", DEFAULT_ID_FIELD)
        if backend is None:
            backend = RestBackend(
                base_url=backend_section.get("base_url", "http://127.0.0.1:54321"),
                api_key=backend_section.get("api_key") or None,
                rest_prefix=backend_section.get("rest_prefix", "/rest/v1"),
                timeout=float(backend_section.get("timeout", 30.0)),
                id_field=id_field,
            )
        if kv_store is None:
            try:
                kv_store = KeyValueDatabase(get_kv_store_path(settings))
            except DatabaseError as e:
                logger.warning(f"Durable store unavailable, running in memory only: {e}")
                kv_store = None
        engine = cls(
            backend,
            kv_store,
            id_field=id_field,
            queue_key=sync_section.get("offline_queue_key", OFFLINE_QUEUE_KEY),
            cache_key_prefix=sync_section.get("cache_key_prefix", CACHE_KEY_PREFIX),
            refetch_after_sync=bool(sync_section.get("refetch_after_sync", True)),
        )
        engine.probe_settings.update({
            "host": sync_section.get("probe_host", DEFAULT_PROBE_HOST),
            "port": int(sync_section.get("probe_port", DEFAULT_PROBE_PORT)),
            "interval": float(sync_section.get("probe_interval_seconds", DEFAULT_PROBE_INTERVAL_SECONDS)),
            "timeout": float(sync_section.get("probe_timeout_seconds", DEFAULT_PROBE_TIMEOUT_SECONDS)),
        })
        return engine

    # --- Status ---
    @property
    def status(self) -> ConnectivityState:
        return self.monitor.state

    @property
    def stores(self) -> List[LocalResourceStore]:
        return list(self._stores)

    def pending(self, resource: Optional[str] = None) -> List[PendingMutation]:
        return self.queue.pending(resource)

    # --- Stores ---
    async def open_store(self, resource: str, filter: Optional[QueryFilter] = None,
                         order_by: Optional[OrderBy] = None, *, fetch: bool = True) -> LocalResourceStore:
        store = LocalResourceStore(
            resource, self.backend, self.queue, self.monitor, self.kv_store,
            filter=filter, order_by=order_by, id_field=self.id_field, cache_key_prefix=self.cache_key_prefix,
        )
        self._stores.append(store)
        if fetch:
            await store.fetch()
        self._subscriptions[id(store)] = self.merger.attach(store)
        return store

    def close_store(self, store: LocalResourceStore) -> None:
        subscription = self._subscriptions.pop(id(store), None)
        if subscription is not None:
            subscription.unsubscribe()
        store.close()
        if store in self._stores:
            self._stores.remove(store)

    def subscription_for(self, store: LocalResourceStore) -> Optional[Subscription]:
        return self._subscriptions.get(id(store))

    # --- Sync ---
    async def set_online(self, online: bool) -> Optional[DrainResult]:
        return await self.monitor.set_online(online)

    async def trigger_sync(self) -> Optional[DrainResult]:
        """Drains the queue now. No-op while offline or while a drain is running."""
        return await self.monitor.sync()

    async def _drain_and_refresh(self) -> DrainResult:
        result = await self.queue.drain()
        if self.refetch_after_sync and not result.skipped and self._stores:
            await asyncio.gather(*(store.fetch() for store in list(self._stores)))
        return result

    def _on_replayed(self, mutation: PendingMutation, record: Optional[Record]) -> None:
        if mutation.operation != 'insert' or mutation.local_id is None or not record:
            return
        for store in self._stores:
            if store.resource == mutation.resource:
                store.confirm_optimistic(mutation.local_id, record)

    def start_watching(self, host: Optional[str] = None, port: Optional[int] = None,
                       interval: Optional[float] = None, timeout: Optional[float] = None) -> asyncio.Task:
        """
        Starts a background task probing host:port and feeding the connectivity monitor.
        Unset arguments come from `self.probe_settings` (the `[sync] probe_*` config values).
        """
        if self._watch_task is None or self._watch_task.done():
            host = host or self.probe_settings["host"]
            port = port or self.probe_settings["port"]
            interval = self.probe_settings["interval"] if interval is None else interval
            timeout = self.probe_settings["timeout"] if timeout is None else timeout
            self._watch_task = asyncio.create_task(
                self.monitor.watch(lambda: tcp_probe(host, port, timeout), interval),
                name="ConnectivityWatcher",
            )
        return self._watch_task

    async def aclose(self) -> None:
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
        self._watch_task = None
        for store in list(self._stores):
            self.close_store(store)
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()
        if self.kv_store is not None:
            self.kv_store.close_connection()

#
# End of sync_engine.py
#######################################################################################################################
