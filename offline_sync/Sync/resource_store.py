# resource_store.py
# Description: Per-resource local data store. Holds an ordered, deduplicated snapshot of records, applies
# mutations optimistically while offline and falls back to a cached snapshot when the network is gone.
#
# Imports
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Constants import CACHE_KEY_PREFIX, DEFAULT_ID_FIELD
from ..DB.KV_Store_DB import DatabaseError, KeyValueDatabase
from ..exceptions import PersistenceError, SyncError
from ..remote_api.base import RemoteBackend
from ..remote_api.schemas import OrderBy, QueryFilter, Record
from .connectivity import ConnectivityMonitor
from .mutation_queue import MutationQueue
#
#######################################################################################################################
#
# Functions:

@dataclass
class MutationResult:
    """Outcome of insert/update/remove. Failures are reported here, never raised."""
    data: Optional[Record] = None
    error: Optional[SyncError] = None
    queued: bool = False
    warning: Optional[PersistenceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class StoreState:
    data: List[Record] = field(default_factory=list)
    loading: bool = False
    error: Optional[SyncError] = None


StoreListener = Callable[["LocalResourceStore"], None]


class LocalResourceStore:
    def __init__(
        self,
        resource: str,
        backend: RemoteBackend,
        queue: MutationQueue,
        monitor: ConnectivityMonitor,
        kv_store: Optional[KeyValueDatabase] = None,
        filter: Optional[QueryFilter] = None,
        order_by: Optional[OrderBy] = None,
        id_field: str = DEFAULT_ID_FIELD,
        cache_key_prefix: str = CACHE_KEY_PREFIX,
    ):
        self.resource = resource
        self.backend = backend
        self.queue = queue
        self.monitor = monitor
        self.kv_store = kv_store
        self.filter = filter
        self.order_by = order_by
        self.id_field = id_field
        self.cache_key = f"{cache_key_prefix}{resource}"

        self.data: List[Record] = []
        self.loading = False
        self.error: Optional[SyncError] = None
        self.warning: Optional[PersistenceError] = None
        self._closed = False
        self._optimistic_ids: set = set()
        self._listeners: List[StoreListener] = []

    def __repr__(self) -> str:
        return f"<LocalResourceStore {self.resource!r} records={len(self.data)} closed={self._closed}>"

    # --- Status ---
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def ids(self) -> List[Any]:
        return [record.get(self.id_field) for record in self.data]

    def state(self) -> StoreState:
        return StoreState(data=[dict(r) for r in self.data], loading=self.loading, error=self.error)

    def get(self, record_id: Any) -> Optional[Record]:
        index = self._index_of(record_id)
        return self.data[index] if index is not None else None

    def is_optimistic(self, record_id: Any) -> bool:
        return record_id in self._optimistic_ids

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def close(self) -> None:
        """Stops all further snapshot mutation. In-flight calls still resolve, without touching the snapshot."""
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        logger.debug(f"Store for '{self.resource}' closed.")

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.opt(exception=e).error(f"Store listener for '{self.resource}' raised: {e}")

    # --- Cache ---
    def load_cached(self) -> Optional[List[Record]]:
        if self.kv_store is None:
            return None
        try:
            cached = self.kv_store.get_json(self.cache_key)
        except DatabaseError as e:
            logger.warning(f"Could not read cached snapshot for '{self.resource}': {e}")
            return None
        return cached if isinstance(cached, list) else None

    def _save_cache(self) -> None:
        if self.kv_store is None:
            return
        try:
            self.kv_store.set_json(self.cache_key, self.data)
        except DatabaseError as e:
            self.warning = PersistenceError(f"Failed to cache snapshot for '{self.resource}': {e}", cause=e)
            logger.warning(str(self.warning))

    # --- Fetch ---
    async def fetch(self) -> List[Record]:
        """
        Replaces the snapshot with the backend's full matching set.

        On failure while offline the cached snapshot (or an empty one) is shown; on failure
        while online the snapshot is left untouched. Either way the error is kept on `self.error`.
        """
        if self._closed:
            return self.data
        self.loading = True
        self._notify()
        try:
            records = await self.backend.query(self.resource, self.filter, self.order_by)
        except SyncError as e:
            if self._closed:
                return self.data
            self.error = e
            if not self.monitor.is_online:
                cached = self.load_cached()
                self.data = self._dedupe(cached or [])
                if cached is not None:
                    logger.warning(f"Fetch of '{self.resource}' failed while offline; showing {len(self.data)} cached record(s).")
                else:
                    logger.warning(f"Fetch of '{self.resource}' failed while offline and no cache exists: {e}")
            else:
                logger.error(f"Fetch of '{self.resource}' failed: {e}")
        else:
            if not self._closed:
                self.data = self._dedupe(records)
                self._optimistic_ids.clear()
                self.error = None
                self._save_cache()
                logger.debug(f"Fetched {len(self.data)} record(s) for '{self.resource}'.")
        finally:
            self.loading = False
        self._notify()
        return self.data

    refetch = fetch

    # --- Mutations ---
    async def insert(self, partial: Record) -> MutationResult:
        if not self.monitor.is_online:
            record = dict(partial)
            local_id = record.get(self.id_field)
            if local_id is None:
                local_id = str(uuid.uuid4())
                record[self.id_field] = local_id
            _, warning = self.queue.enqueue(self.resource, 'insert', dict(partial), local_id=local_id)
            if not self._closed:
                self._optimistic_ids.add(local_id)
                self.apply_insert(record)
            return MutationResult(data=record, queued=True, warning=warning)

        try:
            created = await self.backend.insert(self.resource, dict(partial))
        except SyncError as e:
            logger.error(f"Insert into '{self.resource}' failed: {e}")
            return MutationResult(error=e)
        self.apply_insert(created)
        return MutationResult(data=created)

    async def update(self, record_id: Any, partial: Record) -> MutationResult:
        changes = {k: v for k, v in partial.items() if k != self.id_field}
        if not self.monitor.is_online:
            _, warning = self.queue.enqueue(self.resource, 'update', {self.id_field: record_id, **changes})
            merged = None
            index = self._index_of(record_id)
            if index is not None and not self._closed:
                merged = {**self.data[index], **changes}
                self.data[index] = merged
                self._notify()
            return MutationResult(data=merged or dict(changes), queued=True, warning=warning)

        try:
            updated = await self.backend.update(self.resource, record_id, changes)
        except SyncError as e:
            logger.error(f"Update of '{self.resource}'/{record_id} failed: {e}")
            return MutationResult(error=e)
        self.apply_update(updated)
        return MutationResult(data=updated)

    async def remove(self, record_id: Any) -> MutationResult:
        if not self.monitor.is_online:
            _, warning = self.queue.enqueue(self.resource, 'delete', {self.id_field: record_id})
            self.apply_delete(record_id)
            return MutationResult(queued=True, warning=warning)

        try:
            await self.backend.delete(self.resource, record_id)
        except SyncError as e:
            logger.error(f"Delete of '{self.resource}'/{record_id} failed: {e}")
            return MutationResult(error=e)
        self.apply_delete(record_id)
        return MutationResult()

    # --- Snapshot primitives (also used by the change-feed merger) ---
    def apply_insert(self, record: Record) -> bool:
        """Places `record` unless a record with the same identifier is already present."""
        if self._closed:
            return False
        record_id = record.get(self.id_field)
        if self._index_of(record_id) is not None:
            return False
        self.data.insert(self._insert_position(record), dict(record))
        self._notify()
        return True

    def apply_update(self, record: Record) -> bool:
        """Replaces the record with the same identifier in place; absent identifiers are ignored."""
        if self._closed:
            return False
        index = self._index_of(record.get(self.id_field))
        if index is None:
            return False
        self.data[index] = dict(record)
        self._notify()
        return True

    def apply_delete(self, record_id: Any) -> bool:
        if self._closed:
            return False
        index = self._index_of(record_id)
        if index is None:
            return False
        del self.data[index]
        self._optimistic_ids.discard(record_id)
        self._notify()
        return True

    def confirm_optimistic(self, local_id: Any, record: Record) -> bool:
        """Swaps the optimistic record created for a queued insert with the server-confirmed one."""
        if self._closed or local_id not in self._optimistic_ids:
            return False
        self._optimistic_ids.discard(local_id)
        index = self._index_of(local_id)
        server_index = self._index_of(record.get(self.id_field))
        if index is None:
            return self.apply_insert(record)
        if server_index is not None and server_index != index:
            # The change feed delivered the confirmed row first.
            del self.data[index]
        else:
            self.data[index] = dict(record)
        self._notify()
        return True

    # --- Helpers ---
    def _index_of(self, record_id: Any) -> Optional[int]:
        if record_id is None:
            return None
        for index, record in enumerate(self.data):
            if record.get(self.id_field) == record_id:
                return index
        return None

    def _dedupe(self, records: List[Record]) -> List[Record]:
        seen = set()
        unique: List[Record] = []
        for record in records:
            record_id = record.get(self.id_field)
            if record_id is not None:
                key = repr(record_id)
                if key in seen:
                    continue
                seen.add(key)
            unique.append(dict(record))
        return unique

    def _insert_position(self, record: Record) -> int:
        """Index that keeps the configured ordering; ties and unordered snapshots go to the front."""
        if self.order_by is None:
            return 0
        column = self.order_by.column
        value = record.get(column)
        if value is None:
            return 0
        for index, existing in enumerate(self.data):
            other = existing.get(column)
            if other is None:
                return index
            try:
                sorts_before = other < value if self.order_by.ascending else other > value
            except TypeError:
                return 0
            if not sorts_before:
                return index
        return len(self.data)

#
# End of resource_store.py
#######################################################################################################################
