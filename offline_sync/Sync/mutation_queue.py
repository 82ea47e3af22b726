# mutation_queue.py
# Description: Durable FIFO of mutations made while offline, replayed against the remote backend on reconnect.
#
# Imports
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple
#
# Third-Party Imports
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from ..Constants import DEFAULT_ID_FIELD, OFFLINE_QUEUE_KEY
from ..DB.KV_Store_DB import DatabaseError, KeyValueDatabase
from ..exceptions import PersistenceError, SyncError
from ..remote_api.base import RemoteBackend
from ..remote_api.schemas import Operation, PendingMutation, Record
#
#######################################################################################################################
#
# Functions:

ReplayListener = Callable[[PendingMutation, Optional[Record]], None]


@dataclass
class DrainResult:
    replayed: int = 0
    remaining: int = 0
    error: Optional[SyncError] = None
    failed_mutation: Optional[PendingMutation] = None
    skipped: bool = False  # another drain was already running

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


class MutationQueue:
    """
    Ordered queue of `PendingMutation`s persisted under one key of the KV store.

    Entries replay in global arrival order. An entry is removed only after the backend
    confirms it; the first failure halts the drain and leaves that entry at the head.
    Nothing is deduplicated or compacted.
    """

    def __init__(self, kv_store: Optional[KeyValueDatabase], backend: RemoteBackend,
                 storage_key: str = OFFLINE_QUEUE_KEY, id_field: str = DEFAULT_ID_FIELD):
        self.kv_store = kv_store
        self.backend = backend
        self.storage_key = storage_key
        self.id_field = id_field
        self.degraded = kv_store is None
        # False when there is no store, or its stored queue could not be read and must not be overwritten.
        self._writable = kv_store is not None
        self._entries: List[PendingMutation] = []
        self._draining = False
        self._replay_listeners: List[ReplayListener] = []
        self._load()

    # --- Persistence ---
    def _load(self) -> None:
        if self.kv_store is None:
            return
        try:
            raw_entries = self.kv_store.get_json(self.storage_key, default=[])
        except DatabaseError as e:
            logger.warning(f"Could not read offline queue '{self.storage_key}': {e}. Continuing in memory only.")
            self.degraded = True
            self._writable = False
            return
        if not isinstance(raw_entries, list):
            logger.warning(f"Offline queue '{self.storage_key}' is not a list; ignoring stored value.")
            return
        for raw in raw_entries:
            try:
                self._entries.append(PendingMutation.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping corrupt offline queue entry {raw!r}: {e}")
        if self._entries:
            logger.info(f"Loaded {len(self._entries)} pending offline mutation(s) from durable storage.")

    def _persist(self) -> Optional[PersistenceError]:
        """
        Writes the whole in-memory queue. Every change is written, even after an earlier
        failure, so the durable copy never keeps entries that have already been replayed.
        """
        if not self._writable:
            return PersistenceError("Offline queue is running in memory only for this session.")
        try:
            self.kv_store.set_json(self.storage_key, [m.model_dump(mode="json") for m in self._entries])
        except DatabaseError as e:
            self.degraded = True
            logger.warning(f"Failed to persist offline queue, continuing in memory: {e}")
            return PersistenceError(f"Failed to persist offline queue: {e}", cause=e)
        if self.degraded:
            logger.info(f"Offline queue '{self.storage_key}' persisted again ({len(self._entries)} entries).")
            self.degraded = False
        return None

    # --- Public API ---
    def __len__(self) -> int:
        return len(self._entries)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def pending(self, resource: Optional[str] = None) -> List[PendingMutation]:
        if resource is None:
            return list(self._entries)
        return [m for m in self._entries if m.resource == resource]

    def add_replay_listener(self, listener: ReplayListener) -> Callable[[], None]:
        self._replay_listeners.append(listener)

        def remove() -> None:
            if listener in self._replay_listeners:
                self._replay_listeners.remove(listener)

        return remove

    def enqueue(self, resource: str, operation: Operation, payload: Record,
                local_id: Any = None) -> Tuple[PendingMutation, Optional[PersistenceError]]:
        """
        Appends a mutation. Never raises: if durable storage fails the mutation is kept
        in memory for this session and the failure is returned as a warning.
        """
        mutation = PendingMutation(resource=resource, operation=operation, payload=dict(payload), local_id=local_id)
        self._entries.append(mutation)
        warning = self._persist()
        logger.info(f"Queued offline {operation} on '{resource}' (queue length {len(self._entries)}).")
        return mutation, warning

    def discard(self, mutation_id: str) -> bool:
        for index, mutation in enumerate(self._entries):
            if mutation.mutation_id == mutation_id:
                del self._entries[index]
                self._persist()
                logger.warning(f"Discarded pending {mutation.operation} on '{mutation.resource}' ({mutation_id}).")
                return True
        return False

    async def drain(self) -> DrainResult:
        """Replays queued mutations in arrival order until the queue is empty or one fails."""
        if self._draining:
            logger.debug("Drain already in progress; skipping.")
            return DrainResult(remaining=len(self._entries), skipped=True)
        if not self._entries:
            return DrainResult()

        self._draining = True
        result = DrainResult()
        logger.info(f"Draining {len(self._entries)} offline mutation(s)...")
        try:
            while self._entries:
                mutation = self._entries[0]
                try:
                    record = await self._replay(mutation)
                except SyncError as e:
                    result.error = e
                    result.failed_mutation = mutation
                    break
                except Exception as e:
                    logger.opt(exception=e).error(f"Unexpected error replaying {mutation.mutation_id}: {e}")
                    result.error = SyncError(f"Unexpected replay failure: {e}", cause=e)
                    result.failed_mutation = mutation
                    break

                self._entries.pop(0)
                if mutation.operation == 'insert' and mutation.local_id is not None and record:
                    self._remap_local_id(mutation.resource, mutation.local_id, record.get(self.id_field))
                self._persist()
                result.replayed += 1
                self._notify_replayed(mutation, record)
        finally:
            self._draining = False

        result.remaining = len(self._entries)
        if result.error is not None:
            logger.error(f"Drain halted after {result.replayed} replay(s); {result.remaining} remain queued. "
                         f"Failed {result.failed_mutation.operation} on '{result.failed_mutation.resource}': {result.error}")
        else:
            logger.info(f"Drain complete: {result.replayed} mutation(s) replayed.")
        return result

    # --- Internals ---
    async def _replay(self, mutation: PendingMutation) -> Optional[Record]:
        payload = dict(mutation.payload)
        if mutation.operation == 'insert':
            return await self.backend.insert(mutation.resource, payload)
        record_id = payload.get(self.id_field)
        if mutation.operation == 'update':
            changes = {k: v for k, v in payload.items() if k != self.id_field}
            return await self.backend.update(mutation.resource, record_id, changes)
        await self.backend.delete(mutation.resource, record_id)
        return None

    def _remap_local_id(self, resource: str, local_id: Any, server_id: Any) -> None:
        """Points later queued mutations for an optimistic record at its server identifier."""
        if server_id is None:
            return
        remapped = 0
        for mutation in self._entries:
            if mutation.resource == resource and mutation.payload.get(self.id_field) == local_id:
                mutation.payload[self.id_field] = server_id
                remapped += 1
        if remapped:
            logger.debug(f"Remapped {remapped} queued mutation(s) from local id {local_id} to {server_id}.")

    def _notify_replayed(self, mutation: PendingMutation, record: Optional[Record]) -> None:
        for listener in list(self._replay_listeners):
            try:
                listener(mutation, record)
            except Exception as e:
                logger.opt(exception=e).error(f"Replay listener raised: {e}")

#
# End of mutation_queue.py
#######################################################################################################################
