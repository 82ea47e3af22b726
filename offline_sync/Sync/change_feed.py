# change_feed.py
# Description: Folds live insert/update/delete events from the backend's change feed into local resource stores.
#
# Imports
from typing import Callable, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..remote_api.base import RemoteBackend
from ..remote_api.schemas import ChangeEvent
from .resource_store import LocalResourceStore
#
#######################################################################################################################
#
# Functions:

EventHandler = Callable[[ChangeEvent], None]


def merge_event(store: LocalResourceStore, event: ChangeEvent) -> bool:
    """
    Applies one change-feed event to `store`. Returns True if the snapshot changed.

    - insert: placed unless the identifier is already present (or the row falls outside the store's filter)
    - update: replaces the matching record; unknown identifiers are ignored
    - delete: removes the matching record if present
    """
    if event.resource != store.resource:
        return False
    if event.operation == 'insert':
        if not event.record:
            return False
        if store.filter is not None and not store.filter.matches(event.record):
            return False
        return store.apply_insert(event.record)
    if event.operation == 'update':
        if not event.record:
            return False
        return store.apply_update(event.record)
    return store.apply_delete(event.identifier(store.id_field))


class Subscription:
    """
    Handle for one store's change-feed attachment. `unsubscribe()` is idempotent.

    `subscribe` is called once with the handler and must return the callable that releases the channel.
    """

    def __init__(self, store: LocalResourceStore, subscribe: Callable[[EventHandler], Callable[[], None]]):
        self.store = store
        self._active = True
        self._release: Optional[Callable[[], None]] = subscribe(self.handle)

    @property
    def active(self) -> bool:
        return self._active

    def handle(self, event: ChangeEvent) -> None:
        if not self._active or self.store.closed:
            return
        changed = merge_event(self.store, event)
        logger.debug(f"Change feed {event.operation} on '{event.resource}' "
                     f"(id={event.identifier(self.store.id_field)}) -> {'merged' if changed else 'ignored'}")

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        if release is not None:
            try:
                release()
            except Exception as e:
                logger.opt(exception=e).warning(f"Releasing change feed for '{self.store.resource}' raised: {e}")
        logger.debug(f"Unsubscribed '{self.store.resource}' from the change feed.")


class ChangeFeedMerger:
    def __init__(self, backend: RemoteBackend):
        self.backend = backend

    def attach(self, store: LocalResourceStore) -> Subscription:
        subscription = Subscription(
            store, lambda handler: self.backend.subscribe(store.resource, handler, store.filter))
        logger.debug(f"Attached '{store.resource}' to the change feed.")
        return subscription

#
# End of change_feed.py
#######################################################################################################################
