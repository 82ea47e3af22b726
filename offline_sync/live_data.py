# live_data.py
# Description: Owner-scoped bundle of resource stores, opened together and kept live through one SyncEngine.
#
# Imports
import asyncio
from typing import Any, Dict, Mapping, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .remote_api.schemas import OrderBy, QueryFilter
from .Sync.resource_store import LocalResourceStore
from .Sync.sync_engine import SyncEngine
#
#######################################################################################################################
#
# Functions:

class LiveDataHub:
    """
    Opens one store per configured resource, each filtered to `owner_column == owner_id`.

    `resources` maps a resource name to its ordering (or None for event order).
    Switching owner closes every store and opens a fresh set.
    """

    def __init__(self, engine: SyncEngine, resources: Mapping[str, Optional[OrderBy]],
                 owner_column: str = "user_id"):
        self.engine = engine
        self.resources = dict(resources)
        self.owner_column = owner_column
        self.owner_id: Any = None
        self._stores: Dict[str, LocalResourceStore] = {}
        self._loading = False

    @property
    def stores(self) -> Dict[str, LocalResourceStore]:
        return dict(self._stores)

    @property
    def is_loading(self) -> bool:
        return self._loading or any(store.loading for store in self._stores.values())

    def __getitem__(self, resource: str) -> LocalResourceStore:
        return self._stores[resource]

    async def set_owner(self, owner_id: Any) -> None:
        if owner_id == self.owner_id and self._stores:
            return
        self.close()
        self.owner_id = owner_id
        if owner_id is None:
            return

        owner_filter = QueryFilter(column=self.owner_column, value=owner_id)
        self._loading = True
        try:
            opened = await asyncio.gather(*(
                self.engine.open_store(resource, filter=owner_filter, order_by=order_by)
                for resource, order_by in self.resources.items()
            ))
        finally:
            self._loading = False
        self._stores = dict(zip(self.resources, opened))
        logger.info(f"Live data opened {len(self._stores)} resource(s) for {self.owner_column}={owner_id}.")

    async def refetch(self) -> None:
        if not self._stores:
            return
        self._loading = True
        try:
            await asyncio.gather(*(store.fetch() for store in self._stores.values()))
        finally:
            self._loading = False

    def close(self) -> None:
        for store in self._stores.values():
            self.engine.close_store(store)
        self._stores = {}

#
# End of live_data.py
#######################################################################################################################
