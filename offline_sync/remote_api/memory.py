# offline_sync/remote_api/memory.py
# Description: A complete in-process backend. Assigns integer identifiers, honours filters and ordering,
# and publishes every committed write to its change feed.
#
# Imports
import copy
import itertools
from typing import Any, Dict, List, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from ..exceptions import RemoteRejection
from .base import ChangeHandler, Unsubscribe
from .feed import ChangeFeedHub
from .schemas import ChangeEvent, OrderBy, QueryFilter, Record
#
#######################################################################################################################
#
# Functions:

def sort_records(records: List[Record], order_by: Optional[OrderBy]) -> List[Record]:
    """Stable sort on `order_by.column`; records missing the column sort last."""
    if order_by is None:
        return list(records)
    present = [r for r in records if r.get(order_by.column) is not None]
    missing = [r for r in records if r.get(order_by.column) is None]
    present.sort(key=lambda r: r[order_by.column], reverse=not order_by.ascending)
    return present + missing


class InMemoryBackend:
    def __init__(self, tables: Optional[Dict[str, List[Record]]] = None, id_field: str = "id"):
        self.id_field = id_field
        self.tables: Dict[str, List[Record]] = {}
        self.feed = ChangeFeedHub()
        highest = 0
        for resource, rows in (tables or {}).items():
            self.tables[resource] = [dict(row) for row in rows]
            for row in rows:
                if isinstance(row.get(id_field), int):
                    highest = max(highest, row[id_field])
        self._next_id = itertools.count(highest + 1)

    def _table(self, resource: str) -> List[Record]:
        return self.tables.setdefault(resource, [])

    def _find(self, resource: str, record_id: Any) -> Optional[int]:
        for index, row in enumerate(self._table(resource)):
            if row.get(self.id_field) == record_id:
                return index
        return None

    async def query(self, resource: str, filter: Optional[QueryFilter] = None,
                    order_by: Optional[OrderBy] = None) -> List[Record]:
        rows = self._table(resource)
        if filter is not None:
            rows = [row for row in rows if filter.matches(row)]
        return copy.deepcopy(sort_records(rows, order_by))

    async def insert(self, resource: str, payload: Record) -> Record:
        row = dict(payload)
        if row.get(self.id_field) is None:
            row[self.id_field] = next(self._next_id)
        elif self._find(resource, row[self.id_field]) is not None:
            raise RemoteRejection(409, f"duplicate key value {row[self.id_field]!r} in '{resource}'")
        self._table(resource).append(row)
        logger.debug(f"InMemoryBackend: inserted {resource}/{row[self.id_field]}")
        self.feed.publish(ChangeEvent(resource=resource, operation='insert', record=copy.deepcopy(row)))
        return copy.deepcopy(row)

    async def update(self, resource: str, record_id: Any, payload: Record) -> Record:
        index = self._find(resource, record_id)
        if index is None:
            raise RemoteRejection(404, f"No row {record_id!r} in '{resource}'")
        row = self._table(resource)[index]
        row.update({k: v for k, v in payload.items() if k != self.id_field})
        self.feed.publish(ChangeEvent(resource=resource, operation='update', record=copy.deepcopy(row)))
        return copy.deepcopy(row)

    async def delete(self, resource: str, record_id: Any) -> None:
        index = self._find(resource, record_id)
        if index is None:
            # Deleting an absent row is not an error for a REST delete filtered on id.
            return
        row = self._table(resource).pop(index)
        self.feed.publish(ChangeEvent(resource=resource, operation='delete', previous=copy.deepcopy(row)))

    def subscribe(self, resource: str, handler: ChangeHandler,
                  filter: Optional[QueryFilter] = None) -> Unsubscribe:
        return self.feed.subscribe(resource, handler, filter)

#
# End of offline_sync/remote_api/memory.py
########################################################################################################################
