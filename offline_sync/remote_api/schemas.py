# offline_sync/remote_api/schemas.py
import time
import uuid
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

# Enum-like Literals shared by the queue, the change feed and the backends
Operation = Literal['insert', 'update', 'delete']

# Records are schema-less maps; only the identifier field is interpreted by the core.
Record = Dict[str, Any]


class QueryFilter(BaseModel):
    """Equality filter applied to queries and change-feed subscriptions."""
    column: str
    value: Any

    def matches(self, record: Optional[Record]) -> bool:
        if not record or self.column not in record:
            return False
        # Compare loosely so "42" from a URL filter matches 42 from a JSON body.
        return record[self.column] == self.value or str(record[self.column]) == str(self.value)


class OrderBy(BaseModel):
    column: str
    ascending: bool = False


class ChangeEvent(BaseModel):
    """A committed write pushed by the backend's change feed."""
    resource: str
    operation: Operation
    record: Optional[Record] = None  # new row for insert/update
    previous: Optional[Record] = None  # old row for delete

    def identifier(self, id_field: str = "id") -> Any:
        source = self.previous if self.operation == 'delete' else self.record
        if not source:
            source = self.record or self.previous or {}
        return source.get(id_field)


class PendingMutation(BaseModel):
    """A durable record of one mutation attempted while offline."""
    mutation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resource: str
    operation: Operation
    payload: Record
    # Identifier synthesized for the optimistic record of a queued insert. Never sent to the backend.
    local_id: Optional[Any] = None
    timestamp: float = Field(default_factory=time.time)

    def target_id(self, id_field: str = "id") -> Any:
        return self.payload.get(id_field)
