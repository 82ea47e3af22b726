# offline_sync/remote_api/__init__.py
from .base import ChangeHandler, RemoteBackend, Unsubscribe
from .client import RestBackend
from .feed import ChangeFeedHub
from .memory import InMemoryBackend, sort_records
from .schemas import ChangeEvent, Operation, OrderBy, PendingMutation, QueryFilter, Record

__all__ = [
    "RemoteBackend", "ChangeHandler", "Unsubscribe",
    "RestBackend", "InMemoryBackend", "ChangeFeedHub", "sort_records",
    "ChangeEvent", "Operation", "OrderBy", "PendingMutation", "QueryFilter", "Record",
]
