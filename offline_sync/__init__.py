# offline_sync/__init__.py
from .exceptions import AuthenticationError, PersistenceError, RemoteRejection, SyncError, TransientNetworkError
from .live_data import LiveDataHub
from .remote_api import ChangeEvent, InMemoryBackend, OrderBy, PendingMutation, QueryFilter, RemoteBackend, RestBackend
from .Sync import (ConnectivityMonitor, ConnectivityState, DrainResult, LocalResourceStore, MutationQueue,
                   MutationResult, SyncEngine)

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError", "PersistenceError", "RemoteRejection", "SyncError", "TransientNetworkError",
    "LiveDataHub",
    "ChangeEvent", "InMemoryBackend", "OrderBy", "PendingMutation", "QueryFilter", "RemoteBackend", "RestBackend",
    "ConnectivityMonitor", "ConnectivityState", "DrainResult", "LocalResourceStore", "MutationQueue",
    "MutationResult", "SyncEngine",
]
