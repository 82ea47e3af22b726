from .change_feed import ChangeFeedMerger, Subscription, merge_event
from .connectivity import ConnectivityMonitor, ConnectivityState, tcp_probe
from .mutation_queue import DrainResult, MutationQueue
from .resource_store import LocalResourceStore, MutationResult, StoreState
from .sync_engine import SyncEngine

__all__ = [
    "ChangeFeedMerger",
    "ConnectivityMonitor",
    "ConnectivityState",
    "DrainResult",
    "LocalResourceStore",
    "MutationQueue",
    "MutationResult",
    "StoreState",
    "Subscription",
    "SyncEngine",
    "merge_event",
    "tcp_probe",
]
