"""Cache-first synchronisation between the local store and the remote mailbox."""

from .coordinator import FetchCoordinator
from .engine import SyncEngine
from .mutator import MutationKind, OptimisticMutator, PendingMutation
from .reconciler import ViewState, load_more, page_size_for_height, reconcile
from .rwlock import RWLock
from .staleness import is_stale
from .state import AppState, StateSnapshot

__all__ = [
    "AppState",
    "FetchCoordinator",
    "MutationKind",
    "OptimisticMutator",
    "PendingMutation",
    "RWLock",
    "StateSnapshot",
    "SyncEngine",
    "ViewState",
    "is_stale",
    "load_more",
    "page_size_for_height",
    "reconcile",
]
