"""Durable last-seen branch state and merge-status cache."""

from .errors import StoreError, StoreErrorKind
from .storage import (
    Base,
    BranchStateRecord,
    MergeStatusRecord,
    RepositoryStateRecord,
    init_state_storage,
)
from .store import (
    BranchState,
    BranchUpdate,
    MergeState,
    MergeStatusEntry,
    RepositoryState,
    StateStore,
)

__all__ = [
    "Base",
    "BranchState",
    "BranchStateRecord",
    "BranchUpdate",
    "MergeState",
    "MergeStatusEntry",
    "MergeStatusRecord",
    "RepositoryState",
    "RepositoryStateRecord",
    "StateStore",
    "StoreError",
    "StoreErrorKind",
    "init_state_storage",
]
