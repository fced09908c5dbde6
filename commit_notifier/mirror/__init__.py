"""Local git mirrors of tracked repositories."""

from .errors import MirrorError, MirrorErrorKind
from .git import GitRunner, classify_failure
from .mirror import (
    BranchHead,
    CommitInfo,
    MirrorConfig,
    MirrorHandle,
    RepositoryMirror,
)

__all__ = [
    "BranchHead",
    "CommitInfo",
    "GitRunner",
    "MirrorConfig",
    "MirrorError",
    "MirrorErrorKind",
    "MirrorHandle",
    "RepositoryMirror",
    "classify_failure",
]
