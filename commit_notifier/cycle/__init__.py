"""Check cycles: coordination, configuration, and structured events."""

from .config import CycleConfig
from .coordinator import (
    CheckCycleCoordinator,
    CycleBusyError,
    CyclePhase,
    CycleResult,
    RepositoryFailure,
)
from .observability import (
    CycleEventLogger,
    CycleEventType,
    ErrorCategory,
    categorize_error,
)

__all__ = [
    "CheckCycleCoordinator",
    "CycleBusyError",
    "CycleConfig",
    "CycleEventLogger",
    "CycleEventType",
    "CyclePhase",
    "CycleResult",
    "ErrorCategory",
    "RepositoryFailure",
    "categorize_error",
]
