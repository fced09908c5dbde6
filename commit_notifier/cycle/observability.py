"""Structured observability events for check cycles.

Events are emitted through femtologging as ``[<event>] key=value`` records
so that log aggregators can parse them.

Usage
-----
>>> event_logger = CycleEventLogger()
>>> event_logger.log_cycle_started(repositories=3)

"""

from __future__ import annotations

import enum
import typing as typ

from commit_notifier.logging import get_logger, log_error, log_info, log_warning
from commit_notifier.mirror.errors import MirrorError, MirrorErrorKind
from commit_notifier.notify.errors import DispatchError
from commit_notifier.state.errors import StoreError, StoreErrorKind

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)


class CycleEventType(enum.StrEnum):
    """Structured log event types for check cycles."""

    CYCLE_STARTED = "cycle.started"
    CYCLE_COMPLETED = "cycle.completed"
    CYCLE_SKIPPED = "cycle.skipped"
    REPOSITORY_SYNCED = "repository.synced"
    REPOSITORY_FAILED = "repository.failed"
    REPOSITORY_BASELINED = "repository.baselined"
    BRANCH_TRUNCATED = "branch.truncated"
    BRANCH_REWRITTEN = "branch.rewritten"
    DISPATCH_FAILED = "dispatch.failed"
    SETTINGS_RELOAD_FAILED = "settings.reload_failed"
    REPOSITORY_REMOVED = "repository.removed"
    PULL_REQUEST_RESOLVED = "pull_request.resolved"


class ErrorCategory(enum.StrEnum):
    """Categories for per-repository failure classification."""

    TRANSIENT = "transient"
    AUTH_REQUIRED = "auth_required"
    CORRUPT_CLONE = "corrupt_clone"
    STORE_IO = "store_io"
    STORE_CORRUPTION = "store_corruption"
    DISPATCH = "dispatch"
    UNKNOWN = "unknown"


_MIRROR_CATEGORIES = {
    MirrorErrorKind.NETWORK: ErrorCategory.TRANSIENT,
    MirrorErrorKind.AUTH_REQUIRED: ErrorCategory.AUTH_REQUIRED,
    MirrorErrorKind.CORRUPT_CLONE: ErrorCategory.CORRUPT_CLONE,
}
_STORE_CATEGORIES = {
    StoreErrorKind.IO_FAILURE: ErrorCategory.STORE_IO,
    StoreErrorKind.CORRUPTION: ErrorCategory.STORE_CORRUPTION,
}


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes.

    Examples
    --------
    >>> categorize_error(MirrorError.network("nixpkgs", "timed out"))
    <ErrorCategory.TRANSIENT: 'transient'>

    """
    if isinstance(exc, MirrorError):
        return _MIRROR_CATEGORIES[exc.kind]
    if isinstance(exc, StoreError):
        return _STORE_CATEGORIES[exc.kind]
    if isinstance(exc, DispatchError):
        return ErrorCategory.DISPATCH
    return ErrorCategory.UNKNOWN


class CycleEventLogger:
    """Emit structured check cycle events via femtologging."""

    def log_cycle_started(self, *, repositories: int) -> None:
        """Log the start of a cycle over ``repositories`` repositories."""
        log_info(
            logger,
            "[%s] repositories=%d",
            CycleEventType.CYCLE_STARTED,
            repositories,
        )

    def log_cycle_completed(
        self,
        *,
        processed: int,
        failed: int,
        notifications: int,
        duration: dt.timedelta,
    ) -> None:
        """Log cycle completion with per-cycle counters.

        Parameters
        ----------
        processed
            Repositories whose state was committed.
        failed
            Repositories skipped because of an error.
        notifications
            Events handed to the notification sink.
        duration
            Wall-clock duration of the cycle.

        """
        log_info(
            logger,
            "[%s] processed=%d failed=%d notifications=%d duration_seconds=%.3f",
            CycleEventType.CYCLE_COMPLETED,
            processed,
            failed,
            notifications,
            duration.total_seconds(),
        )

    def log_cycle_skipped(self) -> None:
        """Log a cycle dropped because another one is still running."""
        log_warning(
            logger,
            "[%s] reason=cycle_in_progress",
            CycleEventType.CYCLE_SKIPPED,
        )

    def log_repository_synced(
        self, *, repository: str, branches: int, observations: int
    ) -> None:
        """Log a successful sync and diff of one repository."""
        log_info(
            logger,
            "[%s] repository=%s branches=%d observations=%d",
            CycleEventType.REPOSITORY_SYNCED,
            repository,
            branches,
            observations,
        )

    def log_repository_baselined(self, *, repository: str, branches: int) -> None:
        """Log the silent baseline of a repository."""
        log_info(
            logger,
            "[%s] repository=%s branches=%d",
            CycleEventType.REPOSITORY_BASELINED,
            repository,
            branches,
        )

    def log_repository_failed(
        self, *, repository: str, error: BaseException
    ) -> ErrorCategory:
        """Log a per-repository failure and return its category.

        Store corruption carries the remediation command in the record.
        """
        category = categorize_error(error)
        template = (
            "[%s] repository=%s category=%s error_type=%s error_message=%s"
        )
        args: list[object] = [
            CycleEventType.REPOSITORY_FAILED,
            repository,
            category,
            type(error).__name__,
            str(error),
        ]
        if category is ErrorCategory.STORE_CORRUPTION:
            template = f"{template} remediation=%s"
            args.append(f"commit-notifier rebaseline {repository}")
        log_error(logger, template, *args)
        return category

    def log_branch_truncated(
        self, *, repository: str, branch: str, kept: int
    ) -> None:
        """Log that older new commits on ``branch`` were dropped."""
        log_warning(
            logger,
            "[%s] repository=%s branch=%s kept=%d",
            CycleEventType.BRANCH_TRUNCATED,
            repository,
            branch,
            kept,
        )

    def log_branch_rewritten(
        self,
        *,
        repository: str,
        branch: str,
        previous: str,
        current: str,
        rebaselined: bool,
    ) -> None:
        """Log a branch whose previous head is not an ancestor of the new one."""
        log_warning(
            logger,
            "[%s] repository=%s branch=%s previous=%s current=%s rebaselined=%s",
            CycleEventType.BRANCH_REWRITTEN,
            repository,
            branch,
            previous,
            current,
            rebaselined,
        )

    def log_dispatch_failed(
        self, *, repository: str, condition: str, error: BaseException | str
    ) -> None:
        """Log a delivery failure; the cycle still commits."""
        log_warning(
            logger,
            "[%s] repository=%s condition=%s error=%s",
            CycleEventType.DISPATCH_FAILED,
            repository,
            condition,
            error,
        )

    def log_settings_reload_failed(self, *, error: BaseException) -> None:
        """Log settings that failed to reload; the last good ones stay in use."""
        log_error(
            logger,
            "[%s] error_type=%s error_message=%s",
            CycleEventType.SETTINGS_RELOAD_FAILED,
            type(error).__name__,
            error,
        )

    def log_repository_removed(self, *, repository: str, branches: int) -> None:
        """Log a repository purged from settings, mirror and state."""
        log_info(
            logger,
            "[%s] repository=%s branches=%d",
            CycleEventType.REPOSITORY_REMOVED,
            repository,
            branches,
        )

    def log_pull_request_resolved(
        self, *, repository: str, identifier: str, state: str, watchers: int
    ) -> None:
        """Log a watched pull request reaching a terminal state."""
        log_info(
            logger,
            "[%s] repository=%s identifier=%s state=%s watchers=%d",
            CycleEventType.PULL_REQUEST_RESOLVED,
            repository,
            identifier,
            state,
            watchers,
        )


__all__ = [
    "CycleEventLogger",
    "CycleEventType",
    "ErrorCategory",
    "categorize_error",
]
