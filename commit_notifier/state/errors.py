"""State store errors."""

from __future__ import annotations

import enum


class StoreErrorKind(enum.StrEnum):
    """Failure classes reported by the state store."""

    IO_FAILURE = "io_failure"
    CORRUPTION = "corruption"


class StoreError(RuntimeError):
    """Raised when a repository's persisted state cannot be read or written."""

    def __init__(
        self, message: str, *, kind: StoreErrorKind, repository: str | None = None
    ) -> None:
        """Initialise with the failure class and the affected repository."""
        self.kind = kind
        self.repository = repository
        super().__init__(message)

    @classmethod
    def io_failure(cls, repository: str, detail: str) -> StoreError:
        """Return an error for a database that could not be reached or written."""
        return cls(
            f"{repository}: state store unavailable: {detail}",
            kind=StoreErrorKind.IO_FAILURE,
            repository=repository,
        )

    @classmethod
    def corruption(cls, repository: str, detail: str) -> StoreError:
        """Return an error for persisted state that fails integrity checks."""
        return cls(
            f"{repository}: stored state is corrupt ({detail}); "
            "re-baseline the repository to recover",
            kind=StoreErrorKind.CORRUPTION,
            repository=repository,
        )


class TimezoneAwareRequiredError(ValueError):
    """Raised when a naive datetime is bound to a UTC column."""

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error explaining that tz-aware datetimes are required."""
        return cls("timestamps stored in the state database must be timezone-aware")
