"""Repository mirror errors."""

from __future__ import annotations

import enum


class MirrorErrorKind(enum.StrEnum):
    """Failure classes reported by the repository mirror."""

    NETWORK = "network"
    AUTH_REQUIRED = "auth_required"
    CORRUPT_CLONE = "corrupt_clone"


class MirrorError(RuntimeError):
    """Raised when a local clone cannot be brought up to date."""

    def __init__(
        self, message: str, *, kind: MirrorErrorKind, repository: str | None = None
    ) -> None:
        """Initialise with the failure class and the affected repository."""
        self.kind = kind
        self.repository = repository
        super().__init__(message)

    @classmethod
    def network(cls, repository: str, detail: str) -> MirrorError:
        """Return an error for an unreachable or failing remote."""
        return cls(
            f"{repository}: remote unavailable: {detail}",
            kind=MirrorErrorKind.NETWORK,
            repository=repository,
        )

    @classmethod
    def timeout(cls, repository: str, seconds: float) -> MirrorError:
        """Return an error for a git command exceeding its time budget."""
        return cls(
            f"{repository}: git command timed out after {seconds:g}s",
            kind=MirrorErrorKind.NETWORK,
            repository=repository,
        )

    @classmethod
    def auth_required(cls, repository: str, detail: str) -> MirrorError:
        """Return an error for a remote that rejected anonymous access."""
        return cls(
            f"{repository}: remote requires authentication: {detail}",
            kind=MirrorErrorKind.AUTH_REQUIRED,
            repository=repository,
        )

    @classmethod
    def corrupt_clone(cls, repository: str, detail: str) -> MirrorError:
        """Return an error for a local clone git can no longer read."""
        return cls(
            f"{repository}: local clone is corrupt: {detail}",
            kind=MirrorErrorKind.CORRUPT_CLONE,
            repository=repository,
        )
