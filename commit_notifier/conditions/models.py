"""Transient records flowing through one evaluation pass."""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt


class Decision(enum.StrEnum):
    """Outcome of one condition for one observation."""

    NOTIFY = "notify"
    SUPPRESS = "suppress"
    IGNORE = "ignore"


@dc.dataclass(frozen=True, slots=True)
class CommitObservation:
    """A commit newly reachable from a tracked branch this cycle.

    Attributes
    ----------
    repository
        Tracked repository name.
    branch
        Branch on which the commit was observed.
    commit_id
        Full commit id.
    discovered_at
        When the cycle discovered the commit.
    subject
        First line of the commit message.
    known_branches
        Branches whose previously committed head already contained the
        commit, stale branches included.

    """

    repository: str
    branch: str
    commit_id: str
    discovered_at: dt.datetime
    subject: str = ""
    known_branches: frozenset[str] = frozenset()


@dc.dataclass(frozen=True, slots=True)
class NotificationEvent:
    """Notification produced by a condition for an observation."""

    repository: str
    branch: str
    condition: str
    commit_id: str
    message: str

    @property
    def key(self) -> tuple[str, str, str]:
        """Return the (commit, branch, condition) identity of the event."""
        return (self.commit_id, self.branch, self.condition)


__all__ = ["CommitObservation", "Decision", "NotificationEvent"]
