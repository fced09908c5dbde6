"""Durable last-seen state for tracked repositories.

The store is the only writer of branch state and the merge-status cache.
All changes produced by one check cycle for one repository are written in a
single transaction by :meth:`StateStore.commit_cycle`, so a crash can never
leave some branches advanced and others not for the same fetch.

Usage
-----
>>> store = StateStore(session_factory)
>>> state = await store.read_repository("nixpkgs")
>>> await store.commit_cycle(
...     "nixpkgs",
...     [BranchUpdate(branch="master", commit_id="0f3c...")],
... )

"""

from __future__ import annotations

import collections.abc as cabc
import contextlib
import dataclasses as dc
import enum
import re
import types
import typing as typ

from sqlalchemy import delete, select
from sqlalchemy.exc import DatabaseError, SQLAlchemyError

from commit_notifier.common.time import ensure_utc, utcnow

from .errors import StoreError
from .storage import BranchStateRecord, MergeStatusRecord, RepositoryStateRecord

if typ.TYPE_CHECKING:
    import datetime as dt

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

COMMIT_ID_PATTERN = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")
_CORRUPTION_MARKERS = ("malformed", "not a database", "corrupt")


class MergeState(enum.StrEnum):
    """Resolved pull request state."""

    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"

    @property
    def terminal(self) -> bool:
        """Return True for states that can no longer change."""
        return self is not MergeState.OPEN


@dc.dataclass(frozen=True, slots=True)
class BranchState:
    """Last observed head of a branch."""

    repository: str
    branch: str
    commit_id: str
    last_checked_at: dt.datetime
    stale_since: dt.datetime | None = None

    @property
    def stale(self) -> bool:
        """Return True when the branch has disappeared upstream."""
        return self.stale_since is not None


@dc.dataclass(frozen=True, slots=True)
class RepositoryState:
    """Everything the store knows about one repository."""

    repository: str
    baseline_at: dt.datetime | None
    branches: cabc.Mapping[str, BranchState]

    @property
    def baselined(self) -> bool:
        """Return True once a first cycle has been committed."""
        return self.baseline_at is not None

    def known_commit_ids(self) -> frozenset[str]:
        """Return the heads of every known branch, stale ones included."""
        return frozenset(state.commit_id for state in self.branches.values())


@dc.dataclass(frozen=True, slots=True)
class BranchUpdate:
    """New head to record for a branch."""

    branch: str
    commit_id: str


@dc.dataclass(frozen=True, slots=True)
class MergeStatusEntry:
    """Cached pull request status for a repository."""

    repository: str
    identifier: str
    state: MergeState
    merge_commit: str | None = None
    fetched_at: dt.datetime | None = None


def _looks_corrupt(exc: DatabaseError) -> bool:
    detail = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in detail for marker in _CORRUPTION_MARKERS)


@contextlib.contextmanager
def _translate_errors(repository: str) -> cabc.Iterator[None]:
    """Convert SQLAlchemy failures into :class:`StoreError`."""
    try:
        yield
    except DatabaseError as exc:
        if _looks_corrupt(exc):
            raise StoreError.corruption(repository, str(exc.orig or exc)) from exc
        raise StoreError.io_failure(repository, str(exc.orig or exc)) from exc
    except SQLAlchemyError as exc:
        raise StoreError.io_failure(repository, str(exc)) from exc


def _require_commit_id(commit_id: str, *, label: str) -> None:
    if not COMMIT_ID_PATTERN.fullmatch(commit_id):
        msg = f"{label} must be a full lower-case hex commit id, got {commit_id!r}"
        raise ValueError(msg)


class StateStore:
    """Read and commit per-repository branch state."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Bind the store to an async session factory."""
        self._session_factory = session_factory

    async def read(self, repository: str, branch: str) -> str | None:
        """Return the last committed head of ``branch``, if any.

        Raises
        ------
        StoreError
            If the database is unavailable or the stored row is corrupt.

        """
        with _translate_errors(repository):
            async with self._session_factory() as session:
                record = await session.scalar(
                    select(BranchStateRecord).where(
                        BranchStateRecord.repository == repository,
                        BranchStateRecord.branch == branch,
                    )
                )
        if record is None:
            return None
        return self._to_branch_state(repository, record).commit_id

    async def read_repository(self, repository: str) -> RepositoryState:
        """Return the baseline marker and every branch state of ``repository``.

        Parameters
        ----------
        repository
            Tracked repository name.

        Returns
        -------
        RepositoryState
            Snapshot of the last fully committed cycle. ``baseline_at`` is
            ``None`` when the repository has never completed a cycle.

        Raises
        ------
        StoreError
            ``io_failure`` when the database cannot be read, ``corruption``
            when stored rows fail integrity checks.

        """
        with _translate_errors(repository):
            async with self._session_factory() as session:
                marker = await session.scalar(
                    select(RepositoryStateRecord).where(
                        RepositoryStateRecord.repository == repository
                    )
                )
                records = (
                    await session.scalars(
                        select(BranchStateRecord)
                        .where(BranchStateRecord.repository == repository)
                        .order_by(BranchStateRecord.branch)
                    )
                ).all()

        if marker is None and records:
            raise StoreError.corruption(
                repository, "branch state exists without a baseline marker"
            )
        branches = {
            record.branch: self._to_branch_state(repository, record)
            for record in records
        }
        return RepositoryState(
            repository=repository,
            baseline_at=marker.baseline_at if marker is not None else None,
            branches=types.MappingProxyType(branches),
        )

    async def merge_status(
        self, repository: str, identifier: str
    ) -> MergeStatusEntry | None:
        """Return the cached status for ``identifier``, if present."""
        with _translate_errors(repository):
            async with self._session_factory() as session:
                record = await session.scalar(
                    select(MergeStatusRecord).where(
                        MergeStatusRecord.repository == repository,
                        MergeStatusRecord.identifier == identifier,
                    )
                )
        if record is None:
            return None
        try:
            state = MergeState(record.state)
        except ValueError as exc:
            raise StoreError.corruption(
                repository, f"unknown merge state {record.state!r}"
            ) from exc
        return MergeStatusEntry(
            repository=repository,
            identifier=record.identifier,
            state=state,
            merge_commit=record.merge_commit,
            fetched_at=record.fetched_at,
        )

    async def commit_cycle(  # noqa: PLR0913
        self,
        repository: str,
        updates: cabc.Sequence[BranchUpdate],
        cache_updates: cabc.Sequence[MergeStatusEntry] = (),
        *,
        stale_branches: cabc.Collection[str] = (),
        checked_at: dt.datetime | None = None,
    ) -> None:
        """Atomically record one cycle's outcome for ``repository``.

        Branch heads, stale markers, cache entries and the baseline marker
        are written in one transaction; on any failure none of them are.

        Parameters
        ----------
        repository
            Tracked repository name.
        updates
            Heads of every branch present this cycle.
        cache_updates
            Merge-status entries fetched this cycle.
        stale_branches
            Known branches that disappeared upstream; their heads are kept.
        checked_at
            Timestamp recorded as the last check time. Defaults to now.

        Raises
        ------
        ValueError
            If an update carries a malformed commit id or repeats a branch.
        StoreError
            If the transaction cannot be committed.

        """
        timestamp = ensure_utc(checked_at or utcnow(), field="checked_at")
        seen: set[str] = set()
        for update in updates:
            _require_commit_id(update.commit_id, label=f"{update.branch} head")
            if update.branch in seen:
                msg = f"branch {update.branch!r} appears twice in one commit"
                raise ValueError(msg)
            seen.add(update.branch)

        with _translate_errors(repository):
            async with self._session_factory() as session, session.begin():
                await self._apply_marker(session, repository, timestamp)
                await self._apply_branch_updates(
                    session, repository, updates, stale_branches, timestamp
                )
                await session.flush()
                await self._apply_cache_updates(
                    session, repository, cache_updates, timestamp
                )

    async def reset_repository(self, repository: str) -> int:
        """Forget everything about ``repository`` so it is baselined again.

        Returns
        -------
        int
            Number of branch states removed.

        """
        with _translate_errors(repository):
            async with self._session_factory() as session, session.begin():
                result = await session.execute(
                    delete(BranchStateRecord).where(
                        BranchStateRecord.repository == repository
                    )
                )
                await session.execute(
                    delete(MergeStatusRecord).where(
                        MergeStatusRecord.repository == repository
                    )
                )
                await session.execute(
                    delete(RepositoryStateRecord).where(
                        RepositoryStateRecord.repository == repository
                    )
                )
        return int(getattr(result, "rowcount", 0) or 0)

    async def _apply_marker(
        self, session: AsyncSession, repository: str, timestamp: dt.datetime
    ) -> None:
        marker = await session.scalar(
            select(RepositoryStateRecord).where(
                RepositoryStateRecord.repository == repository
            )
        )
        if marker is None:
            session.add(
                RepositoryStateRecord(
                    repository=repository,
                    baseline_at=timestamp,
                    last_cycle_at=timestamp,
                )
            )
        else:
            marker.last_cycle_at = timestamp

    async def _apply_branch_updates(  # noqa: PLR0913
        self,
        session: AsyncSession,
        repository: str,
        updates: cabc.Sequence[BranchUpdate],
        stale_branches: cabc.Collection[str],
        timestamp: dt.datetime,
    ) -> None:
        existing = {
            record.branch: record
            for record in (
                await session.scalars(
                    select(BranchStateRecord).where(
                        BranchStateRecord.repository == repository
                    )
                )
            ).all()
        }
        for update in updates:
            record = existing.get(update.branch)
            if record is None:
                session.add(
                    BranchStateRecord(
                        repository=repository,
                        branch=update.branch,
                        commit_id=update.commit_id,
                        last_checked_at=timestamp,
                    )
                )
                continue
            record.commit_id = update.commit_id
            record.last_checked_at = timestamp
            record.stale_since = None

        for branch in stale_branches:
            record = existing.get(branch)
            if record is not None and record.stale_since is None:
                record.stale_since = timestamp

    async def _apply_cache_updates(
        self,
        session: AsyncSession,
        repository: str,
        cache_updates: cabc.Sequence[MergeStatusEntry],
        timestamp: dt.datetime,
    ) -> None:
        if not cache_updates:
            return
        identifiers = [entry.identifier for entry in cache_updates]
        existing = {
            record.identifier: record
            for record in (
                await session.scalars(
                    select(MergeStatusRecord).where(
                        MergeStatusRecord.repository == repository,
                        MergeStatusRecord.identifier.in_(identifiers),
                    )
                )
            ).all()
        }
        for entry in cache_updates:
            fetched_at = entry.fetched_at or timestamp
            record = existing.get(entry.identifier)
            if record is None:
                record = MergeStatusRecord(
                    repository=repository,
                    identifier=entry.identifier,
                    state=entry.state.value,
                    merge_commit=entry.merge_commit,
                    fetched_at=fetched_at,
                )
                session.add(record)
                existing[entry.identifier] = record
                continue
            record.state = entry.state.value
            record.merge_commit = entry.merge_commit
            record.fetched_at = fetched_at

    @staticmethod
    def _to_branch_state(repository: str, record: BranchStateRecord) -> BranchState:
        if not COMMIT_ID_PATTERN.fullmatch(record.commit_id or ""):
            raise StoreError.corruption(
                repository,
                f"branch {record.branch!r} holds invalid commit id "
                f"{record.commit_id!r}",
            )
        if record.last_checked_at is None:
            raise StoreError.corruption(
                repository, f"branch {record.branch!r} has no last-checked time"
            )
        return BranchState(
            repository=repository,
            branch=record.branch,
            commit_id=record.commit_id,
            last_checked_at=record.last_checked_at,
            stale_since=record.stale_since,
        )


__all__ = [
    "COMMIT_ID_PATTERN",
    "BranchState",
    "BranchUpdate",
    "MergeState",
    "MergeStatusEntry",
    "RepositoryState",
    "StateStore",
]
