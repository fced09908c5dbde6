"""Unit tests for the durable state store."""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from commit_notifier.state import (
    BranchStateRecord,
    BranchUpdate,
    MergeState,
    MergeStatusEntry,
    MergeStatusRecord,
    StateStore,
    StoreError,
    StoreErrorKind,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

MASTER_OLD = "a" * 40
MASTER_NEW = "b" * 40
STAGING = "c" * 40
CHECKED_AT = dt.datetime(2024, 6, 1, 12, tzinfo=dt.UTC)


class _FailingCacheStore(StateStore):
    """Store whose cache write fails after branch rows were staged."""

    async def _apply_cache_updates(
        self,
        session: AsyncSession,
        repository: str,
        cache_updates: cabc.Sequence[MergeStatusEntry],
        timestamp: dt.datetime,
    ) -> None:
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> StateStore:
    """Return a state store over the test database."""
    return StateStore(session_factory)


class TestCommitCycle:
    """Tests for StateStore.commit_cycle."""

    @pytest.mark.asyncio
    async def test_unknown_repository_has_no_baseline(self, store: StateStore) -> None:
        """A repository never committed reads as not baselined."""
        state = await store.read_repository("nixpkgs")

        assert not state.baselined
        assert dict(state.branches) == {}
        assert await store.read("nixpkgs", "master") is None

    @pytest.mark.asyncio
    async def test_first_commit_records_baseline(self, store: StateStore) -> None:
        """The first commit writes the marker and every head."""
        await store.commit_cycle(
            "nixpkgs",
            [
                BranchUpdate("master", MASTER_OLD),
                BranchUpdate("staging", STAGING),
            ],
            checked_at=CHECKED_AT,
        )

        state = await store.read_repository("nixpkgs")
        assert state.baselined
        assert state.baseline_at == CHECKED_AT
        assert sorted(state.branches) == ["master", "staging"]
        assert state.branches["master"].last_checked_at == CHECKED_AT
        assert state.known_commit_ids() == {MASTER_OLD, STAGING}
        assert await store.read("nixpkgs", "staging") == STAGING

    @pytest.mark.asyncio
    async def test_later_commit_keeps_baseline_time(self, store: StateStore) -> None:
        """Advancing a head does not move the baseline."""
        await store.commit_cycle(
            "nixpkgs", [BranchUpdate("master", MASTER_OLD)], checked_at=CHECKED_AT
        )
        later = CHECKED_AT + dt.timedelta(minutes=5)

        await store.commit_cycle(
            "nixpkgs", [BranchUpdate("master", MASTER_NEW)], checked_at=later
        )

        state = await store.read_repository("nixpkgs")
        assert state.baseline_at == CHECKED_AT
        assert state.branches["master"].commit_id == MASTER_NEW
        assert state.branches["master"].last_checked_at == later

    @pytest.mark.asyncio
    async def test_stale_branches_are_retained(self, store: StateStore) -> None:
        """Deleted branches keep their head and gain a stale marker."""
        await store.commit_cycle(
            "nixpkgs",
            [BranchUpdate("master", MASTER_OLD), BranchUpdate("staging", STAGING)],
            checked_at=CHECKED_AT,
        )
        later = CHECKED_AT + dt.timedelta(hours=1)

        await store.commit_cycle(
            "nixpkgs",
            [BranchUpdate("master", MASTER_OLD)],
            stale_branches=["staging"],
            checked_at=later,
        )

        staging = (await store.read_repository("nixpkgs")).branches["staging"]
        assert staging.commit_id == STAGING
        assert staging.stale
        assert staging.stale_since == later

    @pytest.mark.asyncio
    async def test_reappearing_branch_clears_stale_marker(
        self, store: StateStore
    ) -> None:
        """A branch seen again is no longer stale."""
        await store.commit_cycle("nixpkgs", [BranchUpdate("staging", STAGING)])
        await store.commit_cycle("nixpkgs", [], stale_branches=["staging"])

        await store.commit_cycle("nixpkgs", [BranchUpdate("staging", MASTER_NEW)])

        staging = (await store.read_repository("nixpkgs")).branches["staging"]
        assert not staging.stale
        assert staging.commit_id == MASTER_NEW

    @pytest.mark.parametrize("commit_id", ["abc123", "A" * 40, "g" * 40])
    @pytest.mark.asyncio
    async def test_rejects_malformed_commit_ids(
        self, store: StateStore, commit_id: str
    ) -> None:
        """Only full lower-case hex ids are stored."""
        with pytest.raises(ValueError, match="full lower-case hex commit id"):
            await store.commit_cycle("nixpkgs", [BranchUpdate("master", commit_id)])

        assert not (await store.read_repository("nixpkgs")).baselined

    @pytest.mark.asyncio
    async def test_rejects_repeated_branch(self, store: StateStore) -> None:
        """One commit cannot carry two heads for the same branch."""
        with pytest.raises(ValueError, match="appears twice"):
            await store.commit_cycle(
                "nixpkgs",
                [
                    BranchUpdate("master", MASTER_OLD),
                    BranchUpdate("master", MASTER_NEW),
                ],
            )

    @pytest.mark.asyncio
    async def test_rejects_naive_timestamp(self, store: StateStore) -> None:
        """Check times must be timezone-aware."""
        with pytest.raises(ValueError, match="timezone-aware"):
            await store.commit_cycle(
                "nixpkgs",
                [BranchUpdate("master", MASTER_OLD)],
                checked_at=dt.datetime(2024, 6, 1),  # noqa: DTZ001
            )


@pytest.mark.asyncio
async def test_commit_is_all_or_nothing(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """A failure in the cache write rolls back the branch updates."""
    store = StateStore(session_factory)
    await store.commit_cycle(
        "nixpkgs", [BranchUpdate("master", MASTER_OLD)], checked_at=CHECKED_AT
    )
    failing = _FailingCacheStore(session_factory)

    with pytest.raises(StoreError) as exc_info:
        await failing.commit_cycle(
            "nixpkgs",
            [BranchUpdate("master", MASTER_NEW), BranchUpdate("staging", STAGING)],
            [MergeStatusEntry("nixpkgs", "12", MergeState.OPEN)],
        )

    assert exc_info.value.kind is StoreErrorKind.IO_FAILURE
    assert exc_info.value.repository == "nixpkgs"
    state = await store.read_repository("nixpkgs")
    assert {name: b.commit_id for name, b in state.branches.items()} == {
        "master": MASTER_OLD
    }
    assert await store.merge_status("nixpkgs", "12") is None


class TestMergeStatusCache:
    """Tests for the merge status cache."""

    @pytest.mark.asyncio
    async def test_cache_entries_are_overwritten(self, store: StateStore) -> None:
        """A refetched status replaces the cached one."""
        await store.commit_cycle(
            "nixpkgs",
            [BranchUpdate("master", MASTER_OLD)],
            [MergeStatusEntry("nixpkgs", "12", MergeState.OPEN)],
            checked_at=CHECKED_AT,
        )

        await store.commit_cycle(
            "nixpkgs",
            [BranchUpdate("master", MASTER_OLD)],
            [MergeStatusEntry("nixpkgs", "12", MergeState.MERGED, MASTER_NEW)],
        )

        entry = await store.merge_status("nixpkgs", "12")
        assert entry is not None
        assert entry.state is MergeState.MERGED
        assert entry.state.terminal
        assert entry.merge_commit == MASTER_NEW
        assert await store.merge_status("other", "12") is None

    @pytest.mark.asyncio
    async def test_unknown_state_is_corruption(
        self,
        store: StateStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """A cached row with an unknown state is reported as corruption."""
        await store.commit_cycle(
            "nixpkgs",
            [BranchUpdate("master", MASTER_OLD)],
            [MergeStatusEntry("nixpkgs", "12", MergeState.OPEN)],
        )
        async with session_factory() as session, session.begin():
            await session.execute(
                update(MergeStatusRecord).values(state="draft")
            )

        with pytest.raises(StoreError) as exc_info:
            await store.merge_status("nixpkgs", "12")

        assert exc_info.value.kind is StoreErrorKind.CORRUPTION


class TestCorruption:
    """Integrity checks applied when reading state."""

    @pytest.mark.asyncio
    async def test_invalid_commit_id_row(
        self,
        store: StateStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """A row holding a malformed id is reported, not silently used."""
        await store.commit_cycle("nixpkgs", [BranchUpdate("master", MASTER_OLD)])
        async with session_factory() as session, session.begin():
            await session.execute(
                update(BranchStateRecord).values(commit_id="not-a-sha")
            )

        with pytest.raises(StoreError) as exc_info:
            await store.read_repository("nixpkgs")

        assert exc_info.value.kind is StoreErrorKind.CORRUPTION
        assert "re-baseline" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_branches_without_marker(
        self,
        store: StateStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Branch rows without the baseline marker are inconsistent."""
        async with session_factory() as session, session.begin():
            session.add(
                BranchStateRecord(
                    repository="nixpkgs",
                    branch="master",
                    commit_id=MASTER_OLD,
                    last_checked_at=CHECKED_AT,
                )
            )

        with pytest.raises(StoreError) as exc_info:
            await store.read_repository("nixpkgs")

        assert exc_info.value.kind is StoreErrorKind.CORRUPTION

    @pytest.mark.asyncio
    async def test_reset_repository_allows_rebaseline(
        self,
        store: StateStore,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        """Resetting removes every row so the next cycle baselines again."""
        await store.commit_cycle(
            "nixpkgs",
            [BranchUpdate("master", MASTER_OLD), BranchUpdate("staging", STAGING)],
            [MergeStatusEntry("nixpkgs", "12", MergeState.CLOSED)],
        )
        await store.commit_cycle("other", [BranchUpdate("main", MASTER_NEW)])
        async with session_factory() as session, session.begin():
            await session.execute(
                update(BranchStateRecord)
                .where(BranchStateRecord.repository == "nixpkgs")
                .values(commit_id="broken")
            )

        removed = await store.reset_repository("nixpkgs")

        assert removed == 2
        state = await store.read_repository("nixpkgs")
        assert not state.baselined
        assert await store.merge_status("nixpkgs", "12") is None
        assert (await store.read_repository("other")).baselined
