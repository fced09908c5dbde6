"""Persistence models for last-seen branch state and merge-status cache."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from commit_notifier.common.time import utcnow

from .errors import TimezoneAwareRequiredError

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine


class Base(DeclarativeBase):
    """Declarative base for state tables."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime that always binds and loads aware UTC values, SQLite included."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Reject naive datetimes and convert aware ones to UTC."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Attach UTC to values the driver returns without tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class RepositoryStateRecord(Base):
    """Per-repository marker; its presence means the baseline exists."""

    __tablename__ = "repository_states"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository: Mapped[str] = mapped_column(String(255), unique=True)
    baseline_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    last_cycle_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


class BranchStateRecord(Base):
    """Last observed head of one tracked branch."""

    __tablename__ = "branch_states"
    __table_args__ = (
        UniqueConstraint("repository", "branch", name="uq_branch_state_branch"),
        Index("ix_branch_states_repository", "repository"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository: Mapped[str] = mapped_column(String(255))
    branch: Mapped[str] = mapped_column(String(255))
    commit_id: Mapped[str] = mapped_column(String(64))
    last_checked_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    stale_since: Mapped[dt.datetime | None] = mapped_column(
        UTCDateTime(), default=None
    )


class MergeStatusRecord(Base):
    """Cached pull request status, overwritten on each re-fetch."""

    __tablename__ = "merge_status_cache"
    __table_args__ = (
        UniqueConstraint("repository", "identifier", name="uq_merge_status_identifier"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    repository: Mapped[str] = mapped_column(String(255))
    identifier: Mapped[str] = mapped_column(String(64))
    state: Mapped[str] = mapped_column(String(16))
    merge_commit: Mapped[str | None] = mapped_column(String(64), default=None)
    fetched_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


async def init_state_storage(engine: AsyncEngine) -> None:
    """Create the state tables if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "Base",
    "BranchStateRecord",
    "MergeStatusRecord",
    "RepositoryStateRecord",
    "UTCDateTime",
    "init_state_storage",
]
