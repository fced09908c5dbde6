"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import shutil
import typing as typ

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from commit_notifier.state import init_state_storage
from tests.helpers.git_remote import GitRemote

if typ.TYPE_CHECKING:
    from pathlib import Path


async def _setup_sqlite(tmp_path: Path) -> AsyncEngine:
    """Create a SQLite engine and initialise the state tables."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'commit_notifier_test.db'}"
    )
    try:
        await init_state_storage(engine)
    except Exception:
        await engine.dispose()
        raise
    return engine


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = await _setup_sqlite(tmp_path)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def git_remote(tmp_path: Path) -> GitRemote:
    """Return an upstream repository with an initial commit on ``master``."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    return GitRemote.create(tmp_path / "upstream")
