"""Dramatiq actor running check cycles in a worker process.

Usage
-----
Queue a full cycle:

>>> check_cycle_job.send(
...     database_url="sqlite+aiosqlite:////var/lib/commit-notifier/state.db",
...     working_dir="/var/lib/commit-notifier",
... )

Queue a forced check of one repository:

>>> check_cycle_job.send(
...     database_url="sqlite+aiosqlite:////var/lib/commit-notifier/state.db",
...     working_dir="/var/lib/commit-notifier",
...     repository="nixpkgs",
... )

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import threading
import typing as typ
from pathlib import Path

import dramatiq
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from commit_notifier.cycle import CycleConfig
from commit_notifier.factory import build_services
from commit_notifier.state import init_state_storage

if typ.TYPE_CHECKING:
    from commit_notifier.cycle import CycleResult

SessionFactory: typ.TypeAlias = "async_sessionmaker[AsyncSession]"

# Engines are reused across actor invocations. Each invocation runs in its
# own event loop, so connections are never pooled between them.
_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_CACHE_LOCK = threading.Lock()


def _get_or_create_engine(database_url: str) -> AsyncEngine:
    """Get or create an async engine for the given database URL.

    Thread-safe: uses a lock to prevent race conditions in Dramatiq workers.
    """
    with _CACHE_LOCK:
        if database_url not in _ENGINE_CACHE:
            _ENGINE_CACHE[database_url] = create_async_engine(
                database_url, poolclass=NullPool
            )
        return _ENGINE_CACHE[database_url]


def summarize_cycle(result: CycleResult) -> dict[str, typ.Any]:
    """Return a JSON-compatible summary of ``result`` for actor results."""
    return {
        "skipped": result.skipped,
        "processed": list(result.repositories_processed),
        "failures": {
            failure.repository: str(failure.category) for failure in result.failures
        },
        "notifications": result.notifications_emitted,
    }


async def _run_cycle_async(
    database_url: str,
    working_dir: Path,
    repository: str | None,
) -> CycleResult:
    await asyncio.to_thread(working_dir.mkdir, parents=True, exist_ok=True)
    engine = _get_or_create_engine(database_url)
    await init_state_storage(engine)
    session_factory: SessionFactory = async_sessionmaker(
        engine, expire_on_commit=False
    )
    config = dc.replace(CycleConfig.from_env(), working_dir=working_dir)
    services = await build_services(session_factory, config=config)
    try:
        if repository is None:
            return await services.coordinator.run_check_cycle()
        return await services.coordinator.force_check(repository)
    finally:
        await services.aclose()


def install_default_broker() -> dramatiq.Broker:
    """Return the global broker, falling back to an in-memory stub.

    ``dramatiq.get_broker`` builds a RabbitMQ broker on first use and raises
    ``ModuleNotFoundError`` when the client library is not installed. Workers
    deployed with a broker extra keep it; everything else gets a
    :class:`~dramatiq.brokers.stub.StubBroker`.
    """
    try:
        return dramatiq.get_broker()
    except ModuleNotFoundError:
        broker = StubBroker()
        dramatiq.set_broker(broker)
        return broker


install_default_broker()


@dramatiq.actor
def check_cycle_job(
    database_url: str,
    working_dir: str,
    *,
    repository: str | None = None,
) -> dict[str, typ.Any]:
    """Dramatiq actor running one check cycle.

    Parameters
    ----------
    database_url
        SQLAlchemy URL of the state database.
    working_dir
        Directory holding settings, mirrors and the cycle lock file.
    repository
        Restrict the cycle to one tracked repository.

    Returns
    -------
    dict[str, Any]
        Summary of the cycle outcome.

    Raises
    ------
    ConfigError
        If ``repository`` is not tracked or the settings are invalid.

    """
    result = asyncio.run(
        _run_cycle_async(database_url, Path(working_dir), repository)
    )
    return summarize_cycle(result)


__all__ = ["check_cycle_job", "install_default_broker", "summarize_cycle"]
