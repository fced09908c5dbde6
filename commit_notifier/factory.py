"""Factory for assembling the check cycle from environment configuration.

The API runtime, the Dramatiq actor and the CLI all build their
:class:`~commit_notifier.cycle.CheckCycleCoordinator` here so that the three
entry points share one wiring of settings, mirror, state, sink and lookup.

Usage
-----
Build the services for a session factory::

    from commit_notifier.factory import build_services

    services = await build_services(session_factory)
    result = await services.coordinator.run_check_cycle()
    await services.aclose()

"""

from __future__ import annotations

import dataclasses as dc
import os
import typing as typ

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from commit_notifier.cycle import CheckCycleCoordinator, CycleConfig
from commit_notifier.github import GitHubClientConfig, GitHubPullRequestClient
from commit_notifier.mirror import MirrorConfig, RepositoryMirror
from commit_notifier.notify import (
    FilesystemNotificationSink,
    TelegramConfig,
    TelegramNotificationSink,
)
from commit_notifier.settings import SettingsStore
from commit_notifier.state import StateStore, init_state_storage

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from commit_notifier.github import PullRequestLookup
    from commit_notifier.notify import NotificationSink

__all__ = [
    "CycleServices",
    "build_lookup",
    "build_services",
    "build_sink",
    "database_url_from_env",
    "open_state_database",
    "wire_services",
]

SessionFactory: typ.TypeAlias = "async_sessionmaker[AsyncSession]"


def database_url_from_env(working_dir: Path) -> str:
    """Return ``COMMIT_NOTIFIER_DATABASE_URL`` or a SQLite file in ``working_dir``."""
    database_url = os.environ.get("COMMIT_NOTIFIER_DATABASE_URL", "").strip()
    if database_url:
        return database_url
    return f"sqlite+aiosqlite:///{working_dir / 'state.db'}"


async def open_state_database(database_url: str) -> tuple[AsyncEngine, SessionFactory]:
    """Create an engine for ``database_url`` and ensure the state tables exist."""
    engine = create_async_engine(database_url)
    await init_state_storage(engine)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


def build_sink(config: CycleConfig) -> NotificationSink:
    """Return the Telegram sink when a bot token is set, else the filesystem outbox."""
    if os.environ.get("COMMIT_NOTIFIER_TELEGRAM_TOKEN", "").strip():
        return TelegramNotificationSink(TelegramConfig.from_env())
    return FilesystemNotificationSink(config.working_dir / "outbox")


def build_lookup() -> PullRequestLookup | None:
    """Return a GitHub lookup when ``COMMIT_NOTIFIER_GITHUB_TOKEN`` is set."""
    github_config = GitHubClientConfig.from_env()
    if github_config.token is None:
        return None
    return GitHubPullRequestClient(github_config)


@dc.dataclass(frozen=True, slots=True)
class CycleServices:
    """Coordinator plus the collaborators it was built from."""

    coordinator: CheckCycleCoordinator
    settings_store: SettingsStore
    state_store: StateStore
    mirror: RepositoryMirror
    sink: NotificationSink
    lookup: PullRequestLookup | None = None

    async def aclose(self) -> None:
        """Close HTTP clients owned by the sink and lookup."""
        for resource in (self.sink, self.lookup):
            aclose = getattr(resource, "aclose", None)
            if aclose is not None:
                await aclose()


def wire_services(
    session_factory: SessionFactory,
    *,
    config: CycleConfig | None = None,
    sink: NotificationSink | None = None,
    lookup: PullRequestLookup | None = None,
) -> CycleServices:
    """Wire a coordinator from environment configuration without doing I/O.

    Settings are not loaded; call ``await services.settings_store.load()``
    before the first cycle, or use :func:`build_services`.

    Parameters
    ----------
    session_factory
        Async session factory bound to an initialised state database.
    config
        Cycle configuration; read from the environment when omitted.
    sink
        Notification sink; chosen by :func:`build_sink` when omitted.
    lookup
        Pull request lookup; chosen by :func:`build_lookup` when omitted.

    Returns
    -------
    CycleServices
        Wired services.

    """
    config = config or CycleConfig.from_env()
    settings_store = SettingsStore(config.working_dir)
    mirror = RepositoryMirror(config.mirrors_dir, MirrorConfig.from_env())
    state_store = StateStore(session_factory)
    sink = sink or build_sink(config)
    if lookup is None:
        lookup = build_lookup()

    coordinator = CheckCycleCoordinator(
        settings_store=settings_store,
        mirror=mirror,
        state_store=state_store,
        sink=sink,
        config=config,
        lookup=lookup,
    )
    return CycleServices(
        coordinator=coordinator,
        settings_store=settings_store,
        state_store=state_store,
        mirror=mirror,
        sink=sink,
        lookup=lookup,
    )


async def build_services(
    session_factory: SessionFactory,
    *,
    config: CycleConfig | None = None,
    sink: NotificationSink | None = None,
    lookup: PullRequestLookup | None = None,
) -> CycleServices:
    """Wire the services and load persisted settings from disk.

    Raises
    ------
    ConfigError
        If persisted settings are unreadable or invalid.

    """
    services = wire_services(
        session_factory, config=config, sink=sink, lookup=lookup
    )
    await services.settings_store.load()
    return services
