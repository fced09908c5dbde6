"""ASGI lifespan middleware preparing the check cycle services.

Database tables and persisted settings are prepared on ``startup`` rather
than in the application factory, so the work happens on the server's event
loop. On ``shutdown`` HTTP clients are closed and the engine disposed.

Usage
-----
Register the middleware when creating the Falcon app::

    app = falcon.asgi.App(middleware=[ServiceLifecycle(services, engine)])

"""

from __future__ import annotations

import asyncio
import typing as typ

from commit_notifier.logging import get_logger, log_info
from commit_notifier.state import init_state_storage

if typ.TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from commit_notifier.factory import CycleServices

__all__ = ["ServiceLifecycle"]

logger = get_logger(__name__)


class ServiceLifecycle:
    """Falcon middleware handling ASGI lifespan events for the services.

    Parameters
    ----------
    services
        Wired services whose settings are loaded on startup.
    engine
        Engine behind the state store; tables are created on startup and
        the pool is disposed on shutdown.

    """

    def __init__(self, services: CycleServices, engine: AsyncEngine) -> None:
        """Initialize the middleware with the services and engine."""
        self._services = services
        self._engine = engine

    async def process_startup(
        self, _scope: dict[str, typ.Any], _event: dict[str, typ.Any]
    ) -> None:
        """Create the working directory and state tables, then load settings."""
        root = self._services.settings_store.root
        await asyncio.to_thread(root.mkdir, parents=True, exist_ok=True)
        await init_state_storage(self._engine)
        await self._services.settings_store.load()
        log_info(
            logger,
            "Services ready for %d repositories",
            len(self._services.settings_store.snapshot().repositories),
        )

    async def process_shutdown(
        self, _scope: dict[str, typ.Any], _event: dict[str, typ.Any]
    ) -> None:
        """Close HTTP clients and dispose of the engine."""
        await self._services.aclose()
        await self._engine.dispose()
