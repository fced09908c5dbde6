"""Application factory for the commit-notifier Falcon ASGI application.

Usage
-----
Create a health-only app::

    app = create_app()

Create a full app with cycle endpoints::

    deps = AppDependencies(
        coordinator=services.coordinator,
        settings_store=services.settings_store,
        state_store=services.state_store,
    )
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from commit_notifier.api.errors import (
    InvalidInputError,
    RepositoryNotFoundError,
    handle_invalid_input,
    handle_repository_not_found,
    handle_store_error,
)
from commit_notifier.api.health.resources import HealthResource, ReadyResource
from commit_notifier.state.errors import StoreError

if typ.TYPE_CHECKING:
    from commit_notifier.cycle import CheckCycleCoordinator
    from commit_notifier.settings import SettingsStore
    from commit_notifier.state import StateStore

__all__ = ["AppDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class AppDependencies:
    """Dependencies for the Falcon ASGI application.

    When all three collaborators are provided the application includes the
    cycle endpoints. Otherwise only health endpoints are registered.

    Attributes
    ----------
    coordinator
        Coordinator running check cycles.
    settings_store
        Tracked repository settings.
    state_store
        Last committed branch state.
    middleware
        Extra Falcon middleware, such as the lifespan handler preparing the
        services.

    """

    coordinator: CheckCycleCoordinator | None = None
    settings_store: SettingsStore | None = None
    state_store: StateStore | None = None
    middleware: tuple[object, ...] = ()


def create_app(
    dependencies: AppDependencies | None = None,
) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Parameters
    ----------
    dependencies
        Optional application dependencies. When ``None`` or incomplete,
        only ``/health`` and ``/ready`` are available.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    middleware = list(dependencies.middleware) if dependencies is not None else []
    app = falcon.asgi.App(middleware=middleware)  # type: ignore[no-matching-overload]  # Falcon stubs

    coordinator = dependencies.coordinator if dependencies is not None else None
    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(coordinator))

    if (
        dependencies is not None
        and dependencies.coordinator is not None
        and dependencies.settings_store is not None
        and dependencies.state_store is not None
    ):
        from commit_notifier.api.cycles.resources import (
            BranchesResource,
            CycleResource,
            CycleResourceDependencies,
        )

        resource_deps = CycleResourceDependencies(
            coordinator=dependencies.coordinator,
            settings_store=dependencies.settings_store,
            state_store=dependencies.state_store,
        )
        app.add_route("/cycles", CycleResource(resource_deps))
        app.add_route(
            "/repositories/{name}/branches", BranchesResource(resource_deps)
        )

    app.add_error_handler(RepositoryNotFoundError, handle_repository_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(StoreError, handle_store_error)

    return app
