"""Health probe resources for liveness and readiness checks.

Usage
-----
Register health endpoints on the Falcon app::

    app.add_route("/health", HealthResource())
    app.add_route("/ready", ReadyResource(coordinator))

"""

from __future__ import annotations

import typing as typ
from http import HTTPStatus

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from commit_notifier.cycle import CheckCycleCoordinator

__all__ = ["HealthResource", "ReadyResource"]


class HealthResource:
    """Liveness probe resource returning ``{"status": "ok"}``."""

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /health requests."""
        resp.media = {"status": "ok"}
        resp.status = HTTPStatus.OK


class ReadyResource:
    """Readiness probe resource.

    Always responds with HTTP 200. When a coordinator is attached the body
    also reports the phase of the check cycle currently running, so
    operators can see whether a cycle is in flight.

    """

    def __init__(self, coordinator: CheckCycleCoordinator | None = None) -> None:
        """Optionally attach the coordinator whose phase is reported."""
        self._coordinator = coordinator

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /ready requests.

        Parameters
        ----------
        _req
            Falcon request (unused).
        resp
            Falcon response populated with readiness status.

        """
        media: dict[str, str] = {"status": "ready"}
        if self._coordinator is not None:
            media["cycle_phase"] = str(self._coordinator.phase)
        resp.media = media
        resp.status = HTTPStatus.OK
