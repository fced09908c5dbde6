"""API resources for triggering check cycles and inspecting branch state.

``POST /cycles`` runs a check cycle on demand, restricted to one repository
when the body names one. ``GET /repositories/{name}/branches`` returns the
last committed state of a repository's branches.

Usage
-----
Register the resources on the Falcon app::

    app.add_route("/cycles", CycleResource(dependencies))
    app.add_route(
        "/repositories/{name}/branches",
        BranchesResource(dependencies),
    )

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon

from commit_notifier.api.errors import InvalidInputError, RepositoryNotFoundError
from commit_notifier.settings.validation import ConfigError

if typ.TYPE_CHECKING:
    import datetime as dt

    from falcon.asgi import Request, Response

    from commit_notifier.cycle import CheckCycleCoordinator, CycleResult
    from commit_notifier.settings import SettingsStore
    from commit_notifier.state import RepositoryState, StateStore

__all__ = [
    "BranchesResource",
    "CycleResource",
    "CycleResourceDependencies",
    "serialize_cycle_result",
    "serialize_repository_state",
]


@dc.dataclass(frozen=True, slots=True)
class CycleResourceDependencies:
    """Collaborators shared by the cycle and branch resources.

    Attributes
    ----------
    coordinator
        Coordinator running the check cycles.
    settings_store
        Source of tracked repository names.
    state_store
        Last committed branch state.

    """

    coordinator: CheckCycleCoordinator
    settings_store: SettingsStore
    state_store: StateStore


def _isoformat(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def serialize_cycle_result(result: CycleResult) -> dict[str, typ.Any]:
    """Serialize a ``CycleResult`` to a JSON-compatible dict."""
    return {
        "skipped": result.skipped,
        "started_at": result.started_at.isoformat(),
        "finished_at": result.finished_at.isoformat(),
        "repositories_processed": list(result.repositories_processed),
        "notifications_emitted": result.notifications_emitted,
        "events": [
            {
                "repository": event.repository,
                "branch": event.branch,
                "condition": event.condition,
                "commit_id": event.commit_id,
            }
            for event in result.events
        ],
        "failures": [
            {
                "repository": failure.repository,
                "category": str(failure.category),
                "message": failure.message,
            }
            for failure in result.failures
        ],
    }


def serialize_repository_state(state: RepositoryState) -> dict[str, typ.Any]:
    """Serialize a ``RepositoryState`` to a JSON-compatible dict."""
    return {
        "repository": state.repository,
        "baselined": state.baselined,
        "baseline_at": _isoformat(state.baseline_at),
        "branches": [
            {
                "branch": branch.branch,
                "commit_id": branch.commit_id,
                "last_checked_at": branch.last_checked_at.isoformat(),
                "stale_since": _isoformat(branch.stale_since),
            }
            for branch in state.branches.values()
        ],
    }


def _requested_repository(media: object) -> str | None:
    """Extract the optional ``repository`` field from a request body."""
    if media is None:
        return None
    if not isinstance(media, dict):
        msg = "request body must be a JSON object"
        raise InvalidInputError(msg)
    repository = media.get("repository")
    if repository is None:
        return None
    if not isinstance(repository, str) or not repository.strip():
        msg = "must be a non-empty string"
        raise InvalidInputError(msg, field="repository")
    return repository


class CycleResource:
    """Resource for on-demand check cycles.

    ``POST /cycles`` answers 200 with the cycle outcome, or 409 when a
    cycle was already running and the request was dropped.

    """

    def __init__(self, dependencies: CycleResourceDependencies) -> None:
        """Configure the resource with its dependencies."""
        self._coordinator = dependencies.coordinator

    async def on_post(self, req: Request, resp: Response) -> None:
        """Handle POST /cycles.

        Parameters
        ----------
        req
            Falcon request; an optional JSON body ``{"repository": name}``
            restricts the cycle to one repository.
        resp
            Falcon response populated with the serialized cycle result.

        """
        media = await req.get_media(default_when_empty=None)
        repository = _requested_repository(media)

        if repository is None:
            result = await self._coordinator.run_check_cycle()
        else:
            try:
                result = await self._coordinator.force_check(repository)
            except ConfigError as exc:
                raise RepositoryNotFoundError(repository) from exc

        resp.media = serialize_cycle_result(result)
        resp.status = falcon.HTTP_409 if result.skipped else falcon.HTTP_200


class BranchesResource:
    """Resource exposing the last committed branch state of a repository."""

    def __init__(self, dependencies: CycleResourceDependencies) -> None:
        """Configure the resource with its dependencies."""
        self._settings_store = dependencies.settings_store
        self._state_store = dependencies.state_store

    async def on_get(self, _req: Request, resp: Response, *, name: str) -> None:
        """Handle GET /repositories/{name}/branches.

        Raises
        ------
        RepositoryNotFoundError
            If ``name`` is not a tracked repository.
        StoreError
            If the state cannot be read; mapped to HTTP 503.

        """
        if name not in self._settings_store.snapshot().repositories:
            raise RepositoryNotFoundError(name)
        state = await self._state_store.read_repository(name)
        resp.media = serialize_repository_state(state)
        resp.status = falcon.HTTP_200
