"""Domain exceptions and Falcon error handlers for the API layer.

Usage
-----
Register error handlers on the Falcon app::

    app.add_error_handler(RepositoryNotFoundError, handle_repository_not_found)
    app.add_error_handler(InvalidInputError, handle_invalid_input)
    app.add_error_handler(StoreError, handle_store_error)

"""

from __future__ import annotations

import typing as typ

import falcon

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from commit_notifier.state.errors import StoreError

__all__ = [
    "InvalidInputError",
    "RepositoryNotFoundError",
    "handle_invalid_input",
    "handle_repository_not_found",
    "handle_store_error",
]


class RepositoryNotFoundError(Exception):
    """Raised when a request names a repository that is not tracked.

    Attributes
    ----------
    name
        Repository name from the request.

    """

    def __init__(self, name: str) -> None:
        """Initialize with the repository name."""
        self.name = name
        super().__init__(f"No tracked repository named '{name}'.")


class InvalidInputError(Exception):
    """Raised for client validation errors that should map to HTTP 400.

    Attributes
    ----------
    reason
        Human-readable description of the validation failure.
    field
        Optional name of the input field that failed validation.

    """

    def __init__(self, reason: str, *, field: str | None = None) -> None:
        """Initialize with a validation reason and optional field name."""
        self.reason = reason
        self.field = field
        message = f"{field}: {reason}" if field is not None else reason
        super().__init__(message)


async def handle_repository_not_found(
    _req: Request,
    resp: Response,
    ex: RepositoryNotFoundError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``RepositoryNotFoundError`` to an HTTP 404 JSON response."""
    resp.status = falcon.HTTP_404
    resp.media = {
        "title": "Repository not found",
        "description": str(ex),
    }


async def handle_invalid_input(
    _req: Request,
    resp: Response,
    ex: InvalidInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``InvalidInputError`` to an HTTP 400 JSON response.

    Parameters
    ----------
    _req
        Falcon request (unused).
    resp
        Falcon response whose status and media are set.
    ex
        The validation exception containing reason and optional field.
    _params
        URI template parameters (unused).

    """
    resp.status = falcon.HTTP_400
    media: dict[str, str] = {
        "title": "Invalid input",
        "description": ex.reason,
    }
    if ex.field is not None:
        media["field"] = ex.field
    resp.media = media


async def handle_store_error(
    _req: Request,
    resp: Response,
    ex: StoreError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``StoreError`` to an HTTP 503 JSON response naming the failure kind."""
    resp.status = falcon.HTTP_503
    resp.media = {
        "title": "State store unavailable",
        "description": str(ex),
        "kind": str(ex.kind),
    }
