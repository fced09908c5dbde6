"""commit-notifier runtime entrypoint.

This module provides the ASGI application factory used by Granian. It
delegates to :func:`commit_notifier.api.app.create_app` while keeping the
``commit_notifier.runtime:create_app`` entrypoint stable.

When a working directory is configured (``COMMIT_NOTIFIER_WORKING_DIR``) or
a database URL is set (``COMMIT_NOTIFIER_DATABASE_URL``), the runtime wires
the full check cycle so the app serves ``POST /cycles`` and the branch state
endpoint. Otherwise it starts in health-only mode.

Configuration is driven by environment variables:

- ``COMMIT_NOTIFIER_HOST``: Bind address (default ``0.0.0.0``)
- ``COMMIT_NOTIFIER_PORT``: Listen port (default ``8080``)
- ``COMMIT_NOTIFIER_LOG_LEVEL``: Log level (default ``INFO``)
- ``COMMIT_NOTIFIER_WORKING_DIR``: State directory
- ``COMMIT_NOTIFIER_DATABASE_URL``: Database connection URL

Run the service directly with ``python -m commit_notifier.runtime``.
"""

from __future__ import annotations

import os
import typing as typ

from commit_notifier.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["create_app", "main"]

logger = get_logger(__name__)

_MIN_PORT = 1
_MAX_PORT = 65535
_DOMAIN_ENV_VARS = ("COMMIT_NOTIFIER_WORKING_DIR", "COMMIT_NOTIFIER_DATABASE_URL")


def _parse_port(port_str: str) -> int:
    """Parse and validate a port number string.

    Raises
    ------
    SystemExit
        If port_str is not a valid integer in range 1-65535.

    """
    try:
        port = int(port_str)
        if not (_MIN_PORT <= port <= _MAX_PORT):
            msg = f"port {port} outside valid range {_MIN_PORT}-{_MAX_PORT}"
            raise ValueError(msg)  # noqa: TRY301 - unify conversion and range errors
    except ValueError as exc:
        log_error(
            logger,
            "Invalid COMMIT_NOTIFIER_PORT value: %r (must be %d-%d): %s",
            port_str,
            _MIN_PORT,
            _MAX_PORT,
            exc,
        )
        raise SystemExit(1) from exc
    return port


def _domain_configured() -> bool:
    return any(os.environ.get(name, "").strip() for name in _DOMAIN_ENV_VARS)


def create_app() -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    from commit_notifier.api.app import create_app as _create_api_app

    if not _domain_configured():
        return _create_api_app()

    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from commit_notifier.api.app import AppDependencies
    from commit_notifier.api.lifecycle import ServiceLifecycle
    from commit_notifier.cycle import CycleConfig
    from commit_notifier.factory import database_url_from_env, wire_services

    config = CycleConfig.from_env()
    engine = create_async_engine(database_url_from_env(config.working_dir))
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    services = wire_services(session_factory, config=config)

    deps = AppDependencies(
        coordinator=services.coordinator,
        settings_store=services.settings_store,
        state_store=services.state_store,
        middleware=(ServiceLifecycle(services, engine),),
    )
    return _create_api_app(deps)


def main() -> None:
    """Start the commit-notifier runtime server using Granian.

    Reads ``COMMIT_NOTIFIER_HOST``, ``COMMIT_NOTIFIER_PORT``, and
    ``COMMIT_NOTIFIER_LOG_LEVEL`` from the environment and starts the ASGI
    server.
    """
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("COMMIT_NOTIFIER_HOST", "0.0.0.0")  # noqa: S104 - bind all interfaces for container
    port_str = os.environ.get("COMMIT_NOTIFIER_PORT", "8080")
    port = _parse_port(port_str)
    log_level_str = os.environ.get("COMMIT_NOTIFIER_LOG_LEVEL", "INFO")

    normalized_level, invalid_level = configure_logging(log_level_str)
    if invalid_level:
        log_warning(
            logger,
            "Invalid COMMIT_NOTIFIER_LOG_LEVEL %r, falling back to %s",
            log_level_str,
            normalized_level,
        )

    log_info(
        logger,
        "Starting commit-notifier runtime on %s:%d (log_level=%s)",
        host,
        port,
        normalized_level,
    )

    server = Granian(
        "commit_notifier.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    )
    server.serve()


if __name__ == "__main__":
    main()
