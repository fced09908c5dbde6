"""commit-notifier HTTP API layer.

This package provides the Falcon ASGI application exposing health probes,
on-demand check cycles, and the last committed branch state.

Usage
-----
Create and run the application::

    from commit_notifier.api import create_app

    app = create_app()              # health-only mode
    app = create_app(dependencies)  # full mode with cycle endpoints
"""

from commit_notifier.api.app import AppDependencies, create_app

__all__ = ["AppDependencies", "create_app"]
