"""Notification delivery errors."""

from __future__ import annotations


class DispatchError(RuntimeError):
    """Raised when a sink cannot attempt delivery at all.

    Failures affecting a single subscriber are reported through
    :class:`~commit_notifier.notify.sink.DeliveryOutcome` instead.
    """

    @classmethod
    def unavailable(cls, sink: str, detail: str) -> DispatchError:
        """Return an error for a sink whose backend cannot be reached."""
        return cls(f"{sink} unavailable: {detail}")


class SinkConfigError(RuntimeError):
    """Raised when a notification sink is misconfigured."""

    @classmethod
    def missing_token(cls, env_var: str) -> SinkConfigError:
        """Return an error for a sink whose credential is not set."""
        return cls(f"{env_var} must be set to a non-empty bot token")


__all__ = ["DispatchError", "SinkConfigError"]
