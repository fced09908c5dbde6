"""Triggers for check cycles: the periodic scheduler and the Dramatiq actor."""

from .scheduler import CheckScheduler

__all__ = ["CheckScheduler"]
