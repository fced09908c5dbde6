"""Periodic trigger for check cycles."""

from __future__ import annotations

import asyncio
import typing as typ

from commit_notifier.logging import get_logger, log_exception, log_info

if typ.TYPE_CHECKING:
    from commit_notifier.cycle import CheckCycleCoordinator, CycleResult

logger = get_logger(__name__)


class CheckScheduler:
    """Run check cycles on a fixed interval until stopped.

    A tick that finds a cycle still running is dropped by the coordinator's
    cycle guard, so overlapping triggers never queue up.
    """

    def __init__(
        self, coordinator: CheckCycleCoordinator, interval_s: float
    ) -> None:
        """Bind the scheduler to ``coordinator`` with a positive interval."""
        if interval_s <= 0:
            msg = f"interval must be positive, got {interval_s}"
            raise ValueError(msg)
        self._coordinator = coordinator
        self._interval_s = interval_s
        self.ticks = 0

    @property
    def interval_s(self) -> float:
        """Return the delay between cycles in seconds."""
        return self._interval_s

    async def tick(self) -> CycleResult:
        """Run one cycle immediately."""
        self.ticks += 1
        return await self._coordinator.run_check_cycle()

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Run cycles until ``stop`` is set, or forever without one.

        Failures escaping a cycle are logged and the loop continues with the
        next tick.
        """
        stop = stop or asyncio.Event()
        log_info(logger, "Scheduling check cycles every %.1fs", self._interval_s)
        while not stop.is_set():
            try:
                await self.tick()
            except Exception as exc:  # noqa: BLE001 - keep the schedule alive
                log_exception(logger, "Check cycle failed", exc)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval_s)
            except TimeoutError:
                continue


__all__ = ["CheckScheduler"]
