"""Mutual exclusion primitives for the check cycle and repository mirrors.

Two guarantees are enforced here:

- only one check cycle runs at a time; a request arriving while a cycle is in
  flight is dropped rather than queued (:class:`CycleGuard`);
- one local clone is never touched by two operations at once, whether they
  come from the scheduled cycle, a forced check or an admin command
  (:class:`KeyedLockPool`).

Usage
-----
>>> guard = CycleGuard(Path("/var/lib/commit-notifier/cycle.lock"))
>>> async with guard.enter() as acquired:
...     if acquired:
...         await run_cycle()

"""

from __future__ import annotations

import asyncio
import contextlib
import fcntl
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path


class KeyedLockPool:
    """Hand out one ``asyncio.Lock`` per key, discarding idle locks."""

    def __init__(self) -> None:
        """Start with no locks allocated."""
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def is_locked(self, key: str) -> bool:
        """Return True when some task currently holds the lock for ``key``."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        """Return the number of keys with a live lock."""
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> cabc.AsyncIterator[None]:
        """Wait for and hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._holders[key] - 1
            if remaining:
                self._holders[key] = remaining
            else:
                del self._holders[key]
                del self._locks[key]


class AdvisoryFileLock:
    """Non-blocking exclusive ``flock`` on a file.

    The lock belongs to the open file description, so two instances pointing
    at the same path exclude each other even inside one process.
    """

    def __init__(self, path: Path) -> None:
        """Remember the lock file location; nothing is opened yet."""
        self._path = path
        self._handle: typ.IO[str] | None = None

    @property
    def path(self) -> Path:
        """Return the lock file path."""
        return self._path

    @property
    def held(self) -> bool:
        """Return True while this instance holds the lock."""
        return self._handle is not None

    def try_acquire(self) -> bool:
        """Attempt to take the lock without blocking."""
        if self._handle is not None:
            return False
        self._path.parent.mkdir(parents=True, exist_ok=True)
        handle = self._path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            return False
        self._handle = handle
        return True

    def release(self) -> None:
        """Release the lock if held."""
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()


class CycleGuard:
    """Single-flight guard for check cycles.

    Parameters
    ----------
    lock_path
        Optional advisory lock file shared with other processes using the
        same working directory. When ``None`` only in-process exclusion is
        enforced.

    """

    def __init__(self, lock_path: Path | None = None) -> None:
        """Create the in-process lock and the optional file lock."""
        self._lock = asyncio.Lock()
        self._file_lock = AdvisoryFileLock(lock_path) if lock_path else None

    @property
    def busy(self) -> bool:
        """Return True while a cycle holds the guard in this process."""
        return self._lock.locked()

    @contextlib.asynccontextmanager
    async def enter(self) -> cabc.AsyncIterator[bool]:
        """Try to enter the guarded section without waiting.

        Yields
        ------
        bool
            ``True`` when the caller owns the cycle, ``False`` when another
            cycle is already running and the request must be dropped.

        """
        if self._lock.locked():
            yield False
            return

        async with self._lock:
            file_lock = self._file_lock
            if file_lock is not None and not file_lock.try_acquire():
                yield False
                return
            try:
                yield True
            finally:
                if file_lock is not None:
                    file_lock.release()


__all__ = ["AdvisoryFileLock", "CycleGuard", "KeyedLockPool"]
