"""Configuration for check cycles.

Usage
-----
Create a configuration with defaults:

>>> config = CycleConfig()
>>> config.max_commits_per_branch
50

Or load from environment variables:

>>> import os
>>> os.environ["COMMIT_NOTIFIER_MAX_COMMITS_PER_BRANCH"] = "20"
>>> CycleConfig.from_env().max_commits_per_branch
20

"""

from __future__ import annotations

import dataclasses as dc
import os
from pathlib import Path

_DEFAULT_WORKING_DIR = Path("data")
_DEFAULT_MAX_COMMITS_PER_BRANCH = 50
_DEFAULT_MAX_CONCURRENT_REPOSITORIES = 4
_DEFAULT_CHECK_INTERVAL_S = 300
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dc.dataclass(frozen=True, slots=True)
class CycleConfig:
    """Configuration for the check cycle coordinator.

    Attributes
    ----------
    working_dir
        Root of all disk-resident state: ``mirrors/`` holds the bare clones,
        ``repositories/`` the settings files, ``cycle.lock`` the advisory
        lock file.
    max_commits_per_branch
        Upper bound on new commits reported for one branch in one cycle.
        Older commits beyond the bound are dropped with a warning.
    max_concurrent_repositories
        Number of repositories synced and evaluated in parallel.
    cycle_lock_file
        When True, cycles also take an advisory file lock so that two
        processes sharing ``working_dir`` never run concurrently.
    check_interval_s
        Delay between scheduled cycles.

    """

    working_dir: Path = _DEFAULT_WORKING_DIR
    max_commits_per_branch: int = _DEFAULT_MAX_COMMITS_PER_BRANCH
    max_concurrent_repositories: int = _DEFAULT_MAX_CONCURRENT_REPOSITORIES
    cycle_lock_file: bool = True
    check_interval_s: int = _DEFAULT_CHECK_INTERVAL_S

    @property
    def mirrors_dir(self) -> Path:
        """Return the directory holding the bare clones."""
        return self.working_dir / "mirrors"

    @property
    def lock_path(self) -> Path | None:
        """Return the advisory lock file, or None when disabled."""
        return self.working_dir / "cycle.lock" if self.cycle_lock_file else None

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @classmethod
    def from_env(cls) -> CycleConfig:
        """Create configuration from environment variables.

        Reads the following environment variables:

        - ``COMMIT_NOTIFIER_WORKING_DIR``: State directory.
        - ``COMMIT_NOTIFIER_MAX_COMMITS_PER_BRANCH``: Positive integer.
        - ``COMMIT_NOTIFIER_MAX_CONCURRENT_REPOSITORIES``: Positive integer.
        - ``COMMIT_NOTIFIER_CYCLE_LOCK_FILE``: ``0``/``false``/``no``/``off``
          disables the advisory lock file.
        - ``COMMIT_NOTIFIER_CHECK_INTERVAL``: Seconds between scheduled
          cycles, positive integer.

        Raises
        ------
        ValueError
            If a numeric variable is not a positive integer.

        """
        working_dir = _DEFAULT_WORKING_DIR
        raw_dir = os.environ.get("COMMIT_NOTIFIER_WORKING_DIR", "")
        if raw_dir.strip():
            working_dir = Path(raw_dir.strip())

        raw_lock = os.environ.get("COMMIT_NOTIFIER_CYCLE_LOCK_FILE", "")
        cycle_lock_file = raw_lock.strip().lower() not in _FALSE_VALUES

        return cls(
            working_dir=working_dir,
            max_commits_per_branch=cls._parse_positive_int(
                "COMMIT_NOTIFIER_MAX_COMMITS_PER_BRANCH",
                _DEFAULT_MAX_COMMITS_PER_BRANCH,
            ),
            max_concurrent_repositories=cls._parse_positive_int(
                "COMMIT_NOTIFIER_MAX_CONCURRENT_REPOSITORIES",
                _DEFAULT_MAX_CONCURRENT_REPOSITORIES,
            ),
            cycle_lock_file=cycle_lock_file,
            check_interval_s=cls._parse_positive_int(
                "COMMIT_NOTIFIER_CHECK_INTERVAL", _DEFAULT_CHECK_INTERVAL_S
            ),
        )


__all__ = ["CycleConfig"]
