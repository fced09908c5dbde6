"""Local bare clones of tracked repositories.

Each tracked repository owns one bare clone under the mirror root, reused
from cycle to cycle::

    {root}/{name}.git

The mirror only ever clones, fetches and reads. Remote-tracking refs under
``refs/remotes/origin/`` are the source of branch heads; ``origin/HEAD`` is
never reported as a branch.

Usage
-----
>>> mirror = RepositoryMirror(Path("/var/lib/commit-notifier/mirrors"))
>>> async with mirror.open("nixpkgs") as handle:
...     heads = await handle.sync(settings)

"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses as dc
import os
import re
import shutil
import typing as typ

from commit_notifier.locking import KeyedLockPool
from commit_notifier.logging import get_logger, log_info, log_warning

from .errors import MirrorError, MirrorErrorKind
from .git import GitRunner, classify_failure

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from commit_notifier.settings.models import RepositorySettings

logger = get_logger(__name__)

_REMOTE_PREFIX = "refs/remotes/origin/"
_FIELD_SEPARATOR = "\x1f"
_NOT_ANCESTOR_STATUS = 1
_DEFAULT_GIT_TIMEOUT_S = 120.0
_DEFAULT_CLONE_FILTER = "tree:0"


@dc.dataclass(frozen=True, slots=True)
class MirrorConfig:
    """Tuning for git access.

    Attributes
    ----------
    git_timeout_s
        Upper bound for any single git command, fetches included. A command
        exceeding it fails the repository with a network error.
    clone_filter
        Partial clone filter passed to ``git clone --filter``. ``tree:0``
        downloads commits only, which is all branch tracking needs. ``None``
        performs a full clone.

    """

    git_timeout_s: float = _DEFAULT_GIT_TIMEOUT_S
    clone_filter: str | None = _DEFAULT_CLONE_FILTER

    @classmethod
    def from_env(cls) -> MirrorConfig:
        """Build configuration from environment variables.

        Reads ``COMMIT_NOTIFIER_GIT_TIMEOUT`` (positive seconds) and
        ``COMMIT_NOTIFIER_CLONE_FILTER`` (an empty value disables filtering).

        Raises
        ------
        ValueError
            If the timeout is not a positive number.

        """
        raw_timeout = os.environ.get("COMMIT_NOTIFIER_GIT_TIMEOUT", "").strip()
        timeout = _DEFAULT_GIT_TIMEOUT_S
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError as exc:
                msg = (
                    "COMMIT_NOTIFIER_GIT_TIMEOUT must be a number, "
                    f"got: {raw_timeout!r}"
                )
                raise ValueError(msg) from exc
            if timeout <= 0:
                msg = f"COMMIT_NOTIFIER_GIT_TIMEOUT must be positive, got: {timeout}"
                raise ValueError(msg)

        clone_filter: str | None = _DEFAULT_CLONE_FILTER
        raw_filter = os.environ.get("COMMIT_NOTIFIER_CLONE_FILTER")
        if raw_filter is not None:
            clone_filter = raw_filter.strip() or None

        return cls(git_timeout_s=timeout, clone_filter=clone_filter)


@dc.dataclass(frozen=True, slots=True, order=True)
class BranchHead:
    """Tracked branch and the commit it currently points at."""

    branch: str
    commit_id: str


@dc.dataclass(frozen=True, slots=True)
class CommitInfo:
    """Commit id with its subject line."""

    commit_id: str
    subject: str


class RepositoryMirror:
    """Manage the bare clones under a root directory."""

    def __init__(
        self,
        root: Path,
        config: MirrorConfig | None = None,
        *,
        runner: GitRunner | None = None,
    ) -> None:
        """Configure the mirror root, git access, and per-repository locks."""
        self._root = root
        self._config = config or MirrorConfig()
        self._runner = runner or GitRunner(timeout_s=self._config.git_timeout_s)
        self._locks = KeyedLockPool()

    @property
    def root(self) -> Path:
        """Return the directory holding the clones."""
        return self._root

    @property
    def config(self) -> MirrorConfig:
        """Return the git access configuration."""
        return self._config

    @property
    def runner(self) -> GitRunner:
        """Return the git runner shared by every handle."""
        return self._runner

    def clone_path(self, name: str) -> Path:
        """Return the clone directory used for repository ``name``."""
        return self._root / f"{name}.git"

    def is_busy(self, name: str) -> bool:
        """Return True while some operation holds repository ``name``."""
        return self._locks.is_locked(name)

    @contextlib.asynccontextmanager
    async def open(self, name: str) -> cabc.AsyncIterator[MirrorHandle]:
        """Hold exclusive access to one clone for the duration of the block."""
        async with self._locks.hold(name):
            yield MirrorHandle(self, name)


class MirrorHandle:
    """Operations on one clone; valid only inside :meth:`RepositoryMirror.open`."""

    def __init__(self, mirror: RepositoryMirror, name: str) -> None:
        """Bind the handle to ``name`` within ``mirror``."""
        self._mirror = mirror
        self._runner = mirror.runner
        self.name = name
        self.path = mirror.clone_path(name)

    async def _git(self, *args: str) -> str:
        return await self._runner.run(args, repository=self.name, git_dir=self.path)

    async def sync(self, settings: RepositorySettings) -> tuple[BranchHead, ...]:
        """Bring the clone up to date and return the tracked branch heads.

        A corrupt clone is discarded and cloned again once before the
        failure is reported.

        Parameters
        ----------
        settings
            Repository settings providing the remote URL and branch regex.

        Returns
        -------
        tuple[BranchHead, ...]
            Heads of branches fully matching ``branch_regex``, sorted by name.

        Raises
        ------
        MirrorError
            If the remote cannot be fetched, or the clone is still unusable
            after one rebuild.

        """
        try:
            return await self._sync_once(settings)
        except MirrorError as exc:
            if exc.kind is not MirrorErrorKind.CORRUPT_CLONE:
                raise
            log_warning(
                logger,
                "Rebuilding corrupt clone for %s at %s: %s",
                self.name,
                self.path,
                exc,
            )
            await self.remove()
            return await self._sync_once(settings)

    async def _sync_once(
        self, settings: RepositorySettings
    ) -> tuple[BranchHead, ...]:
        if await asyncio.to_thread(self.path.exists):
            await self._git("rev-parse", "--git-dir")
            await self._git("remote", "set-url", "origin", settings.url)
            await self._git("fetch", "--prune", "--no-tags", "origin")
        else:
            await self._clone(settings.url)
        return await self.branch_heads(settings.branch_regex)

    async def _clone(self, url: str) -> None:
        await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
        args = ["clone", "--bare", "--no-tags"]
        clone_filter = self._mirror.config.clone_filter
        if clone_filter:
            args.append(f"--filter={clone_filter}")
        args.extend([url, str(self.path)])
        try:
            await self._runner.run(args, repository=self.name)
            await self._git(
                "config", "remote.origin.fetch", "+refs/heads/*:refs/remotes/origin/*"
            )
            await self._git("fetch", "--prune", "--no-tags", "origin")
        except MirrorError as exc:
            await self.remove()
            if exc.kind is MirrorErrorKind.CORRUPT_CLONE:
                # Corruption during a fresh clone originates at the remote.
                raise MirrorError.network(self.name, str(exc)) from exc
            raise
        log_info(logger, "Cloned %s into %s", self.name, self.path)

    async def branch_heads(self, branch_regex: str) -> tuple[BranchHead, ...]:
        """Return remote-tracking heads whose branch name fully matches."""
        pattern = re.compile(branch_regex)
        output = await self._git(
            "for-each-ref", "--format=%(objectname) %(refname)", _REMOTE_PREFIX
        )
        heads: list[BranchHead] = []
        for line in output.splitlines():
            commit_id, _, refname = line.partition(" ")
            branch = refname.removeprefix(_REMOTE_PREFIX)
            if branch == "HEAD" or not pattern.fullmatch(branch):
                continue
            heads.append(BranchHead(branch=branch, commit_id=commit_id))
        return tuple(sorted(heads))

    async def has_commit(self, commit_id: str) -> bool:
        """Return True when ``commit_id`` names a commit present in the clone."""
        result = await self._runner.probe(
            ["cat-file", "-e", f"{commit_id}^{{commit}}"],
            repository=self.name,
            git_dir=self.path,
        )
        return result.returncode == 0

    async def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Return True when ``ancestor`` is reachable from ``descendant``."""
        result = await self._runner.probe(
            ["merge-base", "--is-ancestor", ancestor, descendant],
            repository=self.name,
            git_dir=self.path,
        )
        if result.returncode == 0:
            return True
        if result.returncode == _NOT_ANCESTOR_STATUS:
            return False
        raise classify_failure(self.name, result.stderr)

    async def new_commits(
        self,
        head: str,
        exclude: cabc.Iterable[str] = (),
        *,
        limit: int | None = None,
    ) -> list[CommitInfo]:
        """List commits reachable from ``head`` but not from ``exclude``.

        Commits are returned newest first. ``limit`` caps the number
        returned.
        """
        args = ["log", f"--format=%H{_FIELD_SEPARATOR}%s"]
        if limit is not None:
            args.append(f"--max-count={limit}")
        args.append(head)
        excluded = list(exclude)
        if excluded:
            args.extend(["--not", *excluded])
        args.append("--")
        output = await self._git(*args)
        commits: list[CommitInfo] = []
        for line in output.splitlines():
            commit_id, _, subject = line.partition(_FIELD_SEPARATOR)
            commits.append(CommitInfo(commit_id=commit_id, subject=subject))
        return commits

    async def rev_list(
        self, head: str, exclude: cabc.Iterable[str] = ()
    ) -> frozenset[str]:
        """Return ids of commits reachable from ``head`` but not from ``exclude``."""
        args = ["rev-list", head]
        excluded = list(exclude)
        if excluded:
            args.extend(["--not", *excluded])
        args.append("--")
        output = await self._git(*args)
        return frozenset(output.split())

    async def remove(self) -> None:
        """Delete the clone directory."""
        await asyncio.to_thread(shutil.rmtree, self.path, ignore_errors=True)


__all__ = [
    "BranchHead",
    "CommitInfo",
    "MirrorConfig",
    "MirrorHandle",
    "RepositoryMirror",
]
