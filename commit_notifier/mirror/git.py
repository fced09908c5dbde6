"""Thin wrapper around the git executable.

Every invocation runs in a worker thread with a hard timeout and without
terminal prompts, so an unreachable or credential-hungry remote can only
ever cost one timeout, never a hung cycle.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
import typing as typ

from .errors import MirrorError

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "permission denied (publickey)",
    "http basic: access denied",
    "repository not found",
)
_CORRUPT_MARKERS = (
    "not a git repository",
    "corrupt",
    "bad object",
    "loose object",
    "unable to read",
    "bad config",
    "broken link",
    "missing blob",
)
_GIT_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "",
    "SSH_ASKPASS": "",
    "GIT_NO_LAZY_FETCH": "1",
    "LC_ALL": "C",
}


def classify_failure(repository: str, stderr: str) -> MirrorError:
    """Map git's stderr to the matching :class:`MirrorError`.

    Anything that is neither an authentication nor a local corruption
    problem is treated as a network failure.

    Examples
    --------
    >>> classify_failure("r", "fatal: Authentication failed for 'x'").kind
    <MirrorErrorKind.AUTH_REQUIRED: 'auth_required'>

    """
    detail = stderr.strip().splitlines()[-1] if stderr.strip() else "git failed"
    lowered = stderr.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return MirrorError.auth_required(repository, detail)
    if any(marker in lowered for marker in _CORRUPT_MARKERS):
        return MirrorError.corrupt_clone(repository, detail)
    return MirrorError.network(repository, detail)


class GitRunner:
    """Run git commands off the event loop with a bounded duration."""

    def __init__(self, *, timeout_s: float, executable: str | None = None) -> None:
        """Resolve the git executable and capture the command timeout.

        Raises
        ------
        FileNotFoundError
            If no git executable is available on ``PATH``.

        """
        resolved = executable or shutil.which("git")
        if resolved is None:
            message = "git executable not found on PATH"
            raise FileNotFoundError(message)
        self._executable = resolved
        self._timeout_s = timeout_s
        self._env = {**os.environ, **_GIT_ENV}

    @property
    def timeout_s(self) -> float:
        """Return the per-command timeout in seconds."""
        return self._timeout_s

    def _invoke(
        self, args: cabc.Sequence[str], repository: str, git_dir: Path | None
    ) -> subprocess.CompletedProcess[str]:
        argv = [self._executable]
        if git_dir is not None:
            argv.append(f"--git-dir={git_dir}")
        argv.extend(args)
        try:
            return subprocess.run(  # noqa: S603  # argv built from fixed git verbs
                argv,
                check=False,
                capture_output=True,
                text=True,
                timeout=self._timeout_s,
                env=self._env,
            )
        except subprocess.TimeoutExpired as exc:
            raise MirrorError.timeout(repository, self._timeout_s) from exc

    async def probe(
        self,
        args: cabc.Sequence[str],
        *,
        repository: str,
        git_dir: Path | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a command whose exit status is itself the answer."""
        return await asyncio.to_thread(self._invoke, args, repository, git_dir)

    async def run(
        self,
        args: cabc.Sequence[str],
        *,
        repository: str,
        git_dir: Path | None = None,
    ) -> str:
        """Run a command and return its stdout.

        Raises
        ------
        MirrorError
            If git exits non-zero or exceeds the timeout.

        """
        result = await self.probe(args, repository=repository, git_dir=git_dir)
        if result.returncode != 0:
            raise classify_failure(repository, result.stderr)
        return result.stdout


__all__ = ["GitRunner", "classify_failure"]
