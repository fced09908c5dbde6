"""Plain-text rendering of notification messages."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from commit_notifier.settings.models import GitHubInfo

    from .models import CommitObservation

SHORT_ID_LENGTH = 12


def short_id(commit_id: str) -> str:
    """Return the abbreviated form of a commit id used in messages."""
    return commit_id[:SHORT_ID_LENGTH]


def commit_url(github_info: GitHubInfo, commit_id: str) -> str:
    """Return the github.com page for ``commit_id``."""
    return f"https://github.com/{github_info.slug}/commit/{commit_id}"


def render_event_message(
    observation: CommitObservation,
    condition: str,
    github_info: GitHubInfo | None = None,
) -> str:
    """Render the message announcing ``observation`` for ``condition``.

    Examples
    --------
    >>> print(render_event_message(observation, "release"))  # doctest: +SKIP
    [nixpkgs] release: 0f3c1a2b4d5e on release-24.05
    python3: 3.12.3 -> 3.12.4

    """
    lines = [
        f"[{observation.repository}] {condition}: "
        f"{short_id(observation.commit_id)} on {observation.branch}"
    ]
    if observation.subject:
        lines.append(observation.subject)
    if github_info is not None:
        lines.append(commit_url(github_info, observation.commit_id))
    return "\n".join(lines)


def append_line(message: str, line: str) -> str:
    """Return ``message`` with ``line`` appended on its own line."""
    return f"{message}\n{line}"


__all__ = [
    "SHORT_ID_LENGTH",
    "append_line",
    "commit_url",
    "render_event_message",
    "short_id",
]
