"""Pull request enrichment for notification messages.

Commit subjects that reference a pull request are resolved to the pull
request's merge status. Terminal statuses (merged or closed) are served
from the persistent cache; open ones are refetched every cycle. Lookup
failures fall back to whatever the cache holds, so enrichment can go
missing but never changes which notifications are sent.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import re
import typing as typ

from commit_notifier.common.time import utcnow
from commit_notifier.conditions.messages import short_id
from commit_notifier.logging import get_logger, log_warning
from commit_notifier.state.errors import StoreError
from commit_notifier.state.store import MergeState, MergeStatusEntry

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError

if typ.TYPE_CHECKING:
    from commit_notifier.settings.models import GitHubInfo
    from commit_notifier.state.store import StateStore

    from .client import PullRequestLookup

logger = get_logger(__name__)

_PULL_REQUEST_PATTERNS = (
    re.compile(r"^Merge pull request #(?P<number>\d+)\b"),
    re.compile(r"\(#(?P<number>\d+)\)\s*$"),
)


def pull_request_number(subject: str) -> str | None:
    """Return the pull request number referenced by a commit subject.

    Recognises GitHub merge commits (``Merge pull request #123 from ...``)
    and squash merges with a trailing ``(#123)``.

    Examples
    --------
    >>> pull_request_number("Merge pull request #42 from octo/fix")
    '42'
    >>> pull_request_number("python3: 3.12.3 -> 3.12.4 (#310)")
    '310'
    >>> pull_request_number("fix typo") is None
    True

    """
    for pattern in _PULL_REQUEST_PATTERNS:
        match = pattern.search(subject)
        if match is not None:
            return match.group("number")
    return None


def describe_status(entry: MergeStatusEntry) -> str:
    """Render the one-line enrichment for a resolved pull request."""
    match entry.state:
        case MergeState.MERGED if entry.merge_commit:
            return f"PR #{entry.identifier} merged as {short_id(entry.merge_commit)}"
        case MergeState.MERGED:
            return f"PR #{entry.identifier} merged"
        case MergeState.OPEN:
            return f"PR #{entry.identifier} open"
        case MergeState.CLOSED:
            return f"PR #{entry.identifier} closed"


def pull_request_url(github_info: GitHubInfo, identifier: str) -> str:
    """Return the github.com page for pull request ``identifier``."""
    return f"https://github.com/{github_info.slug}/pull/{identifier}"


def render_watch_message(
    repository: str, entry: MergeStatusEntry, github_info: GitHubInfo | None = None
) -> str:
    """Render the message telling watchers that a pull request settled.

    Examples
    --------
    >>> print(render_watch_message("nixpkgs", entry, info))  # doctest: +SKIP
    [nixpkgs] PR #310 merged as 0f3c1a2b4d5e
    https://github.com/NixOS/nixpkgs/pull/310

    """
    lines = [f"[{repository}] {describe_status(entry)}"]
    if github_info is not None:
        lines.append(pull_request_url(github_info, entry.identifier))
    return "\n".join(lines)


@dc.dataclass(frozen=True, slots=True)
class Enrichment:
    """Statuses resolved for one repository and the cache entries to persist."""

    statuses: cabc.Mapping[str, MergeStatusEntry] = dc.field(default_factory=dict)
    cache_updates: tuple[MergeStatusEntry, ...] = ()

    def line_for(self, identifier: str | None) -> str | None:
        """Return the enrichment line for ``identifier`` when it was resolved."""
        if identifier is None:
            return None
        entry = self.statuses.get(identifier)
        return describe_status(entry) if entry is not None else None


class MergeStatusResolver:
    """Resolve pull request statuses through the cache and a lookup port."""

    def __init__(
        self, state_store: StateStore, lookup: PullRequestLookup | None = None
    ) -> None:
        """Bind the resolver to the state store and an optional lookup."""
        self._state_store = state_store
        self._lookup = lookup

    async def resolve(
        self,
        repository: str,
        github_info: GitHubInfo | None,
        identifiers: cabc.Iterable[str],
    ) -> Enrichment:
        """Resolve every identifier referenced by this cycle's commits.

        Parameters
        ----------
        repository
            Tracked repository name, used as the cache namespace.
        github_info
            GitHub coordinates; without them no lookups are attempted and
            only cached statuses are used.
        identifiers
            Pull request numbers, duplicates allowed.

        Returns
        -------
        Enrichment
            Resolved statuses plus freshly fetched entries, which the caller
            commits together with the cycle's branch updates.

        """
        statuses: dict[str, MergeStatusEntry] = {}
        updates: list[MergeStatusEntry] = []
        for identifier in dict.fromkeys(identifiers):
            cached = await self._cached(repository, identifier)
            if cached is not None and cached.state.terminal:
                statuses[identifier] = cached
                continue
            fetched = await self._fetch(repository, github_info, identifier)
            if fetched is not None:
                updates.append(fetched)
                statuses[identifier] = fetched
            elif cached is not None:
                statuses[identifier] = cached
        return Enrichment(statuses=statuses, cache_updates=tuple(updates))

    async def _cached(
        self, repository: str, identifier: str
    ) -> MergeStatusEntry | None:
        try:
            return await self._state_store.merge_status(repository, identifier)
        except StoreError as exc:
            log_warning(
                logger,
                "Merge status cache unreadable for %s PR #%s: %s",
                repository,
                identifier,
                exc,
            )
            return None

    async def _fetch(
        self,
        repository: str,
        github_info: GitHubInfo | None,
        identifier: str,
    ) -> MergeStatusEntry | None:
        if self._lookup is None or github_info is None:
            return None
        try:
            status = await self._lookup.resolve_pr_status(
                github_info.owner, github_info.repo, identifier
            )
        except (
            GitHubAPIError,
            GitHubConfigError,
            GitHubResponseShapeError,
        ) as exc:
            log_warning(
                logger,
                "Pull request lookup failed for %s PR #%s: %s",
                github_info.slug,
                identifier,
                exc,
            )
            return None
        return MergeStatusEntry(
            repository=repository,
            identifier=identifier,
            state=status.state,
            merge_commit=status.merge_commit,
            fetched_at=utcnow(),
        )


__all__ = [
    "Enrichment",
    "MergeStatusResolver",
    "describe_status",
    "pull_request_number",
    "pull_request_url",
    "render_watch_message",
]
