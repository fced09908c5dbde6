"""Typed repository, condition, and subscription settings."""

from __future__ import annotations

import msgspec

from commit_notifier.common.names import github_slug_from_url, parse_github_slug


class GitHubInfo(msgspec.Struct, kw_only=True, frozen=True):
    """GitHub coordinates used for commit links and pull request lookups.

    Attributes
    ----------
    owner : str
        GitHub owner or organisation.
    repo : str
        Repository name on GitHub.

    """

    owner: str
    repo: str

    @property
    def slug(self) -> str:
        """Return the ``owner/repo`` identifier."""
        return f"{self.owner}/{self.repo}"

    @classmethod
    def parse(cls, slug: str) -> GitHubInfo:
        """Build from an ``owner/repo`` slug, raising ValueError when malformed."""
        owner, repo = parse_github_slug(slug)
        return cls(owner=owner, repo=repo)

    @classmethod
    def from_url(cls, url: str) -> GitHubInfo | None:
        """Infer GitHub coordinates from a github.com clone URL."""
        parsed = github_slug_from_url(url)
        if parsed is None:
            return None
        owner, repo = parsed
        return cls(owner=owner, repo=repo)


class InBranch(
    msgspec.Struct, kw_only=True, frozen=True, tag="InBranch", tag_field="kind"
):
    """Notify when a new commit appears on a branch matching ``branch_regex``."""

    branch_regex: str


class SuppressFromTo(
    msgspec.Struct,
    kw_only=True,
    frozen=True,
    tag="SuppressFromTo",
    tag_field="kind",
):
    """Announce commits reaching ``to_regex`` branches unless seen on ``from_regex``.

    Attributes
    ----------
    from_regex : str
        Branches whose prior knowledge of a commit silences this condition.
    to_regex : str
        Branches this condition watches.

    """

    from_regex: str
    to_regex: str


ConditionVariant = InBranch | SuppressFromTo


class ConditionSettings(msgspec.Struct, kw_only=True, frozen=True):
    """Named condition entry wrapping the tagged condition variant."""

    condition: ConditionVariant


class RepositorySettings(msgspec.Struct, kw_only=True, frozen=True):
    """Settings for one tracked repository.

    Attributes
    ----------
    url : str
        Remote location passed to ``git clone``.
    branch_regex : str
        Pattern that must match a whole branch name for it to be tracked.
    github_info : GitHubInfo, optional
        GitHub coordinates for links and pull request enrichment.
    conditions : dict[str, ConditionSettings]
        Conditions keyed by name, in evaluation order.

    """

    url: str
    branch_regex: str
    github_info: GitHubInfo | None = None
    conditions: dict[str, ConditionSettings] = msgspec.field(default_factory=dict)


class Subscriber(msgspec.Struct, kw_only=True, frozen=True, order=True):
    """Chat endpoint receiving notifications.

    Attributes
    ----------
    chat_id : str
        Transport-level chat identifier.
    username : str, optional
        Handle mentioned in rendered messages when present.

    """

    chat_id: str
    username: str | None = None


class Subscription(msgspec.Struct, kw_only=True, frozen=True):
    """Subscription of a chat to some or all conditions of a repository.

    An empty ``conditions`` list subscribes to every condition.
    """

    repository: str
    subscriber: Subscriber
    conditions: tuple[str, ...] = ()


class PullRequestWatch(msgspec.Struct, kw_only=True, frozen=True):
    """Request by a chat to hear once a pull request merges or closes.

    Attributes
    ----------
    repository : str
        Tracked repository the pull request belongs to.
    identifier : str
        Pull request number.
    subscriber : Subscriber
        Chat notified when the pull request reaches a terminal state.

    """

    repository: str
    identifier: str
    subscriber: Subscriber


class ServiceDocument(msgspec.Struct, kw_only=True):
    """Declarative YAML document describing repositories and subscriptions."""

    version: int = 1
    repositories: dict[str, RepositorySettings] = msgspec.field(default_factory=dict)
    subscriptions: list[Subscription] = msgspec.field(default_factory=list)


__all__ = [
    "ConditionSettings",
    "ConditionVariant",
    "GitHubInfo",
    "InBranch",
    "PullRequestWatch",
    "RepositorySettings",
    "ServiceDocument",
    "Subscriber",
    "Subscription",
    "SuppressFromTo",
]
