"""GitHub pull request lookups and notification enrichment."""

from .client import (
    GitHubClientConfig,
    GitHubPullRequestClient,
    PullRequestLookup,
    PullRequestStatus,
)
from .enrichment import (
    Enrichment,
    MergeStatusResolver,
    describe_status,
    pull_request_number,
    render_watch_message,
)
from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError

__all__ = [
    "Enrichment",
    "GitHubAPIError",
    "GitHubClientConfig",
    "GitHubConfigError",
    "GitHubPullRequestClient",
    "GitHubResponseShapeError",
    "MergeStatusResolver",
    "PullRequestLookup",
    "PullRequestStatus",
    "describe_status",
    "pull_request_number",
    "render_watch_message",
]
