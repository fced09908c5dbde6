"""GitHub REST lookups used to enrich notifications with pull request status."""

from __future__ import annotations

import dataclasses
import os
import typing as typ

import httpx
import msgspec

from commit_notifier.state.store import MergeState

from .errors import GitHubAPIError, GitHubConfigError, GitHubResponseShapeError

_HTTP_ERROR_STATUS_THRESHOLD = 400
_API_VERSION = "2022-11-28"


@dataclasses.dataclass(frozen=True, slots=True)
class PullRequestStatus:
    """Resolved state of a pull request."""

    state: MergeState
    merge_commit: str | None = None


@typ.runtime_checkable
class PullRequestLookup(typ.Protocol):
    """Port for resolving pull request merge status."""

    async def resolve_pr_status(
        self, owner: str, repo: str, identifier: str
    ) -> PullRequestStatus:
        """Return the current status of pull request ``identifier``."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubClientConfig:
    """Configuration for the GitHub REST client."""

    token: str | None = None
    api_url: str = "https://api.github.com"
    timeout_s: float = 20.0
    user_agent: str = "commit-notifier/0.1"

    @classmethod
    def from_env(cls) -> GitHubClientConfig:
        """Build configuration from ``COMMIT_NOTIFIER_GITHUB_TOKEN``.

        The token is optional here; without one the service runs with pull
        request enrichment disabled.
        """
        token = os.environ.get("COMMIT_NOTIFIER_GITHUB_TOKEN", "").strip() or None
        api_url = os.environ.get("COMMIT_NOTIFIER_GITHUB_API_URL", "").strip()
        if api_url:
            return cls(token=token, api_url=api_url.rstrip("/"))
        return cls(token=token)


class _PullRequestPayload(msgspec.Struct):
    state: str
    merged: bool = False
    merge_commit_sha: str | None = None


class GitHubPullRequestClient:
    """:class:`PullRequestLookup` backed by the GitHub REST API."""

    def __init__(
        self,
        config: GitHubClientConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client, creating an HTTP client unless one is given."""
        if config.token is not None and not config.token.strip():
            raise GitHubConfigError.empty_token()

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": config.user_agent,
            "X-GitHub-Api-Version": _API_VERSION,
        }
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s, headers=headers
        )
        if http_client is not None:
            self._client.headers.update(headers)

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def resolve_pr_status(
        self, owner: str, repo: str, identifier: str
    ) -> PullRequestStatus:
        """Fetch ``GET /repos/{owner}/{repo}/pulls/{identifier}``.

        Raises
        ------
        GitHubConfigError
            If ``identifier`` is not a pull request number.
        GitHubAPIError
            If the request fails or GitHub answers with an error status.
        GitHubResponseShapeError
            If the payload lacks the pull request state.

        """
        if not identifier.isdigit():
            raise GitHubConfigError.invalid_identifier(identifier)

        path = f"/repos/{owner}/{repo}/pulls/{identifier}"
        try:
            response = await self._client.get(f"{self._config.api_url}{path}")
        except httpx.HTTPError as exc:
            raise GitHubAPIError.transport(str(exc)) from exc
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(response.status_code, path)

        try:
            payload = msgspec.json.decode(response.content, type=_PullRequestPayload)
        except msgspec.DecodeError as exc:
            raise GitHubResponseShapeError.invalid(str(exc)) from exc

        if payload.merged:
            return PullRequestStatus(
                state=MergeState.MERGED, merge_commit=payload.merge_commit_sha
            )
        if payload.state == "open":
            return PullRequestStatus(state=MergeState.OPEN)
        if payload.state == "closed":
            return PullRequestStatus(state=MergeState.CLOSED)
        raise GitHubResponseShapeError.invalid(f"unknown state {payload.state!r}")


__all__ = [
    "GitHubClientConfig",
    "GitHubPullRequestClient",
    "PullRequestLookup",
    "PullRequestStatus",
]
