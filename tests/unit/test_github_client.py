"""Unit tests for the GitHub pull request client."""

from __future__ import annotations

import json

import httpx
import pytest

from commit_notifier.github import (
    GitHubAPIError,
    GitHubClientConfig,
    GitHubConfigError,
    GitHubPullRequestClient,
    GitHubResponseShapeError,
    PullRequestLookup,
)
from commit_notifier.state import MergeState

MERGE_SHA = "e" * 40


def _client(
    handler: httpx.MockTransport | None = None,
    *,
    payload: dict[str, object] | None = None,
    status_code: int = 200,
    seen: list[httpx.Request] | None = None,
) -> GitHubPullRequestClient:
    def respond(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload or {})

    transport = handler or httpx.MockTransport(respond)
    return GitHubPullRequestClient(
        GitHubClientConfig(token="ghp_test", api_url="https://github.test/api"),
        http_client=httpx.AsyncClient(transport=transport),
    )


def test_client_satisfies_lookup_protocol() -> None:
    """The REST client implements the lookup port."""
    assert isinstance(_client(), PullRequestLookup)


@pytest.mark.asyncio
async def test_merged_pull_request() -> None:
    """Merged pull requests carry their merge commit."""
    seen: list[httpx.Request] = []
    client = _client(
        payload={"state": "closed", "merged": True, "merge_commit_sha": MERGE_SHA},
        seen=seen,
    )

    status = await client.resolve_pr_status("NixOS", "nixpkgs", "12")

    assert status.state is MergeState.MERGED
    assert status.merge_commit == MERGE_SHA
    (request,) = seen
    assert str(request.url) == "https://github.test/api/repos/NixOS/nixpkgs/pulls/12"
    assert request.headers["Authorization"] == "Bearer ghp_test"
    assert request.headers["Accept"] == "application/vnd.github+json"


@pytest.mark.parametrize(
    ("payload", "state"),
    [
        ({"state": "open", "merged": False}, MergeState.OPEN),
        ({"state": "closed", "merged": False}, MergeState.CLOSED),
        ({"state": "open"}, MergeState.OPEN),
    ],
)
@pytest.mark.asyncio
async def test_unmerged_states(payload: dict[str, object], state: MergeState) -> None:
    """Open and closed pull requests carry no merge commit."""
    status = await _client(payload=payload).resolve_pr_status("o", "r", "3")

    assert status.state is state
    assert status.merge_commit is None


@pytest.mark.asyncio
async def test_error_status_raises() -> None:
    """Non-2xx answers raise GitHubAPIError with the status code."""
    client = _client(payload={"message": "Not Found"}, status_code=404)

    with pytest.raises(GitHubAPIError) as exc_info:
        await client.resolve_pr_status("NixOS", "nixpkgs", "99999")

    assert exc_info.value.status_code == 404
    assert "/repos/NixOS/nixpkgs/pulls/99999" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_failure_raises() -> None:
    """Connection failures surface as GitHubAPIError."""

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(httpx.MockTransport(refuse))

    with pytest.raises(GitHubAPIError, match="connection refused"):
        await client.resolve_pr_status("NixOS", "nixpkgs", "12")


@pytest.mark.asyncio
async def test_malformed_payload_raises() -> None:
    """Payloads without a state are rejected."""

    def garbage(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=json.dumps(["not", "a", "pr"]))

    client = _client(httpx.MockTransport(garbage))

    with pytest.raises(GitHubResponseShapeError):
        await client.resolve_pr_status("NixOS", "nixpkgs", "12")


@pytest.mark.asyncio
async def test_unknown_state_raises() -> None:
    """States other than open and closed are rejected."""
    client = _client(payload={"state": "draft"})

    with pytest.raises(GitHubResponseShapeError, match="draft"):
        await client.resolve_pr_status("NixOS", "nixpkgs", "12")


@pytest.mark.asyncio
async def test_non_numeric_identifier_is_rejected() -> None:
    """Identifiers are validated before any request is made."""
    seen: list[httpx.Request] = []
    client = _client(seen=seen)

    with pytest.raises(GitHubConfigError, match="numeric"):
        await client.resolve_pr_status("NixOS", "nixpkgs", "../12")

    assert seen == []


def test_blank_token_is_rejected() -> None:
    """A provided token must not be blank."""
    with pytest.raises(GitHubConfigError):
        GitHubPullRequestClient(GitHubClientConfig(token="  "))


def test_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """The token and API URL are read from the environment."""
    monkeypatch.setenv("COMMIT_NOTIFIER_GITHUB_TOKEN", " ghp_env ")
    monkeypatch.setenv("COMMIT_NOTIFIER_GITHUB_API_URL", "https://ghe.example/api/")

    config = GitHubClientConfig.from_env()

    assert config.token == "ghp_env"
    assert config.api_url == "https://ghe.example/api"


def test_config_from_env_without_token(monkeypatch: pytest.MonkeyPatch) -> None:
    """Enrichment is optional; the token may be absent."""
    monkeypatch.delenv("COMMIT_NOTIFIER_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("COMMIT_NOTIFIER_GITHUB_API_URL", raising=False)

    assert GitHubClientConfig.from_env() == GitHubClientConfig()
