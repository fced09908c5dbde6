"""Unit tests for the repository mirror, run against real git repositories."""

from __future__ import annotations

import typing as typ

import pytest

from commit_notifier.mirror import (
    BranchHead,
    GitRunner,
    MirrorConfig,
    MirrorError,
    MirrorErrorKind,
    RepositoryMirror,
    classify_failure,
)
from commit_notifier.settings import RepositorySettings

if typ.TYPE_CHECKING:
    from pathlib import Path

    from tests.helpers.git_remote import GitRemote

TRACKED = r"^(master|staging|nixos-\d\d\.\d\d)$"


@pytest.fixture
def mirror(tmp_path: Path) -> RepositoryMirror:
    """Return a mirror performing full clones into a temporary directory."""
    return RepositoryMirror(
        tmp_path / "mirrors", MirrorConfig(git_timeout_s=60, clone_filter=None)
    )


def _settings(remote: GitRemote, branch_regex: str = TRACKED) -> RepositorySettings:
    return RepositorySettings(url=remote.url, branch_regex=branch_regex)


@pytest.mark.parametrize(
    ("stderr", "kind"),
    [
        (
            "fatal: Authentication failed for 'https://x'",
            MirrorErrorKind.AUTH_REQUIRED,
        ),
        (
            "fatal: could not read Username for 'https://github.com'",
            MirrorErrorKind.AUTH_REQUIRED,
        ),
        ("fatal: not a git repository: '/x'", MirrorErrorKind.CORRUPT_CLONE),
        (
            "error: object file is empty\nfatal: loose object abc is corrupt",
            MirrorErrorKind.CORRUPT_CLONE,
        ),
        (
            "fatal: unable to access 'https://x': Could not resolve host",
            MirrorErrorKind.NETWORK,
        ),
        ("", MirrorErrorKind.NETWORK),
    ],
)
def test_classify_failure(stderr: str, kind: MirrorErrorKind) -> None:
    """git stderr maps onto the three mirror failure classes."""
    error = classify_failure("nixpkgs", stderr)

    assert error.kind is kind
    assert error.repository == "nixpkgs"


def test_mirror_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment variables tune git access."""
    monkeypatch.setenv("COMMIT_NOTIFIER_GIT_TIMEOUT", "15")
    monkeypatch.setenv("COMMIT_NOTIFIER_CLONE_FILTER", "")

    config = MirrorConfig.from_env()

    assert config == MirrorConfig(git_timeout_s=15.0, clone_filter=None)


@pytest.mark.parametrize("raw", ["soon", "0", "-3"])
def test_mirror_config_rejects_bad_timeout(
    monkeypatch: pytest.MonkeyPatch, raw: str
) -> None:
    """Timeouts must be positive numbers."""
    monkeypatch.setenv("COMMIT_NOTIFIER_GIT_TIMEOUT", raw)

    with pytest.raises(ValueError, match="COMMIT_NOTIFIER_GIT_TIMEOUT"):
        MirrorConfig.from_env()


class TestSync:
    """Tests for MirrorHandle.sync."""

    @pytest.mark.asyncio
    async def test_first_sync_clones_and_filters_branches(
        self, mirror: RepositoryMirror, git_remote: GitRemote
    ) -> None:
        """Only branches fully matching the regex are reported."""
        git_remote.create_branch("staging")
        git_remote.create_branch("nixos-24.05")
        git_remote.create_branch("staging-next")
        git_remote.create_branch("feature/x")

        async with mirror.open("nixpkgs") as handle:
            heads = await handle.sync(_settings(git_remote))

        master = git_remote.head("master")
        assert heads == (
            BranchHead("master", master),
            BranchHead("nixos-24.05", master),
            BranchHead("staging", master),
        )
        assert mirror.clone_path("nixpkgs").is_dir()

    @pytest.mark.asyncio
    async def test_resync_sees_new_commits_and_deletions(
        self, mirror: RepositoryMirror, git_remote: GitRemote
    ) -> None:
        """A fetch picks up moved heads and prunes deleted branches."""
        git_remote.create_branch("staging")
        async with mirror.open("nixpkgs") as handle:
            await handle.sync(_settings(git_remote))

        new_head = git_remote.commit("master", "python3: 3.12.3 -> 3.12.4")
        git_remote.delete_branch("staging")

        async with mirror.open("nixpkgs") as handle:
            heads = await handle.sync(_settings(git_remote))

        assert heads == (BranchHead("master", new_head),)

    @pytest.mark.asyncio
    async def test_unreachable_remote_is_network_error(
        self, mirror: RepositoryMirror, tmp_path: Path, git_remote: GitRemote
    ) -> None:
        """A missing remote fails with a network error and leaves no clone."""
        settings = RepositorySettings(
            url=str(tmp_path / "does-not-exist"), branch_regex="master"
        )

        with pytest.raises(MirrorError) as exc_info:
            async with mirror.open("ghost") as handle:
                await handle.sync(settings)

        assert exc_info.value.kind is MirrorErrorKind.NETWORK
        assert not mirror.clone_path("ghost").exists()

    @pytest.mark.asyncio
    async def test_corrupt_clone_is_rebuilt(
        self, mirror: RepositoryMirror, git_remote: GitRemote
    ) -> None:
        """A clone git cannot read is discarded and cloned again."""
        clone = mirror.clone_path("nixpkgs")
        clone.mkdir(parents=True)
        (clone / "garbage").write_text("not a repository", encoding="utf-8")

        async with mirror.open("nixpkgs") as handle:
            heads = await handle.sync(_settings(git_remote, "master"))

        assert heads == (BranchHead("master", git_remote.head("master")),)
        assert not (clone / "garbage").exists()

    @pytest.mark.asyncio
    async def test_hung_git_times_out_as_network_error(
        self, tmp_path: Path, git_remote: GitRemote
    ) -> None:
        """A git command outliving its timeout is killed and reported."""
        hung = tmp_path / "hung-git"
        hung.write_text("#!/bin/sh\nexec sleep 30\n", encoding="utf-8")
        hung.chmod(0o755)
        mirror = RepositoryMirror(
            tmp_path / "mirrors",
            MirrorConfig(clone_filter=None),
            runner=GitRunner(timeout_s=0.1, executable=str(hung)),
        )

        with pytest.raises(MirrorError) as exc_info:
            async with mirror.open("nixpkgs") as handle:
                await handle.sync(_settings(git_remote, "master"))

        assert exc_info.value.kind is MirrorErrorKind.NETWORK
        assert "timed out after 0.1s" in str(exc_info.value)
        assert not mirror.clone_path("nixpkgs").exists()


class TestHistoryQueries:
    """Tests for ancestry and commit listing."""

    @pytest.mark.asyncio
    async def test_new_commits_newest_first_with_limit(
        self, mirror: RepositoryMirror, git_remote: GitRemote
    ) -> None:
        """Commits between two heads are listed newest first."""
        base = git_remote.head("master")
        first = git_remote.commit("master", "first change")
        second = git_remote.commit("master", "second change (#12)")

        async with mirror.open("nixpkgs") as handle:
            await handle.sync(_settings(git_remote))
            commits = await handle.new_commits(second, [base])
            limited = await handle.new_commits(second, [base], limit=1)

        assert [(c.commit_id, c.subject) for c in commits] == [
            (second, "second change (#12)"),
            (first, "first change"),
        ]
        assert [c.commit_id for c in limited] == [second]

    @pytest.mark.asyncio
    async def test_ancestry_and_membership(
        self, mirror: RepositoryMirror, git_remote: GitRemote
    ) -> None:
        """is_ancestor, has_commit and rev_list agree with git."""
        base = git_remote.head("master")
        tip = git_remote.commit("master", "tip")

        async with mirror.open("nixpkgs") as handle:
            await handle.sync(_settings(git_remote))

            assert await handle.is_ancestor(base, tip)
            assert not await handle.is_ancestor(tip, base)
            assert await handle.has_commit(tip)
            assert not await handle.has_commit("0" * 40)
            assert await handle.rev_list(tip, [base]) == frozenset({tip})
            assert await handle.rev_list(tip) == frozenset({base, tip})


@pytest.mark.asyncio
async def test_open_serializes_access(
    mirror: RepositoryMirror, git_remote: GitRemote
) -> None:
    """The mirror reports a repository busy while a handle is open."""
    async with mirror.open("nixpkgs"):
        assert mirror.is_busy("nixpkgs")
        assert not mirror.is_busy("home-manager")

    assert not mirror.is_busy("nixpkgs")
