"""Unit tests for CycleConfig and the service factory."""

from __future__ import annotations

import typing as typ
from pathlib import Path

import pytest

from commit_notifier.cycle import CycleConfig
from commit_notifier.factory import build_lookup, build_sink, database_url_from_env
from commit_notifier.github import GitHubPullRequestClient
from commit_notifier.notify import (
    FilesystemNotificationSink,
    TelegramNotificationSink,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

_ENV_VARS = (
    "COMMIT_NOTIFIER_WORKING_DIR",
    "COMMIT_NOTIFIER_MAX_COMMITS_PER_BRANCH",
    "COMMIT_NOTIFIER_MAX_CONCURRENT_REPOSITORIES",
    "COMMIT_NOTIFIER_CYCLE_LOCK_FILE",
    "COMMIT_NOTIFIER_CHECK_INTERVAL",
    "COMMIT_NOTIFIER_DATABASE_URL",
    "COMMIT_NOTIFIER_TELEGRAM_TOKEN",
    "COMMIT_NOTIFIER_GITHUB_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> cabc.Iterator[None]:
    """Remove every variable read by the configuration."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


class TestCycleConfig:
    """Tests for CycleConfig.from_env."""

    def test_defaults(self) -> None:
        """Unset variables fall back to the defaults."""
        config = CycleConfig.from_env()

        assert config == CycleConfig()
        assert config.mirrors_dir == Path("data") / "mirrors"
        assert config.lock_path == Path("data") / "cycle.lock"

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Every knob can be set from the environment."""
        monkeypatch.setenv("COMMIT_NOTIFIER_WORKING_DIR", "/srv/notifier")
        monkeypatch.setenv("COMMIT_NOTIFIER_MAX_COMMITS_PER_BRANCH", "20")
        monkeypatch.setenv("COMMIT_NOTIFIER_MAX_CONCURRENT_REPOSITORIES", "2")
        monkeypatch.setenv("COMMIT_NOTIFIER_CYCLE_LOCK_FILE", "off")
        monkeypatch.setenv("COMMIT_NOTIFIER_CHECK_INTERVAL", "60")

        config = CycleConfig.from_env()

        assert config == CycleConfig(
            working_dir=Path("/srv/notifier"),
            max_commits_per_branch=20,
            max_concurrent_repositories=2,
            cycle_lock_file=False,
            check_interval_s=60,
        )
        assert config.lock_path is None

    @pytest.mark.parametrize(
        ("raw", "match"), [("many", "must be an integer"), ("0", "must be positive")]
    )
    def test_rejects_invalid_numbers(
        self, monkeypatch: pytest.MonkeyPatch, raw: str, match: str
    ) -> None:
        """Numeric limits must be positive integers."""
        monkeypatch.setenv("COMMIT_NOTIFIER_MAX_COMMITS_PER_BRANCH", raw)

        with pytest.raises(ValueError, match=match):
            CycleConfig.from_env()


class TestFactory:
    """Tests for the environment-driven factory helpers."""

    def test_database_url_defaults_to_working_dir(self, tmp_path: Path) -> None:
        """Without a URL the state lives in SQLite beside the settings."""
        assert database_url_from_env(tmp_path) == (
            f"sqlite+aiosqlite:///{tmp_path / 'state.db'}"
        )

    def test_database_url_from_env(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """An explicit URL wins."""
        monkeypatch.setenv(
            "COMMIT_NOTIFIER_DATABASE_URL", "postgresql+asyncpg://db/notifier"
        )
        assert database_url_from_env(tmp_path) == "postgresql+asyncpg://db/notifier"

    def test_sink_defaults_to_filesystem(self, tmp_path: Path) -> None:
        """The outbox lives in the working directory."""
        sink = build_sink(CycleConfig(working_dir=tmp_path))

        assert isinstance(sink, FilesystemNotificationSink)
        assert sink.base_path == tmp_path / "outbox"

    def test_sink_uses_telegram_with_token(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        """A bot token selects the Telegram sink."""
        monkeypatch.setenv("COMMIT_NOTIFIER_TELEGRAM_TOKEN", "123:abc")

        sink = build_sink(CycleConfig(working_dir=tmp_path))

        assert isinstance(sink, TelegramNotificationSink)

    def test_lookup_requires_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Enrichment is disabled without a GitHub token."""
        assert build_lookup() is None

        monkeypatch.setenv("COMMIT_NOTIFIER_GITHUB_TOKEN", "ghp_x")

        assert isinstance(build_lookup(), GitHubPullRequestClient)
