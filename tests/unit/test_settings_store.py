"""Unit tests for the persisted settings store."""

from __future__ import annotations

import typing as typ

import pytest

from commit_notifier.settings import (
    ConfigError,
    ConfigIssueKind,
    GitHubInfo,
    InBranch,
    RepositorySettings,
    SettingsStore,
    Subscriber,
    SuppressFromTo,
    parse_service_document,
)

if typ.TYPE_CHECKING:
    from pathlib import Path

NIXPKGS = RepositorySettings(
    url="https://github.com/NixOS/nixpkgs.git",
    branch_regex=r"^(master|staging|nixos-\d\d\.\d\d)$",
)


@pytest.fixture
def store(tmp_path: Path) -> SettingsStore:
    """Return an empty store rooted in a temporary directory."""
    return SettingsStore(tmp_path / "settings")


class TestRepositories:
    """Adding, replacing and removing repositories."""

    @pytest.mark.asyncio
    async def test_add_infers_github_info_from_url(self, store: SettingsStore) -> None:
        """github.com URLs fill in the GitHub coordinates."""
        stored = await store.add_repository("nixpkgs", NIXPKGS)

        assert stored.github_info == GitHubInfo(owner="NixOS", repo="nixpkgs")
        assert store.get_repository("nixpkgs") == stored

    @pytest.mark.asyncio
    async def test_add_rejects_duplicate(self, store: SettingsStore) -> None:
        """A repository name can only be added once."""
        await store.add_repository("nixpkgs", NIXPKGS)

        with pytest.raises(ConfigError) as exc_info:
            await store.add_repository("nixpkgs", NIXPKGS)

        assert exc_info.value.kinds == {ConfigIssueKind.DUPLICATE_NAME}

    @pytest.mark.asyncio
    async def test_add_rejects_invalid_regex_before_writing(
        self, store: SettingsStore
    ) -> None:
        """Invalid settings never reach disk."""
        bad = RepositorySettings(url="https://example.org/r.git", branch_regex="(")

        with pytest.raises(ConfigError):
            await store.add_repository("broken", bad)

        assert not (store.root / "repositories" / "broken").exists()
        assert "broken" not in store.snapshot().repositories

    @pytest.mark.asyncio
    async def test_add_rejects_unsafe_name(self, store: SettingsStore) -> None:
        """Names double as directory names and are restricted."""
        with pytest.raises(ConfigError) as exc_info:
            await store.add_repository("../escape", NIXPKGS)

        assert exc_info.value.kinds == {ConfigIssueKind.INVALID_NAME}

    @pytest.mark.asyncio
    async def test_replace_requires_existing(self, store: SettingsStore) -> None:
        """Only tracked repositories can be replaced."""
        with pytest.raises(ConfigError) as exc_info:
            await store.replace_repository("nixpkgs", NIXPKGS)

        assert exc_info.value.kinds == {ConfigIssueKind.UNKNOWN_NAME}

    @pytest.mark.asyncio
    async def test_remove_drops_subscriptions(self, store: SettingsStore) -> None:
        """Removing a repository removes the chats following it."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.subscribe("nixpkgs", Subscriber(chat_id="42"))

        await store.remove_repository("nixpkgs")

        snapshot = store.snapshot()
        assert dict(snapshot.repositories) == {}
        assert snapshot.subscriptions == ()
        with pytest.raises(ConfigError):
            store.get_repository("nixpkgs")

    @pytest.mark.asyncio
    async def test_remove_drops_pull_request_watches(
        self, store: SettingsStore
    ) -> None:
        """Watches on a removed repository go with it."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.add_repository("home-manager", NIXPKGS)
        await store.watch_pull_request("nixpkgs", "310", Subscriber(chat_id="42"))
        kept = await store.watch_pull_request(
            "home-manager", "7", Subscriber(chat_id="42")
        )

        await store.remove_repository("nixpkgs")

        assert store.snapshot().pull_request_watches == (kept,)


class TestConditions:
    """Adding and removing named conditions."""

    @pytest.mark.asyncio
    async def test_conditions_keep_insertion_order(self, store: SettingsStore) -> None:
        """Conditions are evaluated in the order they were added."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.add_condition("nixpkgs", "master", InBranch(branch_regex="master"))
        updated = await store.add_condition(
            "nixpkgs",
            "master-to-staging",
            SuppressFromTo(from_regex="master", to_regex="staging"),
        )

        assert list(updated.conditions) == ["master", "master-to-staging"]

    @pytest.mark.asyncio
    async def test_duplicate_condition_rejected(self, store: SettingsStore) -> None:
        """Condition names are unique per repository."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.add_condition("nixpkgs", "master", InBranch(branch_regex="master"))

        with pytest.raises(ConfigError) as exc_info:
            await store.add_condition(
                "nixpkgs", "master", InBranch(branch_regex="staging")
            )

        assert exc_info.value.kinds == {ConfigIssueKind.DUPLICATE_NAME}

    @pytest.mark.asyncio
    async def test_invalid_condition_regex_rejected(self, store: SettingsStore) -> None:
        """Bad patterns are refused with invalid_regex."""
        await store.add_repository("nixpkgs", NIXPKGS)

        with pytest.raises(ConfigError) as exc_info:
            await store.add_condition(
                "nixpkgs", "bad", SuppressFromTo(from_regex="ok", to_regex="[")
            )

        assert exc_info.value.kinds == {ConfigIssueKind.INVALID_REGEX}
        assert store.get_repository("nixpkgs").conditions == {}

    @pytest.mark.asyncio
    async def test_remove_unknown_condition(self, store: SettingsStore) -> None:
        """Removing a missing condition is reported."""
        await store.add_repository("nixpkgs", NIXPKGS)

        with pytest.raises(ConfigError) as exc_info:
            await store.remove_condition("nixpkgs", "master")

        assert exc_info.value.kinds == {ConfigIssueKind.UNKNOWN_NAME}

    @pytest.mark.asyncio
    async def test_remove_condition_narrows_subscription_filters(
        self, store: SettingsStore
    ) -> None:
        """Filters lose the removed name; filters left empty are dropped."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.add_condition("nixpkgs", "master", InBranch(branch_regex="master"))
        await store.add_condition(
            "nixpkgs", "staging", InBranch(branch_regex="staging")
        )
        await store.subscribe("nixpkgs", Subscriber(chat_id="1"), ["master"])
        await store.subscribe(
            "nixpkgs", Subscriber(chat_id="2"), ["master", "staging"]
        )
        await store.subscribe("nixpkgs", Subscriber(chat_id="3"))

        await store.remove_condition("nixpkgs", "master")

        filters = {
            sub.subscriber.chat_id: sub.conditions
            for sub in store.snapshot().subscriptions
        }
        assert filters == {"2": ("staging",), "3": ()}

        reloaded = SettingsStore(store.root)
        await reloaded.load()
        assert reloaded.snapshot().subscriptions == store.snapshot().subscriptions


class TestSubscriptions:
    """Subscribing and unsubscribing chats."""

    @pytest.mark.asyncio
    async def test_resubscribe_replaces_filter(self, store: SettingsStore) -> None:
        """A chat has at most one subscription per repository."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.add_condition("nixpkgs", "master", InBranch(branch_regex="master"))
        await store.subscribe("nixpkgs", Subscriber(chat_id="42"), ["master"])
        await store.subscribe("nixpkgs", Subscriber(chat_id="42", username="alice"))

        (subscription,) = store.snapshot().subscriptions
        assert subscription.conditions == ()
        assert subscription.subscriber.username == "alice"

    @pytest.mark.asyncio
    async def test_subscribe_to_unknown_condition(self, store: SettingsStore) -> None:
        """Condition filters must name existing conditions."""
        await store.add_repository("nixpkgs", NIXPKGS)

        with pytest.raises(ConfigError):
            await store.subscribe("nixpkgs", Subscriber(chat_id="42"), ["release"])

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown(self, store: SettingsStore) -> None:
        """Removing a subscription that does not exist is reported."""
        await store.add_repository("nixpkgs", NIXPKGS)

        with pytest.raises(ConfigError):
            await store.unsubscribe("nixpkgs", "42")


class TestPullRequestWatches:
    """Watching pull requests until they merge or close."""

    @pytest.mark.asyncio
    async def test_watch_is_persisted(self, store: SettingsStore) -> None:
        """Watches survive a reload and leading zeros are normalised."""
        await store.add_repository("nixpkgs", NIXPKGS)

        watch = await store.watch_pull_request(
            "nixpkgs", "0310", Subscriber(chat_id="42", username="alice")
        )

        assert watch.identifier == "310"
        reloaded = SettingsStore(store.root)
        await reloaded.load()
        assert reloaded.snapshot().pull_request_watches == (watch,)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("repository", "identifier", "kind"),
        [
            ("home-manager", "310", ConfigIssueKind.UNKNOWN_NAME),
            ("nixpkgs", "abc", ConfigIssueKind.INVALID_NAME),
            ("nixpkgs", "", ConfigIssueKind.INVALID_NAME),
        ],
    )
    async def test_watch_rejects_bad_targets(
        self,
        store: SettingsStore,
        repository: str,
        identifier: str,
        kind: ConfigIssueKind,
    ) -> None:
        """Only numbered pull requests of tracked repositories can be watched."""
        await store.add_repository("nixpkgs", NIXPKGS)

        with pytest.raises(ConfigError) as exc_info:
            await store.watch_pull_request(
                repository, identifier, Subscriber(chat_id="42")
            )

        assert exc_info.value.kinds == {kind}
        assert store.snapshot().pull_request_watches == ()

    @pytest.mark.asyncio
    async def test_duplicate_watch_rejected(self, store: SettingsStore) -> None:
        """A chat watches a pull request at most once."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.watch_pull_request("nixpkgs", "310", Subscriber(chat_id="42"))

        with pytest.raises(ConfigError) as exc_info:
            await store.watch_pull_request(
                "nixpkgs", "310", Subscriber(chat_id="42", username="alice")
            )

        assert exc_info.value.kinds == {ConfigIssueKind.DUPLICATE_NAME}

    @pytest.mark.asyncio
    async def test_unwatch(self, store: SettingsStore) -> None:
        """Unwatching removes only that chat's watch."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.watch_pull_request("nixpkgs", "310", Subscriber(chat_id="42"))
        other = await store.watch_pull_request(
            "nixpkgs", "310", Subscriber(chat_id="7")
        )

        await store.unwatch_pull_request("nixpkgs", "310", "42")

        assert store.snapshot().pull_request_watches == (other,)
        with pytest.raises(ConfigError):
            await store.unwatch_pull_request("nixpkgs", "310", "42")

    @pytest.mark.asyncio
    async def test_complete_keeps_watches_added_elsewhere(
        self, store: SettingsStore
    ) -> None:
        """Completion re-reads the file so concurrent additions survive."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.watch_pull_request("nixpkgs", "310", Subscriber(chat_id="42"))
        admin = SettingsStore(store.root)
        await admin.load()
        added = await admin.watch_pull_request(
            "nixpkgs", "311", Subscriber(chat_id="42")
        )

        removed = await store.complete_pull_request_watches("nixpkgs", ["310"])

        assert removed == 1
        assert store.snapshot().pull_request_watches == (added,)


class TestPersistence:
    """Settings survive a reload and snapshots stay stable."""

    @pytest.mark.asyncio
    async def test_reload_restores_settings(self, store: SettingsStore) -> None:
        """A new store over the same root sees the same configuration."""
        await store.add_repository("nixpkgs", NIXPKGS)
        await store.add_condition(
            "nixpkgs",
            "to-staging",
            SuppressFromTo(from_regex="master", to_regex="staging"),
        )
        await store.subscribe("nixpkgs", Subscriber(chat_id="42"), ["to-staging"])

        reloaded = SettingsStore(store.root)
        await reloaded.load()

        assert dict(reloaded.snapshot().repositories) == dict(
            store.snapshot().repositories
        )
        assert reloaded.snapshot().subscriptions == store.snapshot().subscriptions

    @pytest.mark.asyncio
    async def test_load_rejects_corrupt_file(self, store: SettingsStore) -> None:
        """Undecodable settings surface as ConfigError on load."""
        await store.add_repository("nixpkgs", NIXPKGS)
        path = store.root / "repositories" / "nixpkgs" / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigError, match="failed to load"):
            await SettingsStore(store.root).load()

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated_from_later_edits(
        self, store: SettingsStore
    ) -> None:
        """A snapshot keeps the configuration it was taken from."""
        await store.add_repository("nixpkgs", NIXPKGS)
        snapshot = store.snapshot()

        await store.add_condition("nixpkgs", "master", InBranch(branch_regex="master"))
        await store.add_repository("home-manager", NIXPKGS)

        assert snapshot.repository_names == ("nixpkgs",)
        assert snapshot.repositories["nixpkgs"].conditions == {}

    @pytest.mark.asyncio
    async def test_load_on_empty_root(self, store: SettingsStore) -> None:
        """A root that does not exist yet loads as empty."""
        await store.load()

        assert dict(store.snapshot().repositories) == {}


@pytest.mark.asyncio
async def test_import_document_upserts_and_replaces_subscriptions(
    store: SettingsStore,
) -> None:
    """Imported repositories replace their subscriptions; others are kept."""
    await store.add_repository(
        "other", RepositorySettings(url="/srv/git/other.git", branch_regex="main")
    )
    await store.subscribe("other", Subscriber(chat_id="1"))
    await store.add_repository("nixpkgs", NIXPKGS)
    await store.subscribe("nixpkgs", Subscriber(chat_id="old"))

    document = parse_service_document(
        """
repositories:
  nixpkgs:
    url: https://github.com/NixOS/nixpkgs.git
    branch_regex: master
    conditions:
      master:
        condition: {kind: InBranch, branch_regex: master}
subscriptions:
  - repository: nixpkgs
    subscriber: {chat_id: "42"}
"""
    )

    names = await store.import_document(document)

    assert names == ("nixpkgs",)
    nixpkgs = store.get_repository("nixpkgs")
    assert list(nixpkgs.conditions) == ["master"]
    assert nixpkgs.github_info == GitHubInfo(owner="NixOS", repo="nixpkgs")
    chats = {
        (sub.repository, sub.subscriber.chat_id)
        for sub in store.snapshot().subscriptions
    }
    assert chats == {("other", "1"), ("nixpkgs", "42")}
