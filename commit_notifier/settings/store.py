"""Admin configuration store for tracked repositories and subscriptions.

Settings live on disk as JSON so they survive restarts::

    {root}/repositories/{name}/settings.json
    {root}/subscriptions.json
    {root}/pull_request_watches.json

Writes are validated before they are persisted and are serialized through an
``asyncio.Lock``. Every write replaces the affected objects rather than
mutating them, so a :class:`SettingsSnapshot` taken at the start of a check
cycle keeps seeing the configuration as it was, and edits made mid-cycle only
apply to the next one. Long-running processes call :meth:`SettingsStore.load`
before each cycle so edits made by another process are picked up as well.

Usage
-----
>>> store = SettingsStore(Path("/var/lib/commit-notifier"))
>>> await store.load()
>>> await store.add_repository(
...     "nixpkgs",
...     RepositorySettings(
...         url="https://github.com/NixOS/nixpkgs.git",
...         branch_regex=r"master|staging|nixos-\\d\\d\\.\\d\\d",
...     ),
... )
>>> snapshot = store.snapshot()

"""

from __future__ import annotations

import asyncio
import dataclasses
import shutil
import types
import typing as typ

import msgspec

from commit_notifier.logging import get_logger, log_debug, log_info

from .models import (
    ConditionSettings,
    GitHubInfo,
    PullRequestWatch,
    RepositorySettings,
    Subscriber,
    Subscription,
)
from .validation import (
    ConfigError,
    ConfigIssueKind,
    condition_issues,
    validate_document,
    validate_repository,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from .models import ConditionVariant, ServiceDocument

T = typ.TypeVar("T")

logger = get_logger(__name__)

_SETTINGS_FILE = "settings.json"
_SUBSCRIPTIONS_FILE = "subscriptions.json"
_WATCHES_FILE = "pull_request_watches.json"


@dataclasses.dataclass(frozen=True, slots=True)
class SettingsSnapshot:
    """Immutable view of the configuration taken at one point in time."""

    repositories: cabc.Mapping[str, RepositorySettings]
    subscriptions: tuple[Subscription, ...]
    pull_request_watches: tuple[PullRequestWatch, ...] = ()

    @property
    def repository_names(self) -> tuple[str, ...]:
        """Return tracked repository names in sorted order."""
        return tuple(sorted(self.repositories))


def _write_atomically(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    scratch = path.with_name(f".{path.name}.tmp")
    scratch.write_bytes(payload)
    scratch.replace(path)


class SettingsStore:
    """Persisted repository and subscription settings."""

    def __init__(self, root: Path) -> None:
        """Configure the store rooted at ``root``."""
        self._root = root
        self._repositories: dict[str, RepositorySettings] = {}
        self._subscriptions: tuple[Subscription, ...] = ()
        self._watches: tuple[PullRequestWatch, ...] = ()
        self._lock = asyncio.Lock()

    @property
    def root(self) -> Path:
        """Return the directory holding the settings files."""
        return self._root

    def _repository_path(self, name: str) -> Path:
        return self._root / "repositories" / name / _SETTINGS_FILE

    def _subscriptions_path(self) -> Path:
        return self._root / _SUBSCRIPTIONS_FILE

    def _watches_path(self) -> Path:
        return self._root / _WATCHES_FILE

    async def load(self) -> None:
        """Load persisted settings from disk, replacing in-memory state.

        Raises
        ------
        ConfigError
            If a persisted file cannot be decoded or fails validation.

        """
        repositories, subscriptions = await asyncio.to_thread(self._read_all)
        watches = await asyncio.to_thread(self._read_watches)
        async with self._lock:
            self._repositories = repositories
            self._subscriptions = subscriptions
            self._watches = watches
        log_debug(
            logger,
            "Loaded settings for %d repositories, %d subscriptions and %d "
            "pull request watches from %s",
            len(repositories),
            len(subscriptions),
            len(watches),
            self._root,
        )

    def _read_all(
        self,
    ) -> tuple[dict[str, RepositorySettings], tuple[Subscription, ...]]:
        repositories: dict[str, RepositorySettings] = {}
        repositories_dir = self._root / "repositories"
        if repositories_dir.is_dir():
            for settings_path in sorted(repositories_dir.glob(f"*/{_SETTINGS_FILE}")):
                name = settings_path.parent.name
                settings = self._decode(settings_path, RepositorySettings)
                repositories[name] = validate_repository(name, settings)

        subscriptions: tuple[Subscription, ...] = ()
        subscriptions_path = self._subscriptions_path()
        if subscriptions_path.is_file():
            decoded = self._decode(subscriptions_path, list[Subscription])
            subscriptions = tuple(decoded)
        return repositories, subscriptions

    def _read_watches(self) -> tuple[PullRequestWatch, ...]:
        path = self._watches_path()
        if not path.is_file():
            return ()
        return tuple(self._decode(path, list[PullRequestWatch]))

    @staticmethod
    def _decode(path: Path, kind: type[T]) -> T:
        try:
            return msgspec.json.decode(path.read_bytes(), type=kind)
        except (OSError, msgspec.DecodeError) as exc:
            raise ConfigError.single(
                ConfigIssueKind.INVALID_DOCUMENT, f"failed to load {path}: {exc}"
            ) from exc

    def snapshot(self) -> SettingsSnapshot:
        """Return a consistent copy of the current configuration."""
        return SettingsSnapshot(
            repositories=types.MappingProxyType(dict(self._repositories)),
            subscriptions=self._subscriptions,
            pull_request_watches=self._watches,
        )

    def get_repository(self, name: str) -> RepositorySettings:
        """Return the settings for ``name`` or raise ConfigError."""
        try:
            return self._repositories[name]
        except KeyError:
            raise ConfigError.unknown("repository", name) from None

    async def add_repository(
        self, name: str, settings: RepositorySettings
    ) -> RepositorySettings:
        """Start tracking a repository.

        When ``settings.github_info`` is absent it is inferred from a
        github.com URL.

        Raises
        ------
        ConfigError
            If the name is taken or the settings are invalid.

        """
        if settings.github_info is None:
            settings = msgspec.structs.replace(
                settings, github_info=GitHubInfo.from_url(settings.url)
            )
        validate_repository(name, settings)
        async with self._lock:
            if name in self._repositories:
                raise ConfigError.duplicate("repository", name)
            await self._persist_repository(name, settings)
        log_info(logger, "Added repository %s (%s)", name, settings.url)
        return settings

    async def replace_repository(
        self, name: str, settings: RepositorySettings
    ) -> RepositorySettings:
        """Replace the settings of an existing repository."""
        validate_repository(name, settings)
        async with self._lock:
            if name not in self._repositories:
                raise ConfigError.unknown("repository", name)
            await self._persist_repository(name, settings)
        return settings

    async def remove_repository(self, name: str) -> RepositorySettings:
        """Stop tracking ``name`` and drop its subscriptions and watches.

        Only the settings side is cleared here. Callers that also own the
        mirror and the state store purge those too, see
        :meth:`commit_notifier.cycle.CheckCycleCoordinator.remove_repository`.
        """
        async with self._lock:
            settings = self.get_repository(name)
            remaining = tuple(
                sub for sub in self._subscriptions if sub.repository != name
            )
            watches = tuple(
                watch for watch in self._watches if watch.repository != name
            )
            await asyncio.to_thread(
                shutil.rmtree, self._repository_path(name).parent, ignore_errors=True
            )
            await self._persist_subscriptions(remaining)
            if len(watches) != len(self._watches):
                await self._persist_watches(watches)
            repositories = dict(self._repositories)
            del repositories[name]
            self._repositories = repositories
        log_info(logger, "Removed repository %s", name)
        return settings

    async def add_condition(
        self, repository: str, name: str, condition: ConditionVariant
    ) -> RepositorySettings:
        """Append a named condition to a repository's evaluation order."""
        label = f"repositories.{repository}.conditions.{name}"
        issues = condition_issues(label, condition)
        if issues:
            raise ConfigError(issues)
        async with self._lock:
            current = self.get_repository(repository)
            if name in current.conditions:
                raise ConfigError.duplicate("condition", name)
            conditions = dict(current.conditions)
            conditions[name] = ConditionSettings(condition=condition)
            updated = msgspec.structs.replace(current, conditions=conditions)
            await self._persist_repository(repository, updated)
        return updated

    async def remove_condition(self, repository: str, name: str) -> RepositorySettings:
        """Remove a named condition from a repository.

        Subscriptions filtered on the condition lose that name. A filter left
        empty would widen to every condition, so such subscriptions are
        dropped instead.
        """
        async with self._lock:
            current = self.get_repository(repository)
            if name not in current.conditions:
                raise ConfigError.unknown("condition", name)
            conditions = {
                key: value for key, value in current.conditions.items() if key != name
            }
            updated = msgspec.structs.replace(current, conditions=conditions)
            subscriptions, dropped = _without_condition(
                self._subscriptions, repository, name
            )
            await self._persist_repository(repository, updated)
            if subscriptions != self._subscriptions:
                await self._persist_subscriptions(subscriptions)
        if dropped:
            log_info(
                logger,
                "Removed %d subscriptions to %s that only followed condition %s",
                len(dropped),
                repository,
                name,
            )
        return updated

    async def subscribe(
        self,
        repository: str,
        subscriber: Subscriber,
        conditions: cabc.Sequence[str] = (),
    ) -> Subscription:
        """Subscribe a chat to a repository, optionally to named conditions only.

        Re-subscribing an existing chat replaces its condition filter.
        """
        async with self._lock:
            settings = self.get_repository(repository)
            for condition in conditions:
                if condition not in settings.conditions:
                    raise ConfigError.unknown("condition", condition)
            subscription = Subscription(
                repository=repository,
                subscriber=subscriber,
                conditions=tuple(conditions),
            )
            remaining = tuple(
                sub
                for sub in self._subscriptions
                if not _same_chat(sub, repository, subscriber.chat_id)
            )
            await self._persist_subscriptions((*remaining, subscription))
        return subscription

    async def unsubscribe(self, repository: str, chat_id: str) -> None:
        """Remove a chat's subscription to a repository."""
        async with self._lock:
            remaining = tuple(
                sub
                for sub in self._subscriptions
                if not _same_chat(sub, repository, chat_id)
            )
            if len(remaining) == len(self._subscriptions):
                raise ConfigError.unknown("subscription", f"{repository}:{chat_id}")
            await self._persist_subscriptions(remaining)

    async def watch_pull_request(
        self, repository: str, identifier: str, subscriber: Subscriber
    ) -> PullRequestWatch:
        """Ask to be told once pull request ``identifier`` merges or closes.

        Raises
        ------
        ConfigError
            If the repository is unknown, the identifier is not a pull
            request number, or the chat already watches it.

        """
        if not identifier.isdigit():
            raise ConfigError.single(
                ConfigIssueKind.INVALID_NAME,
                f"pull request {identifier!r} must be a number",
            )
        watch = PullRequestWatch(
            repository=repository,
            identifier=str(int(identifier)),
            subscriber=subscriber,
        )
        async with self._lock:
            self.get_repository(repository)
            if any(_same_watch(item, watch) for item in self._watches):
                raise ConfigError.duplicate(
                    "pull request watch", f"{repository}#{watch.identifier}"
                )
            await self._persist_watches((*self._watches, watch))
        log_info(
            logger,
            "Chat %s watches pull request %s#%s",
            subscriber.chat_id,
            repository,
            watch.identifier,
        )
        return watch

    async def unwatch_pull_request(
        self, repository: str, identifier: str, chat_id: str
    ) -> None:
        """Forget a chat's watch on a pull request."""
        target = PullRequestWatch(
            repository=repository,
            identifier=identifier.lstrip("0") or "0",
            subscriber=Subscriber(chat_id=chat_id),
        )
        async with self._lock:
            remaining = tuple(
                watch for watch in self._watches if not _same_watch(watch, target)
            )
            if len(remaining) == len(self._watches):
                raise ConfigError.unknown(
                    "pull request watch", f"{repository}#{identifier}:{chat_id}"
                )
            await self._persist_watches(remaining)

    async def complete_pull_request_watches(
        self, repository: str, identifiers: cabc.Iterable[str]
    ) -> int:
        """Drop every watch on the given pull requests of ``repository``.

        The watch file is re-read first so watches added by another process
        since the last :meth:`load` survive.

        Returns
        -------
        int
            Number of watches removed.

        """
        done = frozenset(identifiers)
        if not done:
            return 0
        async with self._lock:
            current = await asyncio.to_thread(self._read_watches)
            remaining = tuple(
                watch
                for watch in current
                if not (watch.repository == repository and watch.identifier in done)
            )
            await self._persist_watches(remaining)
        return len(current) - len(remaining)

    async def import_document(self, document: ServiceDocument) -> tuple[str, ...]:
        """Apply a validated service document, upserting its repositories.

        Subscriptions for repositories named in the document are replaced by
        the document's subscriptions; other subscriptions are kept.

        Returns
        -------
        tuple[str, ...]
            Names of the repositories written.

        """
        validate_document(document, known_repositories=tuple(self._repositories))
        async with self._lock:
            for name, settings in document.repositories.items():
                resolved = settings
                if resolved.github_info is None:
                    resolved = msgspec.structs.replace(
                        resolved, github_info=GitHubInfo.from_url(resolved.url)
                    )
                await self._persist_repository(name, resolved)
            touched = {sub.repository for sub in document.subscriptions}
            touched.update(document.repositories)
            kept = tuple(
                sub for sub in self._subscriptions if sub.repository not in touched
            )
            await self._persist_subscriptions((*kept, *document.subscriptions))
        names = tuple(document.repositories)
        log_info(logger, "Imported %d repositories from document", len(names))
        return names

    async def _persist_repository(
        self, name: str, settings: RepositorySettings
    ) -> None:
        """Write one repository file and publish the new mapping.

        Precondition: the caller holds ``self._lock``.
        """
        await asyncio.to_thread(
            _write_atomically,
            self._repository_path(name),
            msgspec.json.encode(settings),
        )
        repositories = dict(self._repositories)
        repositories[name] = settings
        self._repositories = repositories

    async def _persist_subscriptions(
        self, subscriptions: tuple[Subscription, ...]
    ) -> None:
        """Write the subscription file and publish the new tuple.

        Precondition: the caller holds ``self._lock``.
        """
        await asyncio.to_thread(
            _write_atomically,
            self._subscriptions_path(),
            msgspec.json.encode(list(subscriptions)),
        )
        self._subscriptions = subscriptions

    async def _persist_watches(self, watches: tuple[PullRequestWatch, ...]) -> None:
        """Write the pull request watch file and publish the new tuple.

        Precondition: the caller holds ``self._lock``.
        """
        await asyncio.to_thread(
            _write_atomically,
            self._watches_path(),
            msgspec.json.encode(list(watches)),
        )
        self._watches = watches


def _same_chat(subscription: Subscription, repository: str, chat_id: str) -> bool:
    return (
        subscription.repository == repository
        and subscription.subscriber.chat_id == chat_id
    )


def _same_watch(left: PullRequestWatch, right: PullRequestWatch) -> bool:
    return (
        left.repository == right.repository
        and left.identifier == right.identifier
        and left.subscriber.chat_id == right.subscriber.chat_id
    )


def _without_condition(
    subscriptions: tuple[Subscription, ...], repository: str, condition: str
) -> tuple[tuple[Subscription, ...], tuple[Subscription, ...]]:
    """Strip ``condition`` from filters, returning kept and dropped subscriptions."""
    kept: list[Subscription] = []
    dropped: list[Subscription] = []
    for sub in subscriptions:
        if sub.repository != repository or condition not in sub.conditions:
            kept.append(sub)
            continue
        narrowed = tuple(name for name in sub.conditions if name != condition)
        if narrowed:
            kept.append(msgspec.structs.replace(sub, conditions=narrowed))
        else:
            dropped.append(sub)
    return tuple(kept), tuple(dropped)


__all__ = ["SettingsSnapshot", "SettingsStore"]
