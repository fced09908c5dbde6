"""Check cycle coordination.

One cycle walks every tracked repository through the phases
``locking -> syncing -> evaluating -> dispatching -> committing``:

- **locking** takes the single-flight cycle guard without waiting, reloads
  and snapshots the settings, and compiles every repository's conditions.
- **syncing** fetches each mirror under its per-repository lock, reads the
  last committed state, and turns branch movements into observations.
- **evaluating** applies the compiled conditions to the observations.
- **dispatching** enriches events with pull request status and hands them
  to the notification sink, then tells pull request watchers about requests
  that merged or closed. Delivery failures are logged only.
- **committing** records new heads, stale markers and fetched cache
  entries in one transaction per repository.

A failure while syncing or dispatching one repository is isolated to it and
reported in the result; the other repositories of the cycle carry on. State
is committed after dispatch even when delivery failed, since re-deriving the
same commits next cycle would send duplicates.

Usage
-----
>>> coordinator = CheckCycleCoordinator(
...     settings_store=settings_store,
...     mirror=mirror,
...     state_store=state_store,
...     sink=sink,
... )
>>> result = await coordinator.run_check_cycle()
>>> result.notifications_emitted
2

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import enum
import typing as typ

from commit_notifier.common.time import utcnow
from commit_notifier.conditions import (
    CommitObservation,
    NotificationEvent,
    compile_rules,
    evaluate,
)
from commit_notifier.conditions.messages import append_line
from commit_notifier.github.enrichment import (
    Enrichment,
    MergeStatusResolver,
    pull_request_number,
    render_watch_message,
)
from commit_notifier.locking import CycleGuard
from commit_notifier.logging import get_logger, log_debug, log_warning
from commit_notifier.notify.errors import DispatchError
from commit_notifier.notify.registry import SubscriptionRegistry
from commit_notifier.settings.validation import ConfigError
from commit_notifier.state.errors import StoreError
from commit_notifier.state.store import BranchUpdate, MergeStatusEntry

from .config import CycleConfig
from .observability import CycleEventLogger, ErrorCategory

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from commit_notifier.conditions.rules import Rule
    from commit_notifier.github.client import PullRequestLookup
    from commit_notifier.mirror.mirror import (
        BranchHead,
        CommitInfo,
        MirrorHandle,
        RepositoryMirror,
    )
    from commit_notifier.notify.sink import NotificationSink
    from commit_notifier.settings.models import (
        PullRequestWatch,
        RepositorySettings,
        Subscriber,
    )
    from commit_notifier.settings.store import SettingsStore
    from commit_notifier.state.store import RepositoryState, StateStore

logger = get_logger(__name__)


class CycleBusyError(RuntimeError):
    """Raised when an admin operation needs the cycle guard while a cycle runs."""

    @classmethod
    def for_operation(cls, operation: str, repository: str) -> CycleBusyError:
        """Return an error naming the blocked operation."""
        return cls(
            f"cannot {operation} {repository!r} while a check cycle is running"
        )


class CyclePhase(enum.StrEnum):
    """Phase of the check cycle state machine."""

    IDLE = "idle"
    LOCKING = "locking"
    SYNCING = "syncing"
    EVALUATING = "evaluating"
    DISPATCHING = "dispatching"
    COMMITTING = "committing"


@dc.dataclass(frozen=True, slots=True)
class RepositoryFailure:
    """A repository skipped for the current cycle."""

    repository: str
    category: ErrorCategory
    message: str


@dc.dataclass(frozen=True, slots=True)
class CycleResult:
    """Outcome of one check cycle.

    Attributes
    ----------
    started_at
        When the cycle was requested.
    finished_at
        When the cycle finished or was dropped.
    repositories_processed
        Repositories whose state was committed, sorted by name.
    failures
        Repositories skipped because syncing, dispatching or committing failed.
    events
        Notification events produced, including those nobody subscribed to.
    notifications_emitted
        Messages handed to the notification sink, watch notices included.
    resolved_watches
        Watched pull requests announced as merged or closed this cycle.
    skipped
        True when another cycle was running and this one was dropped.

    """

    started_at: dt.datetime
    finished_at: dt.datetime
    repositories_processed: tuple[str, ...] = ()
    failures: tuple[RepositoryFailure, ...] = ()
    events: tuple[NotificationEvent, ...] = ()
    notifications_emitted: int = 0
    resolved_watches: tuple[MergeStatusEntry, ...] = ()
    skipped: bool = False

    @property
    def ok(self) -> bool:
        """Return True when the cycle ran and no repository failed."""
        return not self.skipped and not self.failures


@dc.dataclass(slots=True)
class _RepositoryWork:
    """Mutable per-repository state carried between phases of one cycle."""

    name: str
    settings: RepositorySettings
    rules: tuple[Rule, ...]
    heads: tuple[BranchHead, ...] = ()
    stale_branches: tuple[str, ...] = ()
    observations: list[CommitObservation] = dc.field(default_factory=list)
    events: tuple[NotificationEvent, ...] = ()
    watches: tuple[PullRequestWatch, ...] = ()
    cache_updates: tuple[MergeStatusEntry, ...] = ()
    resolved_watches: list[MergeStatusEntry] = dc.field(default_factory=list)
    notifications: int = 0

    @property
    def updates(self) -> list[BranchUpdate]:
        return [
            BranchUpdate(branch=head.branch, commit_id=head.commit_id)
            for head in self.heads
        ]

    @property
    def uses_history(self) -> bool:
        return any(rule.uses_history for rule in self.rules)


class CheckCycleCoordinator:
    """Drive check cycles over every tracked repository."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings_store: SettingsStore,
        mirror: RepositoryMirror,
        state_store: StateStore,
        sink: NotificationSink,
        config: CycleConfig | None = None,
        lookup: PullRequestLookup | None = None,
        guard: CycleGuard | None = None,
        event_logger: CycleEventLogger | None = None,
    ) -> None:
        """Wire the coordinator to its collaborators.

        Parameters
        ----------
        settings_store
            Source of repository settings and subscriptions.
        mirror
            Local clones of the tracked repositories.
        state_store
            Durable last-seen state and merge status cache.
        sink
            Notification transport.
        config
            Cycle limits. Defaults to :class:`CycleConfig` defaults.
        lookup
            Optional pull request status lookup used for enrichment.
        guard
            Single-flight guard; defaults to one using ``config.lock_path``.
        event_logger
            Structured event emitter.

        """
        self._settings_store = settings_store
        self._mirror = mirror
        self._state_store = state_store
        self._sink = sink
        self._config = config or CycleConfig()
        self._guard = guard or CycleGuard(self._config.lock_path)
        self._resolver = MergeStatusResolver(state_store, lookup)
        self._event_logger = event_logger or CycleEventLogger()
        self._phase = CyclePhase.IDLE

    @property
    def phase(self) -> CyclePhase:
        """Return the phase of the cycle currently running, if any."""
        return self._phase

    @property
    def busy(self) -> bool:
        """Return True while a cycle is running in this process."""
        return self._guard.busy

    async def force_check(self, repository: str) -> CycleResult:
        """Run a cycle restricted to ``repository``.

        Raises
        ------
        ConfigError
            If ``repository`` is not tracked.

        """
        await self._reload_settings()
        self._settings_store.get_repository(repository)
        return await self.run_check_cycle(only=(repository,))

    async def inspect_repository(self, repository: str) -> tuple[BranchHead, ...]:
        """Sync ``repository`` and return its tracked heads without touching state.

        Raises
        ------
        ConfigError
            If ``repository`` is not tracked.
        MirrorError
            If the clone cannot be brought up to date.

        """
        await self._reload_settings()
        settings = self._settings_store.get_repository(repository)
        async with self._mirror.open(repository) as handle:
            return await handle.sync(settings)

    async def remove_repository(self, repository: str) -> RepositorySettings:
        """Stop tracking ``repository`` and purge its clone and stored state.

        Runs under the cycle guard so no cycle can commit heads for the
        repository after its state is cleared. Registering the name again
        later starts from a silent baseline.

        Raises
        ------
        CycleBusyError
            If a check cycle is running.
        ConfigError
            If ``repository`` is not tracked.
        StoreError
            If the stored state cannot be cleared.

        """
        async with self._guard.enter() as acquired:
            if not acquired:
                raise CycleBusyError.for_operation("remove", repository)
            await self._reload_settings()
            settings = await self._settings_store.remove_repository(repository)
            async with self._mirror.open(repository) as handle:
                await handle.remove()
            branches = await self._state_store.reset_repository(repository)
        self._event_logger.log_repository_removed(
            repository=repository, branches=branches
        )
        return settings

    async def _reload_settings(self) -> None:
        """Pick up settings written by other processes, keeping the last good ones."""
        try:
            await self._settings_store.load()
        except ConfigError as exc:
            self._event_logger.log_settings_reload_failed(error=exc)

    async def run_check_cycle(
        self, *, only: cabc.Collection[str] | None = None
    ) -> CycleResult:
        """Run one check cycle, or drop the request if one is already running.

        Parameters
        ----------
        only
            Restrict the cycle to these repository names.

        Returns
        -------
        CycleResult
            ``skipped`` is True when the cycle guard was busy.

        Raises
        ------
        re.error
            If a stored condition regex does not compile. Nothing is synced
            or committed in that case.

        """
        started_at = utcnow()
        async with self._guard.enter() as acquired:
            if not acquired:
                self._event_logger.log_cycle_skipped()
                return CycleResult(
                    started_at=started_at, finished_at=utcnow(), skipped=True
                )
            try:
                return await self._run_locked(started_at, only)
            finally:
                self._set_phase(CyclePhase.IDLE)

    async def _run_locked(
        self, started_at: dt.datetime, only: cabc.Collection[str] | None
    ) -> CycleResult:
        self._set_phase(CyclePhase.LOCKING)
        await self._reload_settings()
        snapshot = self._settings_store.snapshot()
        registry = SubscriptionRegistry.from_snapshot(snapshot)
        watches: dict[str, list[PullRequestWatch]] = {}
        for watch in snapshot.pull_request_watches:
            watches.setdefault(watch.repository, []).append(watch)
        work = [
            _RepositoryWork(
                name=name,
                settings=settings,
                rules=compile_rules(settings.conditions),
                watches=tuple(watches.get(name, ())),
            )
            for name, settings in sorted(snapshot.repositories.items())
            if only is None or name in only
        ]
        self._event_logger.log_cycle_started(repositories=len(work))
        failures: list[RepositoryFailure] = []

        self._set_phase(CyclePhase.SYNCING)
        work = await self._isolated(work, self._sync, failures)

        self._set_phase(CyclePhase.EVALUATING)
        for item in work:
            evaluation = evaluate(
                item.name,
                item.observations,
                item.rules,
                github_info=item.settings.github_info,
            )
            item.events = evaluation.events

        self._set_phase(CyclePhase.DISPATCHING)
        work = await self._isolated(
            work, lambda item: self._dispatch(item, registry), failures
        )

        self._set_phase(CyclePhase.COMMITTING)
        processed: list[str] = []
        for item in work:
            try:
                await self._state_store.commit_cycle(
                    item.name,
                    item.updates,
                    item.cache_updates,
                    stale_branches=item.stale_branches,
                )
            except StoreError as exc:
                failures.append(self._failure(item.name, exc))
                continue
            processed.append(item.name)
            await self._complete_watches(item)

        finished_at = utcnow()
        notifications = sum(item.notifications for item in work)
        self._event_logger.log_cycle_completed(
            processed=len(processed),
            failed=len(failures),
            notifications=notifications,
            duration=finished_at - started_at,
        )
        return CycleResult(
            started_at=started_at,
            finished_at=finished_at,
            repositories_processed=tuple(processed),
            failures=tuple(sorted(failures, key=lambda f: f.repository)),
            events=tuple(event for item in work for event in item.events),
            notifications_emitted=notifications,
            resolved_watches=tuple(
                entry
                for item in work
                if item.name in processed
                for entry in item.resolved_watches
            ),
        )

    def _set_phase(self, phase: CyclePhase) -> None:
        self._phase = phase
        log_debug(logger, "Check cycle phase %s", phase)

    def _failure(self, repository: str, exc: Exception) -> RepositoryFailure:
        category = self._event_logger.log_repository_failed(
            repository=repository, error=exc
        )
        return RepositoryFailure(
            repository=repository, category=category, message=str(exc)
        )

    async def _bounded(
        self,
        work: list[_RepositoryWork],
        step: cabc.Callable[[_RepositoryWork], cabc.Awaitable[None]],
    ) -> list[BaseException | None]:
        """Run ``step`` for every item, returning each outcome in order.

        Every task runs to completion before this returns, so nothing keeps
        touching a repository once the cycle guard is released.
        """
        semaphore = asyncio.Semaphore(self._config.max_concurrent_repositories)

        async def run(item: _RepositoryWork) -> None:
            async with semaphore:
                await step(item)

        return await asyncio.gather(
            *(run(item) for item in work), return_exceptions=True
        )

    async def _isolated(
        self,
        work: list[_RepositoryWork],
        step: cabc.Callable[[_RepositoryWork], cabc.Awaitable[None]],
        failures: list[RepositoryFailure],
    ) -> list[_RepositoryWork]:
        """Run ``step`` per repository and drop the repositories that fail.

        Raises
        ------
        BaseException
            Re-raised for system-level exceptions such as cancellation.

        """
        outcomes = await self._bounded(work, step)
        kept: list[_RepositoryWork] = []
        for item, outcome in zip(work, outcomes, strict=True):
            if outcome is None:
                kept.append(item)
            elif isinstance(outcome, Exception):
                failures.append(self._failure(item.name, outcome))
            else:
                raise outcome
        return kept

    async def _sync(self, item: _RepositoryWork) -> None:
        async with self._mirror.open(item.name) as handle:
            item.heads = await handle.sync(item.settings)
            state = await self._state_store.read_repository(item.name)
            present = {head.branch for head in item.heads}
            item.stale_branches = tuple(
                branch for branch in state.branches if branch not in present
            )
            if not state.baselined:
                self._event_logger.log_repository_baselined(
                    repository=item.name, branches=len(item.heads)
                )
                return
            if item.rules:
                item.observations = await self._observe(handle, item, state)
        self._event_logger.log_repository_synced(
            repository=item.name,
            branches=len(item.heads),
            observations=len(item.observations),
        )

    async def _observe(
        self,
        handle: MirrorHandle,
        item: _RepositoryWork,
        state: RepositoryState,
    ) -> list[CommitObservation]:
        """Turn branch movements since the last commit into observations."""
        prior_heads = {
            branch: branch_state.commit_id
            for branch, branch_state in state.branches.items()
        }
        available = {
            commit_id
            for commit_id in set(prior_heads.values())
            if await handle.has_commit(commit_id)
        }
        discovered_at = utcnow()
        observations: list[CommitObservation] = []

        for head in item.heads:
            exclude = await self._exclusions(
                handle, item.name, head, prior_heads, available
            )
            if exclude is None:
                continue
            commits = await self._new_commits(handle, item.name, head, exclude)
            if not commits:
                continue
            known = (
                await self._known_branches(
                    handle, head, exclude, commits, prior_heads, available
                )
                if item.uses_history
                else {}
            )
            observations.extend(
                CommitObservation(
                    repository=item.name,
                    branch=head.branch,
                    commit_id=commit.commit_id,
                    discovered_at=discovered_at,
                    subject=commit.subject,
                    known_branches=frozenset(known.get(commit.commit_id, ())),
                )
                for commit in commits
            )
        return observations

    async def _exclusions(
        self,
        handle: MirrorHandle,
        repository: str,
        head: BranchHead,
        prior_heads: cabc.Mapping[str, str],
        available: cabc.Set[str],
    ) -> list[str] | None:
        """Return the commits bounding ``head``'s new history, or None to skip."""
        previous = prior_heads.get(head.branch)
        if previous is None:
            return sorted(available)
        if previous == head.commit_id:
            return None
        if previous not in available:
            self._event_logger.log_branch_rewritten(
                repository=repository,
                branch=head.branch,
                previous=previous,
                current=head.commit_id,
                rebaselined=True,
            )
            return None
        if not await handle.is_ancestor(previous, head.commit_id):
            self._event_logger.log_branch_rewritten(
                repository=repository,
                branch=head.branch,
                previous=previous,
                current=head.commit_id,
                rebaselined=False,
            )
        return [previous]

    async def _new_commits(
        self,
        handle: MirrorHandle,
        repository: str,
        head: BranchHead,
        exclude: list[str],
    ) -> list[CommitInfo]:
        limit = self._config.max_commits_per_branch
        commits = await handle.new_commits(head.commit_id, exclude, limit=limit + 1)
        if len(commits) > limit:
            self._event_logger.log_branch_truncated(
                repository=repository, branch=head.branch, kept=limit
            )
            commits = commits[:limit]
        return commits

    @staticmethod
    async def _known_branches(  # noqa: PLR0913
        handle: MirrorHandle,
        head: BranchHead,
        exclude: list[str],
        commits: list[CommitInfo],
        prior_heads: cabc.Mapping[str, str],
        available: cabc.Set[str],
    ) -> dict[str, set[str]]:
        """Map each new commit to the branches whose prior head contains it."""
        new_ids = {commit.commit_id for commit in commits}
        known: dict[str, set[str]] = {}
        for branch, previous in prior_heads.items():
            if branch == head.branch or previous not in available:
                continue
            if previous in exclude:
                continue
            unreachable = await handle.rev_list(head.commit_id, [*exclude, previous])
            for commit_id in new_ids - unreachable:
                known.setdefault(commit_id, set()).add(branch)
        return known

    async def _dispatch(
        self, item: _RepositoryWork, registry: SubscriptionRegistry
    ) -> None:
        routed = [
            (event, subscribers)
            for event in item.events
            if (subscribers := registry.subscribers_for(item.name, event.condition))
        ]
        if not routed and not item.watches:
            return
        pull_requests = {
            observation.commit_id: pull_request_number(observation.subject)
            for observation in item.observations
        }
        enrichment = await self._enrich(
            item,
            [
                *(pull_requests.get(event.commit_id) for event, _ in routed),
                *(watch.identifier for watch in item.watches),
            ],
        )
        for event, subscribers in routed:
            message = event.message
            line = enrichment.line_for(pull_requests.get(event.commit_id))
            if line is not None:
                message = append_line(message, line)
            if await self._deliver(item, event.condition, subscribers, message):
                item.notifications += 1
        await self._dispatch_watches(item, enrichment)

    async def _dispatch_watches(
        self, item: _RepositoryWork, enrichment: Enrichment
    ) -> None:
        """Tell watchers about pull requests that merged or closed."""
        watchers: dict[str, set[Subscriber]] = {}
        for watch in item.watches:
            watchers.setdefault(watch.identifier, set()).add(watch.subscriber)
        for identifier, subscribers in sorted(watchers.items()):
            entry = enrichment.statuses.get(identifier)
            if entry is None or not entry.state.terminal:
                continue
            message = render_watch_message(
                item.name, entry, item.settings.github_info
            )
            label = f"pull-request-{identifier}"
            if not await self._deliver(item, label, subscribers, message):
                continue
            item.notifications += 1
            item.resolved_watches.append(entry)
            self._event_logger.log_pull_request_resolved(
                repository=item.name,
                identifier=identifier,
                state=entry.state,
                watchers=len(subscribers),
            )

    async def _deliver(
        self,
        item: _RepositoryWork,
        label: str,
        subscribers: cabc.Collection[Subscriber],
        message: str,
    ) -> bool:
        """Hand ``message`` to the sink; return False when the sink refused it."""
        try:
            outcomes = await self._sink.deliver(subscribers, message)
        except DispatchError as exc:
            self._event_logger.log_dispatch_failed(
                repository=item.name, condition=label, error=exc
            )
            return False
        for outcome in outcomes.values():
            if not outcome.delivered:
                self._event_logger.log_dispatch_failed(
                    repository=item.name,
                    condition=label,
                    error=f"{outcome.chat_id}: {outcome.detail}",
                )
        return True

    async def _complete_watches(self, item: _RepositoryWork) -> None:
        if not item.resolved_watches:
            return
        try:
            await self._settings_store.complete_pull_request_watches(
                item.name, [entry.identifier for entry in item.resolved_watches]
            )
        except (ConfigError, OSError) as exc:
            log_warning(
                logger,
                "Could not clear resolved pull request watches for %s: %s",
                item.name,
                exc,
            )

    async def _enrich(
        self, item: _RepositoryWork, numbers: cabc.Iterable[str | None]
    ) -> Enrichment:
        identifiers = [number for number in numbers if number is not None]
        if not identifiers:
            return Enrichment()
        enrichment = await self._resolver.resolve(
            item.name, item.settings.github_info, identifiers
        )
        item.cache_updates = enrichment.cache_updates
        return enrichment


__all__ = [
    "CheckCycleCoordinator",
    "CycleBusyError",
    "CyclePhase",
    "CycleResult",
    "RepositoryFailure",
]
