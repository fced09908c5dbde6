"""Routing of notification events to subscribed chats."""

from __future__ import annotations

import collections
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commit_notifier.settings.models import Subscriber, Subscription
    from commit_notifier.settings.store import SettingsSnapshot


class SubscriptionRegistry:
    """Map repository and condition names to subscribing chats.

    A subscription that names no conditions receives every condition of its
    repository. The registry is built from a settings snapshot and never
    changes afterwards.
    """

    def __init__(self, subscriptions: cabc.Iterable[Subscription] = ()) -> None:
        """Index ``subscriptions`` by repository."""
        self._by_repository: dict[str, list[Subscription]] = collections.defaultdict(
            list
        )
        for subscription in subscriptions:
            self._by_repository[subscription.repository].append(subscription)

    @classmethod
    def from_snapshot(cls, snapshot: SettingsSnapshot) -> SubscriptionRegistry:
        """Build a registry from a settings snapshot."""
        return cls(snapshot.subscriptions)

    def subscribers_for(self, repository: str, condition: str) -> frozenset[Subscriber]:
        """Return the chats subscribed to ``condition`` of ``repository``."""
        return frozenset(
            subscription.subscriber
            for subscription in self._by_repository.get(repository, ())
            if not subscription.conditions or condition in subscription.conditions
        )

    def has_subscribers(self, repository: str) -> bool:
        """Return True when any chat follows ``repository``."""
        return bool(self._by_repository.get(repository))


__all__ = ["SubscriptionRegistry"]
