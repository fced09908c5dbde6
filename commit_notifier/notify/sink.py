"""NotificationSink protocol for delivering rendered notifications.

This module defines the port through which the check cycle hands messages
to a chat transport. Adapters implement it for the filesystem (useful for
local runs and tests) and for the Telegram Bot API.

Usage
-----
>>> from commit_notifier.notify.filesystem_sink import FilesystemNotificationSink
>>> isinstance(FilesystemNotificationSink(Path(".")), NotificationSink)
True

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commit_notifier.settings.models import Subscriber


@dc.dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    """Result of delivering one message to one subscriber.

    Attributes
    ----------
    chat_id
        Subscriber the outcome refers to.
    delivered
        True when the transport accepted the message.
    detail
        Failure description when ``delivered`` is False.

    """

    chat_id: str
    delivered: bool
    detail: str | None = None

    @classmethod
    def ok(cls, chat_id: str) -> DeliveryOutcome:
        """Return a successful outcome."""
        return cls(chat_id=chat_id, delivered=True)

    @classmethod
    def failed(cls, chat_id: str, detail: str) -> DeliveryOutcome:
        """Return a failed outcome carrying ``detail``."""
        return cls(chat_id=chat_id, delivered=False, detail=detail)


@typ.runtime_checkable
class NotificationSink(typ.Protocol):
    """Protocol for delivering a message to a set of subscribers."""

    async def deliver(
        self,
        subscribers: cabc.Collection[Subscriber],
        message: str,
    ) -> dict[str, DeliveryOutcome]:
        """Deliver ``message`` to every subscriber.

        Parameters
        ----------
        subscribers
            Chats that should receive the message.
        message
            Rendered plain-text notification.

        Returns
        -------
        dict[str, DeliveryOutcome]
            Outcome per ``chat_id``.

        Raises
        ------
        DispatchError
            If the sink cannot attempt delivery at all.

        """
        ...


__all__ = ["DeliveryOutcome", "NotificationSink"]
