r"""Filesystem adapter for the NotificationSink protocol.

Appends one JSON object per delivered message to a JSON Lines file per
chat::

    {base_path}/{chat_id}.jsonl

Usage
-----
>>> import asyncio
>>> from pathlib import Path
>>> sink = FilesystemNotificationSink(Path("/var/lib/commit-notifier/outbox"))
>>> asyncio.run(sink.deliver([Subscriber(chat_id="42")], "[nixpkgs] ..."))
{'42': DeliveryOutcome(chat_id='42', delivered=True, detail=None)}

"""

from __future__ import annotations

import asyncio
import datetime as dt
import re
import typing as typ

import msgspec

from commit_notifier.common.time import utcnow

from .errors import DispatchError
from .sink import DeliveryOutcome

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    from pathlib import Path

    from commit_notifier.settings.models import Subscriber

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_\-]")


class OutboxRecord(msgspec.Struct, kw_only=True, frozen=True):
    """One line of a chat's outbox file."""

    chat_id: str
    username: str | None
    message: str
    delivered_at: dt.datetime


def _append_line(path: Path, line: bytes) -> None:
    with path.open("ab") as handle:
        handle.write(line + b"\n")


class FilesystemNotificationSink:
    """Write notifications to per-chat JSON Lines files.

    Parameters
    ----------
    base_path
        Directory holding one ``{chat_id}.jsonl`` file per subscriber.

    """

    def __init__(self, base_path: Path) -> None:
        """Initialise the sink with a base directory path."""
        self._base_path = base_path
        self._encoder = msgspec.json.Encoder()

    @property
    def base_path(self) -> Path:
        """Return the outbox directory."""
        return self._base_path

    def outbox_path(self, chat_id: str) -> Path:
        """Return the file receiving messages for ``chat_id``."""
        return self._base_path / f"{_UNSAFE_FILENAME.sub('_', chat_id)}.jsonl"

    async def deliver(
        self,
        subscribers: cabc.Collection[Subscriber],
        message: str,
    ) -> dict[str, DeliveryOutcome]:
        """Append ``message`` to the outbox of each subscriber."""
        try:
            await asyncio.to_thread(
                self._base_path.mkdir, parents=True, exist_ok=True
            )
        except OSError as exc:
            raise DispatchError.unavailable("filesystem sink", str(exc)) from exc

        delivered_at = utcnow()
        outcomes: dict[str, DeliveryOutcome] = {}
        for subscriber in subscribers:
            record = OutboxRecord(
                chat_id=subscriber.chat_id,
                username=subscriber.username,
                message=message,
                delivered_at=delivered_at,
            )
            try:
                await asyncio.to_thread(
                    _append_line,
                    self.outbox_path(subscriber.chat_id),
                    self._encoder.encode(record),
                )
            except OSError as exc:
                outcomes[subscriber.chat_id] = DeliveryOutcome.failed(
                    subscriber.chat_id, str(exc)
                )
            else:
                outcomes[subscriber.chat_id] = DeliveryOutcome.ok(subscriber.chat_id)
        return outcomes


__all__ = ["FilesystemNotificationSink", "OutboxRecord"]
