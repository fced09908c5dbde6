"""Telegram Bot API adapter for the NotificationSink protocol."""

from __future__ import annotations

import dataclasses
import os
import typing as typ

import httpx

from commit_notifier.logging import get_logger, log_warning

from .errors import SinkConfigError
from .sink import DeliveryOutcome

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commit_notifier.settings.models import Subscriber

logger = get_logger(__name__)

_HTTP_ERROR_STATUS_THRESHOLD = 400
_TOKEN_ENV = "COMMIT_NOTIFIER_TELEGRAM_TOKEN"


@dataclasses.dataclass(frozen=True, slots=True)
class TelegramConfig:
    """Configuration for the Telegram Bot API sink."""

    token: str
    api_url: str = "https://api.telegram.org"
    timeout_s: float = 20.0

    @classmethod
    def from_env(cls) -> TelegramConfig:
        """Build configuration from ``COMMIT_NOTIFIER_TELEGRAM_TOKEN``.

        Raises
        ------
        SinkConfigError
            If the token is unset or blank.

        """
        token = os.environ.get(_TOKEN_ENV, "").strip()
        if not token:
            raise SinkConfigError.missing_token(_TOKEN_ENV)
        return cls(token=token)


class TelegramNotificationSink:
    """Send notifications through ``sendMessage`` of the Telegram Bot API."""

    def __init__(
        self,
        config: TelegramConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the sink, creating an HTTP client unless one is given."""
        if not config.token.strip():
            raise SinkConfigError.missing_token(_TOKEN_ENV)
        self._endpoint = f"{config.api_url}/bot{config.token}/sendMessage"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout_s)

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def deliver(
        self,
        subscribers: cabc.Collection[Subscriber],
        message: str,
    ) -> dict[str, DeliveryOutcome]:
        """Send ``message`` to each subscriber, one request per chat."""
        outcomes: dict[str, DeliveryOutcome] = {}
        for subscriber in subscribers:
            outcomes[subscriber.chat_id] = await self._send(subscriber, message)
        return outcomes

    async def _send(self, subscriber: Subscriber, message: str) -> DeliveryOutcome:
        text = message
        if subscriber.username:
            text = f"{message}\n@{subscriber.username}"
        try:
            response = await self._client.post(
                self._endpoint,
                json={
                    "chat_id": subscriber.chat_id,
                    "text": text,
                    "disable_web_page_preview": True,
                },
            )
        except httpx.HTTPError as exc:
            log_warning(
                logger, "Telegram request failed for %s: %s", subscriber.chat_id, exc
            )
            return DeliveryOutcome.failed(subscriber.chat_id, str(exc))
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            detail = f"Telegram HTTP {response.status_code}"
            log_warning(logger, "%s for %s", detail, subscriber.chat_id)
            return DeliveryOutcome.failed(subscriber.chat_id, detail)
        return DeliveryOutcome.ok(subscriber.chat_id)


__all__ = ["TelegramConfig", "TelegramNotificationSink"]
