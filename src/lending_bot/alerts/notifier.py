"""Alert delivery to a chat webhook.

A notifier only knows how to deliver a finished text message. Failures
surface as NotificationDeliveryError; callers log them and move on, nothing
is retried.
"""

from abc import ABC, abstractmethod

import aiohttp

from lending_bot.config import NotificationSettings
from lending_bot.exceptions import NotificationDeliveryError
from lending_bot.logging import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    """Abstract alert sink."""

    @abstractmethod
    async def send_alert(self, message: str) -> None:
        """Deliver a formatted alert message.

        Raises:
            NotificationDeliveryError: If the message could not be delivered.
        """
        ...

    async def close(self) -> None:
        """Release any held resources."""


class LogNotifier(Notifier):
    """Notifier used when no webhook is configured: alerts go to the log only."""

    async def send_alert(self, message: str) -> None:
        logger.info("alert_not_delivered_no_webhook", message=message)


class WebhookNotifier(Notifier):
    """POSTs ``{"message": ..., "from": ...}`` as JSON to a webhook URL.

    Args:
        settings: Webhook URL, sender name and request timeout.
    """

    def __init__(self, settings: NotificationSettings) -> None:
        self._url = settings.webhook_url
        self._sender = settings.sender
        self._timeout = aiohttp.ClientTimeout(total=settings.timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def send_alert(self, message: str) -> None:
        payload = {"message": message, "from": self._sender}
        try:
            session = self._get_session()
            async with session.post(self._url, json=payload) as response:
                if response.status >= 300:
                    body = await response.text()
                    raise NotificationDeliveryError(
                        f"webhook returned HTTP {response.status}: {body[:200]}"
                    )
        except NotificationDeliveryError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise NotificationDeliveryError(f"webhook request failed: {exc}") from exc

        logger.info("alert_delivered", message=message)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session


def build_notifier(settings: NotificationSettings) -> Notifier:
    """Return a WebhookNotifier, or a LogNotifier when no URL is configured."""
    if settings.webhook_url:
        return WebhookNotifier(settings)
    logger.warning("no_webhook_configured", note="alerts will only be logged")
    return LogNotifier()
