"""Tests for alert notifiers.

The aiohttp session is replaced with a mock, so no HTTP requests are made.
"""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from lending_bot.alerts.notifier import LogNotifier, WebhookNotifier, build_notifier
from lending_bot.config import NotificationSettings
from lending_bot.exceptions import NotificationDeliveryError

WEBHOOK = "https://hooks.example.test/alerts"


def _mock_session(status: int = 200, text: str = "ok") -> MagicMock:
    """Session whose post() yields a response with the given status."""
    response = MagicMock()
    response.status = status
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.post = MagicMock(return_value=context)
    session.close = AsyncMock()
    return session


@pytest.fixture
def webhook_notifier() -> WebhookNotifier:
    return WebhookNotifier(NotificationSettings(webhook_url=WEBHOOK, sender="test-bot"))


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_message_and_sender(self, webhook_notifier) -> None:
        session = _mock_session()
        webhook_notifier._session = session

        await webhook_notifier.send_alert("USD above 0.05%")

        session.post.assert_called_once_with(
            WEBHOOK, json={"message": "USD above 0.05%", "from": "test-bot"}
        )

    @pytest.mark.asyncio
    async def test_http_error_status_raises(self, webhook_notifier) -> None:
        webhook_notifier._session = _mock_session(status=500, text="boom")

        with pytest.raises(NotificationDeliveryError, match="HTTP 500"):
            await webhook_notifier.send_alert("hello")

    @pytest.mark.asyncio
    async def test_client_error_is_wrapped(self, webhook_notifier) -> None:
        session = _mock_session()
        session.post.side_effect = aiohttp.ClientConnectionError("refused")
        webhook_notifier._session = session

        with pytest.raises(NotificationDeliveryError, match="refused"):
            await webhook_notifier.send_alert("hello")

    @pytest.mark.asyncio
    async def test_close_releases_session(self, webhook_notifier) -> None:
        session = _mock_session()
        webhook_notifier._session = session

        await webhook_notifier.close()

        session.close.assert_awaited_once()
        assert webhook_notifier._session is None

    @pytest.mark.asyncio
    async def test_close_without_session_is_noop(self, webhook_notifier) -> None:
        await webhook_notifier.close()
        assert webhook_notifier._session is None


class TestBuildNotifier:
    def test_webhook_when_url_configured(self) -> None:
        notifier = build_notifier(NotificationSettings(webhook_url=WEBHOOK))
        assert isinstance(notifier, WebhookNotifier)

    def test_log_only_without_url(self) -> None:
        notifier = build_notifier(NotificationSettings(webhook_url=""))
        assert isinstance(notifier, LogNotifier)

    @pytest.mark.asyncio
    async def test_log_notifier_never_raises(self) -> None:
        await LogNotifier().send_alert("anything")
