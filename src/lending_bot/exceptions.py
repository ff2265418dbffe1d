"""Custom exceptions for the funding lending bot.

All exceptions live here to avoid circular imports between the
allocation, exchange, alert and rebalance packages.

Running out of funds is deliberately absent: a tier or a cycle that
cannot be funded is a normal skip outcome, recorded on the run rather
than raised.
"""


class LendingBotError(Exception):
    """Base exception for all bot errors."""


class ConfigurationError(LendingBotError):
    """Raised when a market, tier or alert definition is malformed.

    Fatal at startup: no rebalance cycle may start with a bad config.
    """


class ExchangeCallError(LendingBotError):
    """Raised when a single exchange call (cancel, place, refresh...) fails.

    Aborts the current rebalance cycle for that market only. The next
    scheduled cycle retries naturally.
    """


class SettleTimeoutError(ExchangeCallError):
    """Raised when available funds never became readable after cancelling."""


class NotificationDeliveryError(LendingBotError):
    """Raised when an alert could not be delivered to the webhook."""
