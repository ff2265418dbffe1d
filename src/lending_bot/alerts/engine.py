"""Rate alert engine with per-rule cooldowns.

Alerts only fire on upward crossings: a rule fires when the rate moves
from below its threshold to at or above it. Rules are evaluated lowest
threshold first, so one large jump can fire several rules, each gated by
its own cooldown. A crossing inside the cooldown window is recorded as
suppressed and not sent.

Cooldown state (last trigger time per rule) is owned here and only
mutated by evaluate(), which the rate tracker calls from its single
consumer task.
"""

import time
from collections.abc import Callable
from decimal import Decimal

from lending_bot.alerts.notifier import Notifier
from lending_bot.allocation.rounding import round_places
from lending_bot.config import AlertRule, MarketConfig
from lending_bot.exceptions import NotificationDeliveryError
from lending_bot.logging import get_logger
from lending_bot.models import AlertOutcome, AlertOutcomeKind

logger = get_logger(__name__)

# Treated as "never triggered"
_LONG_AGO = float("-inf")


def format_rate_pct(rate: Decimal) -> str:
    """Format a fractional daily rate as a percentage string (0.0005 -> '0.05%')."""
    pct = round_places(rate * 100, 4).normalize()
    return f"{pct:f}%"


def render_message(template: str, threshold: Decimal, new_rate: Decimal, old_rate: Decimal) -> str:
    """Substitute ``{{rate}}``, ``{{newRate}}`` and ``{{oldRate}}`` in a template."""
    return (
        template.replace("{{rate}}", format_rate_pct(threshold))
        .replace("{{newRate}}", format_rate_pct(new_rate))
        .replace("{{oldRate}}", format_rate_pct(old_rate))
    )


class AlertEngine:
    """Turns rate changes into deduplicated notifications.

    Args:
        markets: Market configs carrying the alert rules.
        notifier: Where fired alerts are delivered.
        clock: Time source in seconds (injectable for tests).
    """

    def __init__(
        self,
        markets: list[MarketConfig],
        notifier: Notifier,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._notifier = notifier
        self._clock = clock
        # Rules per symbol, lowest threshold first, keeping their config index
        self._rules: dict[str, list[tuple[int, AlertRule]]] = {
            market.symbol: sorted(enumerate(market.alerts), key=lambda item: item[1].threshold)
            for market in markets
        }
        self._last_triggered: dict[tuple[str, int], float] = {}

    def last_triggered(self, symbol: str, rule_index: int) -> float:
        """Return when a rule last fired (-inf if never)."""
        return self._last_triggered.get((symbol, rule_index), _LONG_AGO)

    async def evaluate(
        self,
        symbol: str,
        old_rate: Decimal,
        new_rate: Decimal,
        now: float | None = None,
    ) -> list[AlertOutcome]:
        """Evaluate every rule of ``symbol`` against a rate change.

        Returns:
            One outcome per rule whose threshold was crossed (fired,
            suppressed or failed delivery). Empty for non-increasing moves.
        """
        if new_rate <= old_rate:
            return []

        now = self._clock() if now is None else now
        outcomes: list[AlertOutcome] = []

        for index, rule in self._rules.get(symbol, []):
            threshold = rule.threshold
            if not old_rate < threshold <= new_rate:
                continue

            key = (symbol, index)
            elapsed = now - self._last_triggered.get(key, _LONG_AGO)
            if elapsed < rule.cooldown_minutes * 60:
                logger.info(
                    "alert_suppressed_cooldown",
                    symbol=symbol,
                    threshold_pct=format_rate_pct(threshold),
                    new_rate_pct=format_rate_pct(new_rate),
                    seconds_since_last=round(elapsed, 1),
                )
                outcomes.append(
                    AlertOutcome(
                        symbol=symbol,
                        rule_index=index,
                        threshold=threshold,
                        old_rate=old_rate,
                        new_rate=new_rate,
                        kind=AlertOutcomeKind.SUPPRESSED,
                    )
                )
                continue

            message = render_message(rule.message, threshold, new_rate, old_rate)
            self._last_triggered[key] = now
            kind = AlertOutcomeKind.FIRED
            try:
                await self._notifier.send_alert(message)
            except NotificationDeliveryError as exc:
                kind = AlertOutcomeKind.DELIVERY_FAILED
                logger.error(
                    "alert_delivery_failed",
                    symbol=symbol,
                    threshold_pct=format_rate_pct(threshold),
                    error=str(exc),
                )
            else:
                logger.info(
                    "alert_fired",
                    symbol=symbol,
                    threshold_pct=format_rate_pct(threshold),
                    old_rate_pct=format_rate_pct(old_rate),
                    new_rate_pct=format_rate_pct(new_rate),
                )

            outcomes.append(
                AlertOutcome(
                    symbol=symbol,
                    rule_index=index,
                    threshold=threshold,
                    old_rate=old_rate,
                    new_rate=new_rate,
                    kind=kind,
                    message=message,
                )
            )

        return outcomes
