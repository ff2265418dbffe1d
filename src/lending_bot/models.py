"""Shared data models for the funding lending bot.

CRITICAL: All amounts and rates use Decimal. Never use float for funds or rates.
Rates are fractional daily rates (0.0002 == 0.02% per day).
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class RebalanceState(str, Enum):
    """Where a market's rebalance cycle currently is."""

    IDLE = "idle"
    CANCELLING = "cancelling"
    SETTLING = "settling"
    ALLOCATING = "allocating"
    PLACING = "placing"
    FAILED = "failed"


class OutcomeKind(str, Enum):
    """Kinds of notable events recorded during a rebalance cycle."""

    NO_FUNDS = "no_funds"
    INSUFFICIENT_AVAILABLE = "insufficient_available"
    TIER_SKIPPED = "tier_skipped"
    TIER_ALLOCATED = "tier_allocated"
    OFFERS_PLACED = "offers_placed"
    FAILED = "failed"


class AlertOutcomeKind(str, Enum):
    """Result of evaluating one alert rule against a rate change."""

    FIRED = "fired"
    SUPPRESSED = "suppressed"
    DELIVERY_FAILED = "delivery_failed"


@dataclass
class RateSample:
    """A single observed lending rate for a symbol."""

    symbol: str
    rate: Decimal
    timestamp: float = field(default_factory=time.time)


@dataclass
class OfferPlan:
    """A funding offer ready to be submitted to the exchange."""

    symbol: str
    amount: Decimal
    rate: Decimal
    period_days: int


@dataclass
class TierPlan:
    """Allocation result for a single offer tier.

    ``offers`` is empty when the tier was skipped for lack of funds.
    """

    tier_index: int
    desired: Decimal
    allocated: Decimal
    per_order: Decimal = Decimal("0")
    low_rate: Decimal = Decimal("0")
    high_rate: Decimal = Decimal("0")
    offers: list[OfferPlan] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        """Whether the tier produced no offers."""
        return not self.offers


@dataclass
class RunOutcome:
    """One logged outcome inside a rebalance run."""

    kind: OutcomeKind
    detail: str = ""
    tier_index: int | None = None


@dataclass
class RebalanceRun:
    """Ephemeral working state for one rebalance cycle of one market.

    Created at the start of each cycle and discarded at the end; never
    shared between markets or cycles. The orchestrator keeps the most
    recent one per market for status reporting only.
    """

    symbol: str
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    state: RebalanceState = RebalanceState.IDLE
    total_funds: Decimal = Decimal("0")
    available_funds: Decimal | None = None
    remaining_available: Decimal = Decimal("0")
    offers_cancelled: int = 0
    offers_placed: int = 0
    outcomes: list[RunOutcome] = field(default_factory=list)

    def record(
        self, kind: OutcomeKind, detail: str = "", tier_index: int | None = None
    ) -> None:
        """Append an outcome to the run log."""
        self.outcomes.append(RunOutcome(kind=kind, detail=detail, tier_index=tier_index))

    @property
    def skipped(self) -> bool:
        """Whether the cycle ended early because funds were missing."""
        return any(
            o.kind in (OutcomeKind.NO_FUNDS, OutcomeKind.INSUFFICIENT_AVAILABLE)
            for o in self.outcomes
        )


@dataclass
class AlertOutcome:
    """Result of a single alert rule evaluation that crossed its threshold."""

    symbol: str
    rule_index: int
    threshold: Decimal
    old_rate: Decimal
    new_rate: Decimal
    kind: AlertOutcomeKind
    message: str = ""
