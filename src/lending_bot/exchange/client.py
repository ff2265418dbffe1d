"""Abstract funding exchange interface.

Defines the contract the rebalancer, rate feed and dashboard depend on.
Bitfinex-specific details stay in the concrete implementation; paper mode
swaps in an in-memory simulation behind the same interface.

Symbols are bare currency codes (``USD``, ``BTC``); implementations map
them onto exchange identifiers.
"""

from abc import ABC, abstractmethod
from decimal import Decimal


class FundingExchange(ABC):
    """Abstract base class for funding (margin lending) exchange clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the connection (load markets, authenticate)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def list_open_offers(self, symbol: str) -> list[str]:
        """Return the identifiers of all open funding offers for a symbol."""
        ...

    @abstractmethod
    async def cancel_offer(self, offer_id: str) -> None:
        """Cancel a single funding offer."""
        ...

    @abstractmethod
    async def new_offer(
        self, symbol: str, amount: Decimal, rate: Decimal, period_days: int
    ) -> str:
        """Submit a limit funding offer and return its identifier.

        Args:
            symbol: Funding currency.
            amount: Amount to lend.
            rate: Fractional daily rate (0.0002 == 0.02%/day).
            period_days: Lending period in days.
        """
        ...

    @abstractmethod
    async def refresh_balance(self, symbol: str) -> None:
        """Ask the exchange to recompute balances for a symbol."""
        ...

    @abstractmethod
    async def available_funds(self, symbol: str) -> Decimal | None:
        """Return funds free to offer, or None while the balance is unsettled."""
        ...

    @abstractmethod
    async def total_funds(self, symbol: str) -> Decimal:
        """Return the total funding wallet balance for a symbol."""
        ...

    @abstractmethod
    async def reference_rate(self, symbol: str) -> Decimal:
        """Return the current reference floating rate (FRR), 0 if unknown."""
        ...

    @abstractmethod
    async def last_trade_rate(self, symbol: str) -> Decimal | None:
        """Return the rate of the most recent public funding trade."""
        ...
