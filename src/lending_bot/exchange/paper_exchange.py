"""Paper funding exchange with simulated offers and balances.

Offers are held in memory and never fill. Reference and trade rates come
from a live public data source when one is given (public endpoints need no
API keys), otherwise from values set with set_reference_rate and
set_trade_rate.

Like the real exchange, available funds read as None after a cancel until
the balance has been refreshed.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from lending_bot.exchange.client import FundingExchange
from lending_bot.logging import get_logger

logger = get_logger(__name__)


@dataclass
class PaperOffer:
    """A simulated open funding offer."""

    offer_id: str
    symbol: str
    amount: Decimal
    rate: Decimal
    period_days: int


class PaperFundingExchange(FundingExchange):
    """Simulated funding exchange for paper mode and tests.

    Args:
        market_data: Optional real exchange used only for public rate reads.
    """

    def __init__(self, market_data: FundingExchange | None = None) -> None:
        self._market_data = market_data
        self._balances: dict[str, Decimal] = {}
        self._offers: dict[str, PaperOffer] = {}
        self._settled: dict[str, bool] = {}
        self._reference_rates: dict[str, Decimal] = {}
        self._trade_rates: dict[str, Decimal] = {}

    def set_initial_balance(self, symbol: str, amount: Decimal) -> None:
        """Set the virtual funding wallet balance for a symbol."""
        symbol = symbol.upper()
        self._balances[symbol] = amount
        self._settled[symbol] = True
        logger.info("paper_balance_set", symbol=symbol, amount=str(amount))

    def set_reference_rate(self, symbol: str, rate: Decimal) -> None:
        self._reference_rates[symbol.upper()] = rate

    def set_trade_rate(self, symbol: str, rate: Decimal) -> None:
        self._trade_rates[symbol.upper()] = rate

    def get_open_offers(self, symbol: str | None = None) -> list[PaperOffer]:
        """Return simulated open offers, optionally for one symbol."""
        return [
            offer
            for offer in self._offers.values()
            if symbol is None or offer.symbol == symbol.upper()
        ]

    async def connect(self) -> None:
        if self._market_data is not None:
            await self._market_data.connect()
        logger.info("paper_exchange_ready", symbols=sorted(self._balances))

    async def close(self) -> None:
        if self._market_data is not None:
            await self._market_data.close()

    async def list_open_offers(self, symbol: str) -> list[str]:
        return [offer.offer_id for offer in self.get_open_offers(symbol)]

    async def cancel_offer(self, offer_id: str) -> None:
        offer = self._offers.pop(offer_id, None)
        if offer is None:
            raise KeyError(f"unknown offer {offer_id}")
        self._settled[offer.symbol] = False
        logger.debug("paper_offer_cancelled", offer_id=offer_id, symbol=offer.symbol)

    async def new_offer(
        self, symbol: str, amount: Decimal, rate: Decimal, period_days: int
    ) -> str:
        symbol = symbol.upper()
        available = self._free_balance(symbol)
        if amount > available:
            raise ValueError(
                f"offer of {amount} {symbol} exceeds available {available}"
            )
        offer = PaperOffer(
            offer_id=uuid4().hex[:12],
            symbol=symbol,
            amount=amount,
            rate=rate,
            period_days=period_days,
        )
        self._offers[offer.offer_id] = offer
        logger.debug(
            "paper_offer_created",
            offer_id=offer.offer_id,
            symbol=symbol,
            amount=str(amount),
            rate=str(rate),
            period_days=period_days,
        )
        return offer.offer_id

    async def refresh_balance(self, symbol: str) -> None:
        self._settled[symbol.upper()] = True

    async def available_funds(self, symbol: str) -> Decimal | None:
        symbol = symbol.upper()
        if not self._settled.get(symbol, True):
            return None
        return self._free_balance(symbol)

    async def total_funds(self, symbol: str) -> Decimal:
        return self._balances.get(symbol.upper(), Decimal("0"))

    async def reference_rate(self, symbol: str) -> Decimal:
        if self._market_data is not None:
            return await self._market_data.reference_rate(symbol)
        return self._reference_rates.get(symbol.upper(), Decimal("0"))

    async def last_trade_rate(self, symbol: str) -> Decimal | None:
        if self._market_data is not None:
            return await self._market_data.last_trade_rate(symbol)
        return self._trade_rates.get(symbol.upper())

    def _free_balance(self, symbol: str) -> Decimal:
        offered = sum(
            (o.amount for o in self._offers.values() if o.symbol == symbol),
            Decimal("0"),
        )
        return self._balances.get(symbol, Decimal("0")) - offered
