"""Bitfinex funding client implementation via ccxt async.

ccxt's unified API does not cover funding offers, so this client uses the
implicit Bitfinex v2 REST endpoints that ccxt generates from the exchange
definition (``private_post_auth_r_funding_offers_symbol`` and friends).
Responses are the raw Bitfinex arrays; field positions are named below.

Funding symbols are the currency prefixed with ``f`` (``USD`` -> ``fUSD``).
"""

from decimal import Decimal

import ccxt.async_support as ccxt_async

from lending_bot.config import ExchangeSettings
from lending_bot.exchange.client import FundingExchange
from lending_bot.logging import get_logger

logger = get_logger(__name__)

# Funding ticker: [FRR, BID, BID_PERIOD, BID_SIZE, ASK, ...]
_TICKER_FRR = 0
# Funding trade: [ID, MTS, AMOUNT, RATE, PERIOD]
_TRADE_RATE = 3
# Wallet: [WALLET_TYPE, CURRENCY, BALANCE, UNSETTLED_INTEREST, AVAILABLE_BALANCE, ...]
_WALLET_TYPE = 0
_WALLET_CURRENCY = 1
_WALLET_BALANCE = 2
_WALLET_AVAILABLE = 4
# Funding offer: [ID, SYMBOL, MTS_CREATED, MTS_UPDATED, AMOUNT, ...]
_OFFER_ID = 0
# Submit notification: [MTS, TYPE, MESSAGE_ID, null, OFFER, CODE, STATUS, TEXT]
_NOTIFY_PAYLOAD = 4
_NOTIFY_STATUS = 6
_NOTIFY_TEXT = 7


def funding_symbol(symbol: str) -> str:
    """Map a bare currency onto its Bitfinex funding symbol."""
    return f"f{symbol.upper()}"


def _to_decimal(value: object) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


class BitfinexFundingClient(FundingExchange):
    """Concrete Bitfinex funding client using ccxt async."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self._exchange = ccxt_async.bitfinex(
            {
                "apiKey": settings.api_key.get_secret_value(),
                "secret": settings.api_secret.get_secret_value(),
                "enableRateLimit": True,
            }
        )
        # Last funding wallet row per currency, refreshed on demand
        self._wallets: dict[str, list] = {}

    @property
    def exchange(self) -> ccxt_async.bitfinex:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Load markets and, when credentials are set, prime the wallet cache."""
        logger.info("connecting_to_bitfinex")
        await self._exchange.load_markets()
        if self._settings.api_key.get_secret_value():
            await self._load_wallets()
        logger.info("bitfinex_connected", wallets=sorted(self._wallets))

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        logger.info("closing_bitfinex_connection")
        await self._exchange.close()
        logger.info("bitfinex_connection_closed")

    async def list_open_offers(self, symbol: str) -> list[str]:
        offers = await self._exchange.private_post_auth_r_funding_offers_symbol(
            {"symbol": funding_symbol(symbol)}
        )
        return [str(offer[_OFFER_ID]) for offer in offers or []]

    async def cancel_offer(self, offer_id: str) -> None:
        logger.info("cancelling_offer", offer_id=offer_id)
        await self._exchange.private_post_auth_w_funding_offer_cancel({"id": int(offer_id)})

    async def new_offer(
        self, symbol: str, amount: Decimal, rate: Decimal, period_days: int
    ) -> str:
        logger.info(
            "submitting_offer",
            symbol=symbol,
            amount=str(amount),
            rate=str(rate),
            period_days=period_days,
        )
        response = await self._exchange.private_post_auth_w_funding_offer_submit(
            {
                "type": "LIMIT",
                "symbol": funding_symbol(symbol),
                "amount": str(amount),
                "rate": str(rate),
                "period": period_days,
                "flags": 0,
            }
        )
        status = response[_NOTIFY_STATUS] if len(response) > _NOTIFY_STATUS else None
        if status not in (None, "SUCCESS"):
            text = response[_NOTIFY_TEXT] if len(response) > _NOTIFY_TEXT else ""
            raise RuntimeError(f"offer rejected: {status} {text}")
        offer = response[_NOTIFY_PAYLOAD]
        return str(offer[_OFFER_ID])

    async def refresh_balance(self, symbol: str) -> None:
        await self._load_wallets()

    async def available_funds(self, symbol: str) -> Decimal | None:
        row = self._wallets.get(symbol.upper())
        if row is None:
            return None
        return _to_decimal(row[_WALLET_AVAILABLE])

    async def total_funds(self, symbol: str) -> Decimal:
        row = self._wallets.get(symbol.upper())
        if row is None:
            return Decimal("0")
        return _to_decimal(row[_WALLET_BALANCE]) or Decimal("0")

    async def reference_rate(self, symbol: str) -> Decimal:
        ticker = await self._exchange.public_get_ticker_symbol(
            {"symbol": funding_symbol(symbol)}
        )
        if not ticker:
            return Decimal("0")
        return _to_decimal(ticker[_TICKER_FRR]) or Decimal("0")

    async def last_trade_rate(self, symbol: str) -> Decimal | None:
        trades = await self._exchange.public_get_trades_symbol_hist(
            {"symbol": funding_symbol(symbol), "limit": 1}
        )
        if not trades:
            return None
        return _to_decimal(trades[0][_TRADE_RATE])

    async def _load_wallets(self) -> None:
        """Fetch all wallets and keep the funding ones, keyed by currency."""
        wallets = await self._exchange.private_post_auth_r_wallets()
        self._wallets = {
            str(row[_WALLET_CURRENCY]).upper(): row
            for row in wallets or []
            if row[_WALLET_TYPE] == "funding"
        }
        logger.debug("funding_wallets_loaded", count=len(self._wallets))
