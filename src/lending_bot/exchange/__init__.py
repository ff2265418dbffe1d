"""Exchange client layer -- Bitfinex funding API via ccxt, plus a paper simulation."""

from lending_bot.exchange.bitfinex_client import BitfinexFundingClient, funding_symbol
from lending_bot.exchange.client import FundingExchange
from lending_bot.exchange.paper_exchange import PaperFundingExchange
from lending_bot.exchange.rate_limiter import RateLimiter

__all__ = [
    "BitfinexFundingClient",
    "FundingExchange",
    "PaperFundingExchange",
    "RateLimiter",
    "funding_symbol",
]
