"""Rebalancing -- per-market cancel/settle/allocate/place cycles and their scheduler."""

from lending_bot.rebalance.orchestrator import Orchestrator
from lending_bot.rebalance.rebalancer import MarketRebalancer

__all__ = ["MarketRebalancer", "Orchestrator"]
