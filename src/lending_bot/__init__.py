"""Funding lending bot: tiered funding offers, best-rate tracking and rate alerts."""

__version__ = "0.1.0"
