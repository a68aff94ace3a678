"""Orderbook snapshots and streaming price index."""

from .book import OrderBookSnapshot, PriceIndex, PriceLevel

__all__ = ["OrderBookSnapshot", "PriceIndex", "PriceLevel"]
