"""Market discovery and pair cache."""

from .registry import MarketPair, MarketPairRegistry, extract_market_pair

__all__ = ["MarketPair", "MarketPairRegistry", "extract_market_pair"]
