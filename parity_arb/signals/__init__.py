"""Signals module for arbitrage detection."""

from .parity_detector import ArbitrageOpportunity, ParityDetector

__all__ = ["ArbitrageOpportunity", "ParityDetector"]
