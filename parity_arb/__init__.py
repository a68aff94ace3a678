"""
Polymarket YES+NO Parity Arbitrage Bot

Signals when YES_best_ask + NO_best_ask falls below a configured ceiling and
buys both sides concurrently to lock the gap to 1.00 USDC.
"""

__version__ = "0.1.0"
