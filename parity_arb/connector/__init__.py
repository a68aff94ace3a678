"""Polymarket REST/WebSocket connector module."""

from .auth import ApiCredentials, AuthManager
from .rest_client import PolymarketRestClient
from .signer import OrderSigner
from .ws_client import FeedIngestor, FeedState, PriceUpdate, ReconnectBackoff

__all__ = [
    "ApiCredentials",
    "AuthManager",
    "PolymarketRestClient",
    "OrderSigner",
    "FeedIngestor",
    "FeedState",
    "PriceUpdate",
    "ReconnectBackoff",
]
