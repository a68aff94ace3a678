"""
Market pair registry.

Caches YES/NO token pairs for the markets being watched. The cache is an
immutable snapshot replaced wholesale on each refresh, so readers always see
either the previous or the new complete set.
"""

import asyncio
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..connector import PolymarketRestClient
    from ..monitor import Logger


CRYPTO_KEYWORDS = ("bitcoin", "btc", "ethereum", "eth", "crypto")


@dataclass(frozen=True)
class MarketPair:
    """YES/NO token pair of one binary market."""
    market_id: str
    yes_token_id: str
    no_token_id: str
    description: str
    tick_size: str = "0.01"
    neg_risk: bool = False


def extract_market_pair(market: dict[str, Any]) -> Optional[MarketPair]:
    """
    Pair a market's outcome tokens.

    Only markets with exactly two tokens, one labelled "yes" and one "no"
    (any case), qualify.
    """
    tokens = market.get("tokens") or []
    if len(tokens) != 2:
        return None

    yes_token = no_token = None
    for token in tokens:
        outcome = str(token.get("outcome", "")).strip().lower()
        if outcome == "yes":
            yes_token = token.get("token_id")
        elif outcome == "no":
            no_token = token.get("token_id")

    if not yes_token or not no_token:
        return None

    tick_size = market.get("minimum_tick_size")
    return MarketPair(
        market_id=market.get("condition_id", ""),
        yes_token_id=str(yes_token),
        no_token_id=str(no_token),
        description=market.get("question") or "Unknown",
        tick_size=str(tick_size) if tick_size else "0.01",
        neg_risk=bool(market.get("neg_risk", False)),
    )


def is_tradeable(market: dict[str, Any]) -> bool:
    """Active, open and accepting orders."""
    return (
        bool(market.get("active"))
        and not market.get("closed")
        and bool(market.get("accepting_orders"))
    )


def matches_topic(market: dict[str, Any], keywords: tuple[str, ...] = CRYPTO_KEYWORDS) -> bool:
    """Case-insensitive substring match of the question against the keyword set."""
    question = (market.get("question") or "").lower()
    return any(keyword in question for keyword in keywords)


@dataclass(frozen=True)
class _Snapshot:
    pairs: Mapping[str, MarketPair]
    by_token: Mapping[str, MarketPair]


def _build_snapshot(pairs: list[MarketPair]) -> _Snapshot:
    by_market: dict[str, MarketPair] = {}
    by_token: dict[str, MarketPair] = {}
    for pair in pairs:
        by_market[pair.market_id] = pair
        by_token[pair.yes_token_id] = pair
        by_token[pair.no_token_id] = pair
    return _Snapshot(MappingProxyType(by_market), MappingProxyType(by_token))


class MarketPairRegistry:
    """Periodically refreshed cache of watched market pairs."""

    def __init__(
        self,
        rest_client: "PolymarketRestClient",
        max_markets: int = 50,
        topic_filter_enabled: bool = True,
        max_pages: int = 20,
        logger: Optional["Logger"] = None,
    ):
        self.client = rest_client
        self.max_markets = max_markets
        self.topic_filter_enabled = topic_filter_enabled
        self.max_pages = max_pages
        self.logger = logger

        self._snapshot = _build_snapshot([])
        self._refresh_lock = asyncio.Lock()

    async def _fetch_candidates(self) -> list[dict[str, Any]]:
        """Walk the listing until enough candidate markets are collected."""
        candidates: list[dict[str, Any]] = []
        cursor = ""
        for _ in range(self.max_pages):
            markets, cursor = await self.client.get_markets_page(cursor)
            for market in markets:
                if not is_tradeable(market):
                    continue
                if self.topic_filter_enabled and not matches_topic(market):
                    continue
                candidates.append(market)
                if len(candidates) >= self.max_markets:
                    return candidates
            if cursor is None:
                break
        return candidates

    async def refresh(self) -> int:
        """
        Replace the cache with the current market listing.

        Fetch errors propagate and leave the previous cache in place.
        """
        async with self._refresh_lock:
            candidates = await self._fetch_candidates()

            pairs = []
            for market in candidates[:self.max_markets]:
                pair = extract_market_pair(market)
                if pair is not None:
                    pairs.append(pair)

            self._snapshot = _build_snapshot(pairs)

        if self.logger:
            self.logger.info(
                "markets_refreshed",
                candidates=len(candidates),
                cached=len(self._snapshot.pairs),
                crypto_only=self.topic_filter_enabled,
            )
        return len(self._snapshot.pairs)

    def get_pair(self, market_id: str) -> Optional[MarketPair]:
        return self._snapshot.pairs.get(market_id)

    def get_pair_for_token(self, token_id: str) -> Optional[MarketPair]:
        return self._snapshot.by_token.get(token_id)

    def list_pairs(self) -> list[MarketPair]:
        return list(self._snapshot.pairs.values())

    def list_watched_token_ids(self) -> set[str]:
        """Every YES and NO token of the cached pairs."""
        return set(self._snapshot.by_token)

    def __len__(self) -> int:
        return len(self._snapshot.pairs)
