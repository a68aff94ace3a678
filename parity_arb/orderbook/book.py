"""
Order book snapshots and the streaming price index.
Snapshots are fetched per scan and never persisted across scans.
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sortedcontainers import SortedDict


@dataclass(frozen=True)
class PriceLevel:
    """Single price level with size."""
    price: Decimal
    size: Decimal


@dataclass
class BookSide:
    """One side of an orderbook (bids or asks)."""
    is_bid: bool
    levels: SortedDict = field(default_factory=SortedDict)

    def __post_init__(self):
        # Bids sorted descending (highest first), asks ascending (lowest first)
        if self.is_bid:
            self.levels = SortedDict(lambda x: -x)
        else:
            self.levels = SortedDict()

    def update(self, price: Decimal, size: Decimal) -> None:
        """Update a price level. Size of 0 removes the level."""
        if size <= 0:
            self.levels.pop(price, None)
        else:
            self.levels[price] = size

    def as_levels(self) -> tuple[PriceLevel, ...]:
        """Levels in priority order, best first."""
        return tuple(PriceLevel(price, self.levels[price]) for price in self.levels.keys())


def parse_levels(raw: Optional[Iterable[Any]]) -> list[tuple[Decimal, Decimal]]:
    """
    Parse venue levels into (price, size) pairs.

    Accepts dicts with "price"/"size" or 2-item sequences. Raises ValueError
    on an unparseable number.
    """
    levels = []
    for entry in raw or []:
        if isinstance(entry, dict):
            price, size = entry.get("price"), entry.get("size")
        else:
            price, size = entry
        try:
            levels.append((Decimal(str(price)), Decimal(str(size))))
        except InvalidOperation:
            raise ValueError(f"Invalid book level: {entry!r}") from None
    return levels


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Orderbook snapshot for one token. Bids descending, asks ascending."""
    token_id: str
    bids: tuple[PriceLevel, ...]
    asks: tuple[PriceLevel, ...]
    timestamp: float
    market: str = ""

    @classmethod
    def from_levels(
        cls,
        token_id: str,
        bids: Iterable[tuple[Decimal, Decimal]],
        asks: Iterable[tuple[Decimal, Decimal]],
        timestamp: Optional[float] = None,
        market: str = "",
    ) -> "OrderBookSnapshot":
        """Build a snapshot, enforcing sort order locally."""
        bid_side = BookSide(is_bid=True)
        ask_side = BookSide(is_bid=False)
        for price, size in bids:
            bid_side.update(price, size)
        for price, size in asks:
            ask_side.update(price, size)
        return cls(
            token_id=token_id,
            bids=bid_side.as_levels(),
            asks=ask_side.as_levels(),
            timestamp=time.time() if timestamp is None else timestamp,
            market=market,
        )

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OrderBookSnapshot":
        """Build a snapshot from a /book or /books payload."""
        raw_ts = data.get("timestamp")
        try:
            timestamp = int(raw_ts) / 1000 if raw_ts else None
        except (TypeError, ValueError):
            timestamp = None
        return cls.from_levels(
            token_id=data.get("asset_id", ""),
            bids=parse_levels(data.get("bids")),
            asks=parse_levels(data.get("asks")),
            timestamp=timestamp,
            market=data.get("market", ""),
        )

    @property
    def best_bid(self) -> Optional[PriceLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[PriceLevel]:
        return self.asks[0] if self.asks else None


class PriceIndex:
    """
    Latest best ask per token, fed by the streaming feed.

    An update replaces the previous ask for the same token; an update
    without an ask keeps the previously known one.
    """

    def __init__(self):
        self._asks: dict[str, Decimal] = {}
        self._lock = asyncio.Lock()

    async def update(self, token_id: str, best_ask: Optional[Decimal]) -> None:
        if best_ask is None:
            return
        async with self._lock:
            self._asks[token_id] = best_ask

    async def best_asks(
        self,
        yes_token_id: str,
        no_token_id: str,
    ) -> Optional[tuple[Decimal, Decimal]]:
        """Both legs' cached best asks, or None if either is unknown."""
        async with self._lock:
            yes_ask = self._asks.get(yes_token_id)
            no_ask = self._asks.get(no_token_id)
        if yes_ask is None or no_ask is None:
            return None
        return yes_ask, no_ask

    async def retain(self, token_ids: set[str]) -> None:
        """Drop tokens no longer watched."""
        async with self._lock:
            for token_id in list(self._asks):
                if token_id not in token_ids:
                    del self._asks[token_id]

    def __len__(self) -> int:
        return len(self._asks)
