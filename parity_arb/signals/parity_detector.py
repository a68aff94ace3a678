"""
Parity arbitrage signal detector.
Identifies markets where YES_ask + NO_ask is below one USDC.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..connector import PolymarketRestClient
    from ..markets import MarketPair
    from ..monitor import Logger
    from ..orderbook import OrderBookSnapshot


ONE = Decimal("1")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """
    Parity arbitrage opportunity.

    Owning one YES and one NO share pays exactly 1 at resolution, so buying
    both below 1 locks ``profit_per_share``.
    """
    market_id: str
    yes_token_id: str
    no_token_id: str
    yes_ask_price: Decimal
    no_ask_price: Decimal
    combined_price: Decimal  # yes_ask + no_ask
    profit_per_share: Decimal  # 1 - combined_price
    max_size: Decimal  # min of both best-ask sizes
    detected_at: datetime
    yes_ask_size: Decimal = Decimal("0")
    no_ask_size: Decimal = Decimal("0")
    description: str = ""
    tick_size: str = "0.01"
    neg_risk: bool = False

    def expected_profit(self, size: Decimal) -> Decimal:
        """Expected total profit for given size."""
        return self.profit_per_share * size


class ParityDetector:
    """
    Detects parity arbitrage opportunities.

    A pair signals iff combined_price < max_combined_price and
    profit_per_share >= min_profit_threshold.
    """

    def __init__(
        self,
        rest_client: "PolymarketRestClient",
        max_combined_price: Decimal = Decimal("0.99"),
        min_profit_threshold: Decimal = Decimal("0.005"),
        logger: Optional["Logger"] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = rest_client
        self.max_combined_price = max_combined_price
        self.min_profit_threshold = min_profit_threshold
        self.logger = logger
        self.clock = clock

    def passes_thresholds(self, yes_ask: Decimal, no_ask: Decimal) -> bool:
        """The price rule alone, without sizes."""
        combined = yes_ask + no_ask
        return combined < self.max_combined_price and ONE - combined >= self.min_profit_threshold

    def evaluate(
        self,
        pair: "MarketPair",
        yes_book: "OrderBookSnapshot",
        no_book: "OrderBookSnapshot",
    ) -> Optional[ArbitrageOpportunity]:
        """Check one pair against its two current books."""
        yes_ask = yes_book.best_ask
        no_ask = no_book.best_ask
        if yes_ask is None or no_ask is None:
            if self.logger:
                self.logger.debug(
                    "no_ask_liquidity",
                    market_id=pair.market_id,
                    yes_asks=len(yes_book.asks),
                    no_asks=len(no_book.asks),
                )
            return None

        combined_price = yes_ask.price + no_ask.price
        profit_per_share = ONE - combined_price

        if self.logger:
            self.logger.debug(
                "market_priced",
                market_id=pair.market_id,
                description=pair.description[:35],
                yes_ask=yes_ask.price,
                no_ask=no_ask.price,
                combined=combined_price,
                spread=profit_per_share,
            )

        if not (
            combined_price < self.max_combined_price
            and profit_per_share >= self.min_profit_threshold
        ):
            return None

        return ArbitrageOpportunity(
            market_id=pair.market_id,
            yes_token_id=pair.yes_token_id,
            no_token_id=pair.no_token_id,
            yes_ask_price=yes_ask.price,
            no_ask_price=no_ask.price,
            combined_price=combined_price,
            profit_per_share=profit_per_share,
            max_size=min(yes_ask.size, no_ask.size),
            detected_at=self.clock(),
            yes_ask_size=yes_ask.size,
            no_ask_size=no_ask.size,
            description=pair.description,
            tick_size=pair.tick_size,
            neg_risk=pair.neg_risk,
        )

    def _evaluate_from(
        self,
        pairs: list["MarketPair"],
        books: dict[str, "OrderBookSnapshot"],
    ) -> list[ArbitrageOpportunity]:
        opportunities = []
        for pair in pairs:
            yes_book = books.get(pair.yes_token_id)
            no_book = books.get(pair.no_token_id)
            if yes_book is None or no_book is None:
                if self.logger:
                    self.logger.debug(
                        "book_missing",
                        market_id=pair.market_id,
                        yes=yes_book is not None,
                        no=no_book is not None,
                    )
                continue
            opportunity = self.evaluate(pair, yes_book, no_book)
            if opportunity is not None:
                opportunities.append(opportunity)
        return opportunities

    async def scan_all(self, pairs: list["MarketPair"]) -> list[ArbitrageOpportunity]:
        """
        Scan every pair with one batched book fetch.

        Pairs whose books did not come back are skipped.
        """
        if not pairs:
            if self.logger:
                self.logger.warning("scan_skipped", reason="no markets cached")
            return []

        token_ids = []
        for pair in pairs:
            token_ids.extend((pair.yes_token_id, pair.no_token_id))

        books = await self.client.get_order_books(token_ids)
        book_map = {book.token_id: book for book in books}

        opportunities = self._evaluate_from(pairs, book_map)
        if self.logger:
            self.logger.debug(
                "scan_complete",
                markets=len(pairs),
                books=len(book_map),
                opportunities=len(opportunities),
            )
        return opportunities

    async def scan_market(self, pair: "MarketPair") -> Optional[ArbitrageOpportunity]:
        """Fetch fresh books for a single pair and evaluate it."""
        books = await self.client.get_order_books([pair.yes_token_id, pair.no_token_id])
        found = self._evaluate_from([pair], {book.token_id: book for book in books})
        return found[0] if found else None
