"""
Dual-leg execution engine for parity arbitrage.

Both legs are signed concurrently and submitted concurrently as FOK market
buys. The venue does not link the two orders, so any combination of leg
outcomes is possible; a one-sided fill is raised as a partial-execution
alert and left for manual reconciliation.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..connector import OrderSigner, PolymarketRestClient
    from ..monitor import Logger
    from ..signals import ArbitrageOpportunity


YES = "YES"
NO = "NO"


class ExecutionOutcome(Enum):
    """Classification of a pair of leg results."""
    COMPLETE = "complete"
    FAILED = "failed"
    PARTIAL = "partial"


@dataclass(frozen=True)
class ExecutionResult:
    """Result of one submitted leg."""
    leg: str
    token_id: str
    success: bool
    order_id: Optional[str] = None
    error_message: Optional[str] = None
    settlement_tx_ids: tuple[str, ...] = field(default_factory=tuple)
    status: Optional[str] = None

    @classmethod
    def failure(cls, leg: str, token_id: str, error: str) -> "ExecutionResult":
        return cls(leg=leg, token_id=token_id, success=False, error_message=error)

    @classmethod
    def from_response(cls, leg: str, token_id: str, response: Any) -> "ExecutionResult":
        """Convert a venue order response (or the exception raised for it)."""
        if isinstance(response, BaseException):
            return cls.failure(leg, token_id, f"{type(response).__name__}: {response}")
        if not response:
            return cls.failure(leg, token_id, "Empty response from server")

        tx_ids = response.get("transactionsHashes") or response.get("transactionHashes") or []
        return cls(
            leg=leg,
            token_id=token_id,
            success=bool(response.get("success")),
            order_id=response.get("orderID") or response.get("orderId") or None,
            error_message=response.get("errorMsg") or None,
            settlement_tx_ids=tuple(tx_ids),
            status=response.get("status"),
        )


def classify_outcome(first: ExecutionResult, second: ExecutionResult) -> ExecutionOutcome:
    """Order-independent classification of two leg results."""
    if first.success and second.success:
        return ExecutionOutcome.COMPLETE
    if not first.success and not second.success:
        return ExecutionOutcome.FAILED
    return ExecutionOutcome.PARTIAL


class PairedExecutor:
    """
    Executes paired YES+NO market buys.

    Size floors are enforced by the caller. Nothing is retried or
    unwound: a partial fill is alerted, not remediated.
    """

    def __init__(
        self,
        rest_client: "PolymarketRestClient",
        signer: "OrderSigner",
        logger: Optional["Logger"] = None,
    ):
        self.client = rest_client
        self.signer = signer
        self.logger = logger

    async def execute(
        self,
        opportunity: "ArbitrageOpportunity",
        requested_size: Decimal,
    ) -> tuple[ExecutionResult, ExecutionResult]:
        """
        Buy ``min(requested_size, max_size)`` shares of both outcomes.

        Returns (yes_result, no_result); both are always present.
        """
        size = min(requested_size, opportunity.max_size)
        yes_usdc = size * opportunity.yes_ask_price
        no_usdc = size * opportunity.no_ask_price

        if self.logger:
            self.logger.info(
                "executing_pair",
                market_id=opportunity.market_id,
                size=size,
                yes_usdc=yes_usdc,
                yes_price=opportunity.yes_ask_price,
                no_usdc=no_usdc,
                no_price=opportunity.no_ask_price,
                profit_per_share=opportunity.profit_per_share,
            )

        yes_signed, no_signed = await asyncio.gather(
            self.signer.sign_market_buy(
                opportunity.yes_token_id,
                yes_usdc,
                opportunity.yes_ask_price,
                opportunity.tick_size,
                opportunity.neg_risk,
            ),
            self.signer.sign_market_buy(
                opportunity.no_token_id,
                no_usdc,
                opportunity.no_ask_price,
                opportunity.tick_size,
                opportunity.neg_risk,
            ),
            return_exceptions=True,
        )

        # Never send one leg alone
        if isinstance(yes_signed, Exception) or isinstance(no_signed, Exception):
            yes_error = f"signing failed: {yes_signed}" if isinstance(yes_signed, Exception) else "not submitted"
            no_error = f"signing failed: {no_signed}" if isinstance(no_signed, Exception) else "not submitted"
            if self.logger:
                self.logger.error(
                    "order_signing_failed",
                    market_id=opportunity.market_id,
                    yes_error=yes_error,
                    no_error=no_error,
                )
            return (
                ExecutionResult.failure(YES, opportunity.yes_token_id, yes_error),
                ExecutionResult.failure(NO, opportunity.no_token_id, no_error),
            )

        yes_response, no_response = await asyncio.gather(
            self.client.post_order(yes_signed, "FOK"),
            self.client.post_order(no_signed, "FOK"),
            return_exceptions=True,
        )

        yes_result = ExecutionResult.from_response(YES, opportunity.yes_token_id, yes_response)
        no_result = ExecutionResult.from_response(NO, opportunity.no_token_id, no_response)

        for result in (yes_result, no_result):
            if not self.logger:
                break
            if result.success:
                self.logger.info(
                    "leg_filled",
                    market_id=opportunity.market_id,
                    leg=result.leg,
                    order_id=result.order_id,
                    tx_ids=list(result.settlement_tx_ids),
                )
            else:
                self.logger.warning(
                    "leg_failed",
                    market_id=opportunity.market_id,
                    leg=result.leg,
                    token_id=result.token_id,
                    error=result.error_message,
                )

        if classify_outcome(yes_result, no_result) is ExecutionOutcome.PARTIAL:
            self._alert_partial(opportunity, size, yes_result, no_result)

        return yes_result, no_result

    def _alert_partial(
        self,
        opportunity: "ArbitrageOpportunity",
        size: Decimal,
        yes_result: ExecutionResult,
        no_result: ExecutionResult,
    ) -> None:
        """One leg filled, the other did not: the filled leg is unhedged."""
        filled, failed = (yes_result, no_result) if yes_result.success else (no_result, yes_result)
        filled_price = opportunity.yes_ask_price if filled.leg == YES else opportunity.no_ask_price

        if self.logger:
            self.logger.partial_execution(
                market_id=opportunity.market_id,
                description=opportunity.description,
                unhedged_leg=filled.leg,
                unhedged_token_id=filled.token_id,
                unhedged_price=filled_price,
                size=size,
                filled_order_id=filled.order_id,
                failed_leg=failed.leg,
                failed_token_id=failed.token_id,
                failed_error=failed.error_message,
                yes_ask=opportunity.yes_ask_price,
                no_ask=opportunity.no_ask_price,
                action="manual intervention required",
            )
