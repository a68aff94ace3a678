"""
Order construction and signing.

Thin adapter over the official py-clob-client order builder. Signing is CPU
bound, so it runs in a worker thread; two legs can be signed concurrently.
"""

import asyncio
from decimal import Decimal
from typing import Any, Optional

from py_clob_client.clob_types import CreateOrderOptions, MarketOrderArgs, OrderType
from py_clob_client.order_builder.builder import OrderBuilder
from py_clob_client.order_builder.constants import BUY
from py_clob_client.signer import Signer


class OrderSigner:
    """Builds and signs fill-or-kill market buy orders sized in USDC."""

    def __init__(
        self,
        private_key: str,
        chain_id: int = 137,
        signature_type: int = 0,
        funder_address: Optional[str] = None,
    ):
        self._builder = OrderBuilder(
            Signer(private_key, chain_id),
            sig_type=signature_type,
            funder=funder_address or None,
        )

    def _build(
        self,
        token_id: str,
        usdc_amount: Decimal,
        price: Decimal,
        tick_size: str,
        neg_risk: bool,
    ) -> Any:
        args = MarketOrderArgs(
            token_id=token_id,
            amount=float(usdc_amount),
            side=BUY,
            price=float(price),
            order_type=OrderType.FOK,
        )
        options = CreateOrderOptions(tick_size=tick_size, neg_risk=neg_risk)
        return self._builder.create_market_order(args, options)

    async def sign_market_buy(
        self,
        token_id: str,
        usdc_amount: Decimal,
        price: Decimal,
        tick_size: str = "0.01",
        neg_risk: bool = False,
    ) -> Any:
        """
        Build and sign a FOK market buy spending ``usdc_amount``.

        ``price`` is the worst acceptable price (the observed best ask).
        """
        return await asyncio.to_thread(
            self._build, token_id, usdc_amount, price, tick_size, neg_risk
        )
