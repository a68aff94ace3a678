"""
Main arbitrage bot orchestration.
Drives either the polling loop or the streaming feed loop and dispatches
detected opportunities to the paired executor.
"""

import asyncio
import signal
import time
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from .config import Config
from .connector import (
    ApiCredentials,
    AuthManager,
    FeedIngestor,
    OrderSigner,
    PolymarketRestClient,
    PriceUpdate,
    ReconnectBackoff,
)
from .exec import ExecutionOutcome, PairedExecutor, classify_outcome
from .markets import MarketPairRegistry
from .monitor import Logger, MetricsCollector
from .orderbook import PriceIndex
from .signals import ArbitrageOpportunity, ParityDetector


MIN_ORDER_SIZE = Decimal("1")  # Smallest tradable size in shares


class ArbitrageBot:
    """
    Parity arbitrage bot.

    Strategy:
    1. Keep a registry of YES/NO market pairs
    2. Scan books on a fixed interval, or on streamed price updates
    3. Buy both legs concurrently when YES_ask + NO_ask < ceiling
    4. Track statistics; alert on one-sided fills

    Every collaborator is passed in; the bot owns no module-level state.
    """

    def __init__(
        self,
        config: Config,
        logger: Logger,
        rest_client: PolymarketRestClient,
        registry: MarketPairRegistry,
        detector: ParityDetector,
        executor: PairedExecutor,
        metrics: MetricsCollector,
        feed: FeedIngestor,
        price_index: PriceIndex,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.logger = logger
        self.rest_client = rest_client
        self.registry = registry
        self.detector = detector
        self.executor = executor
        self.metrics = metrics
        self.feed = feed
        self.price_index = price_index
        self._sleep = sleep
        self._clock = clock

        self._running = False

    # === Lifecycle ===

    async def start(self) -> bool:
        """
        Authenticate and load the initial market set.

        Returns False when there is nothing to watch. Authentication and
        initial refresh errors propagate and are fatal.
        """
        self.logger.startup(self.config.summary())
        if self.config.dry_run:
            self.logger.warning("dry_run_mode", message="No trades will be executed")

        auth = self.rest_client.auth
        self.logger.info("wallet", address=auth.address)
        if not auth.has_l2_credentials():
            self.logger.info("deriving_api_credentials")
            await self.rest_client.create_or_derive_api_key()

        count = await self.registry.refresh()
        if count == 0:
            self.logger.error("no_markets", message="No markets found to monitor")
            return False

        self.logger.info("markets_loaded", count=count)
        return True

    async def run(self) -> int:
        """Run until cancelled. Returns the process exit code."""
        self._running = True
        try:
            if not await self.start():
                return 0
            if self.config.scan.use_streaming_feed:
                await self.run_streaming()
            else:
                await self.run_polling()
        except asyncio.CancelledError:
            self.logger.info("bot_cancelled")
        finally:
            await self.close()
        return 0

    async def close(self) -> None:
        """Release network resources and log final statistics."""
        self._running = False
        await self.feed.stop()
        await self.rest_client.close()
        self.logger.stats(self.metrics.get_session_metrics())
        self.logger.shutdown()

    # === Shared steps ===

    async def refresh_markets(self) -> bool:
        """Refresh the registry; a failure keeps the stale cache."""
        try:
            await self.registry.refresh()
        except Exception as e:
            await self.metrics.record_refresh_failure()
            self.logger.warning("registry_refresh_failed", error=str(e), cached=len(self.registry))
            return False
        await self.price_index.retain(self.registry.list_watched_token_ids())
        return True

    def log_stats(self) -> None:
        self.logger.stats(self.metrics.get_session_metrics())

    async def handle_opportunity(
        self,
        opportunity: ArbitrageOpportunity,
    ) -> Optional[ExecutionOutcome]:
        """
        Count, log and (unless dry-run) execute an opportunity.

        Returns the execution outcome, or None when nothing was submitted.
        """
        await self.metrics.record_opportunity()
        order_size = self.config.trading.order_size
        self.logger.opportunity_detected(opportunity, opportunity.expected_profit(order_size))

        if self.config.dry_run:
            self.logger.info("dry_run_skip", market_id=opportunity.market_id)
            return None

        size = min(order_size, opportunity.max_size)
        if size < MIN_ORDER_SIZE:
            self.logger.warning(
                "order_size_too_small",
                market_id=opportunity.market_id,
                size=size,
                minimum=MIN_ORDER_SIZE,
            )
            return None

        await self.metrics.record_trade_attempt()
        try:
            yes_result, no_result = await self.executor.execute(opportunity, size)
        except Exception as e:
            await self.metrics.record_trade_failure()
            self.logger.error(
                "execution_error",
                market_id=opportunity.market_id,
                yes_token_id=opportunity.yes_token_id,
                no_token_id=opportunity.no_token_id,
                error=str(e),
            )
            return ExecutionOutcome.FAILED

        outcome = classify_outcome(yes_result, no_result)
        if outcome is ExecutionOutcome.COMPLETE:
            profit = opportunity.expected_profit(size)
            await self.metrics.record_trade_success(profit)
            self.logger.trade_executed(
                market_id=opportunity.market_id,
                size=size,
                profit=profit,
                yes_order_id=yes_result.order_id,
                no_order_id=no_result.order_id,
            )
        elif outcome is ExecutionOutcome.PARTIAL:
            await self.metrics.record_trade_partial()
            self.logger.error(
                "trade_partial",
                market_id=opportunity.market_id,
                yes_success=yes_result.success,
                yes_error=yes_result.error_message,
                no_success=no_result.success,
                no_error=no_result.error_message,
            )
        else:
            await self.metrics.record_trade_failure()
            self.logger.trade_failed(
                market_id=opportunity.market_id,
                yes_error=yes_result.error_message,
                no_error=no_result.error_message,
            )
        return outcome

    # === Polling mode ===

    async def poll_once(self, tick: int) -> list[ArbitrageOpportunity]:
        """One polling tick: periodic refresh, full scan, dispatch, periodic stats."""
        scan = self.config.scan
        if tick % scan.refresh_every_ticks == 0:
            await self.refresh_markets()

        try:
            opportunities = await self.detector.scan_all(self.registry.list_pairs())
        except Exception as e:
            self.logger.warning("scan_failed", error=str(e))
            opportunities = []
        else:
            await self.metrics.record_scan()

        for opportunity in opportunities:
            await self.handle_opportunity(opportunity)

        if tick % scan.stats_every_ticks == 0:
            self.log_stats()
        return opportunities

    async def run_polling(self) -> None:
        interval = self.config.scan.poll_interval_ms / 1000
        self.logger.info("polling_mode", interval_ms=self.config.scan.poll_interval_ms)

        tick = 0
        while self._running:
            started = self._clock()
            tick += 1
            await self.poll_once(tick)

            elapsed = self._clock() - started
            self.logger.debug("tick_complete", tick=tick, elapsed_ms=round(elapsed * 1000, 1))
            if elapsed < interval:
                await self._sleep(interval - elapsed)

    # === Streaming mode ===

    async def on_price_update(self, update: PriceUpdate) -> Optional[ArbitrageOpportunity]:
        """
        Index the update and re-check its market.

        Cached prices only gate the check; the trade decision is made on
        freshly fetched books with real sizes.
        """
        await self.price_index.update(update.token_id, update.best_ask)

        pair = self.registry.get_pair_for_token(update.token_id)
        if pair is None:
            return None

        asks = await self.price_index.best_asks(pair.yes_token_id, pair.no_token_id)
        if asks is None or not self.detector.passes_thresholds(*asks):
            return None

        try:
            opportunity = await self.detector.scan_market(pair)
        except Exception as e:
            self.logger.warning("market_scan_failed", market_id=pair.market_id, error=str(e))
            return None
        await self.metrics.record_scan()

        if opportunity is not None:
            await self.handle_opportunity(opportunity)
        return opportunity

    async def _stream_refresh_loop(self) -> None:
        interval = self.config.scan.stream_refresh_seconds
        while self._running:
            await self._sleep(interval)
            before = self.registry.list_watched_token_ids()
            if await self.refresh_markets() and self.registry.list_watched_token_ids() != before:
                self.logger.info("watched_tokens_changed", tokens=len(self.registry.list_watched_token_ids()))
                await self.feed.restart()

    async def _stream_stats_loop(self) -> None:
        interval = self.config.scan.stream_stats_seconds
        while self._running:
            await self._sleep(interval)
            self.log_stats()

    async def run_streaming(self) -> None:
        self.logger.info("streaming_mode", tokens=len(self.registry.list_watched_token_ids()))

        background = [
            asyncio.create_task(self._stream_refresh_loop()),
            asyncio.create_task(self._stream_stats_loop()),
        ]
        try:
            await self.feed.run(
                self.registry.list_watched_token_ids,
                self.on_price_update,
                on_reconnect=self.metrics.record_ws_reconnect,
            )
        finally:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)


def build_bot(config: Config) -> ArbitrageBot:
    """Wire the production object graph."""
    logger = Logger(name="parity_arb", level=config.log_level, log_file=config.log_file)
    connection = config.connection

    credentials = None
    if config.api_key and config.api_secret and config.api_passphrase:
        credentials = ApiCredentials(config.api_key, config.api_secret, config.api_passphrase)

    auth = AuthManager(config.private_key, credentials=credentials, chain_id=connection.chain_id)
    rest_client = PolymarketRestClient(
        auth_manager=auth,
        base_url=connection.clob_rest_url,
        timeout_seconds=connection.rest_timeout_seconds,
        max_retries=connection.max_retries,
        retry_backoff_base=connection.retry_backoff_base,
        logger=logger,
    )
    signer = OrderSigner(
        private_key=config.private_key,
        chain_id=connection.chain_id,
        signature_type=config.signature_type,
        funder_address=config.funder_address,
    )
    registry = MarketPairRegistry(
        rest_client,
        max_markets=config.scan.max_markets,
        topic_filter_enabled=config.scan.topic_filter_enabled,
        logger=logger,
    )
    detector = ParityDetector(
        rest_client,
        max_combined_price=config.trading.max_combined_price,
        min_profit_threshold=config.trading.min_profit_threshold,
        logger=logger,
    )
    feed = FeedIngestor(
        ws_url=connection.clob_ws_url,
        ping_interval=connection.ws_ping_interval_seconds,
        backoff=ReconnectBackoff(
            initial=connection.ws_reconnect_initial_seconds,
            maximum=connection.ws_reconnect_max_seconds,
        ),
        logger=logger,
    )

    return ArbitrageBot(
        config=config,
        logger=logger,
        rest_client=rest_client,
        registry=registry,
        detector=detector,
        executor=PairedExecutor(rest_client, signer, logger=logger),
        metrics=MetricsCollector(),
        feed=feed,
        price_index=PriceIndex(),
    )


async def run_bot(config: Config) -> int:
    """Run the arbitrage bot with signal handling."""
    bot = build_bot(config)
    main_task = asyncio.current_task()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, main_task.cancel)

    return await bot.run()
