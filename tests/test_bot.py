"""
Unit tests for bot.py -- opportunity dispatch, polling ticks and the
streaming fast path.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from parity_arb.bot import ArbitrageBot
from parity_arb.config import Config
from parity_arb.connector import PriceUpdate
from parity_arb.exec import ExecutionOutcome, ExecutionResult
from parity_arb.markets import MarketPair
from parity_arb.monitor import MetricsCollector
from parity_arb.orderbook import PriceIndex
from parity_arb.signals import ArbitrageOpportunity, ParityDetector


D = Decimal
PAIR = MarketPair("m1", "yes1", "no1", "Will BTC close above 100k?")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_opportunity(max_size="50"):
    return ArbitrageOpportunity(
        market_id="m1",
        yes_token_id="yes1",
        no_token_id="no1",
        yes_ask_price=D("0.40"),
        no_ask_price=D("0.55"),
        combined_price=D("0.95"),
        profit_per_share=D("0.05"),
        max_size=D(max_size),
        detected_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def leg(name, success):
    token = "yes1" if name == "YES" else "no1"
    if success:
        return ExecutionResult(name, token, True, order_id=f"{name}-order")
    return ExecutionResult.failure(name, token, "rejected")


def make_bot(dry_run=False, order_size="10", yes_ok=True, no_ok=True):
    config = Config(private_key="0x" + "11" * 32, dry_run=dry_run)
    config.trading.order_size = D(order_size)

    registry = MagicMock()
    registry.list_pairs.return_value = [PAIR]
    registry.list_watched_token_ids.return_value = {"yes1", "no1"}
    registry.get_pair_for_token.side_effect = lambda token: PAIR if token in ("yes1", "no1") else None
    registry.refresh = AsyncMock(return_value=1)
    registry.__len__.return_value = 1

    detector = MagicMock()
    detector.scan_all = AsyncMock(return_value=[])
    detector.scan_market = AsyncMock(return_value=None)
    detector.passes_thresholds.side_effect = ParityDetector(MagicMock()).passes_thresholds

    executor = MagicMock()
    executor.execute = AsyncMock(return_value=(leg("YES", yes_ok), leg("NO", no_ok)))

    return ArbitrageBot(
        config=config,
        logger=MagicMock(),
        rest_client=MagicMock(),
        registry=registry,
        detector=detector,
        executor=executor,
        metrics=MetricsCollector(),
        feed=MagicMock(),
        price_index=PriceIndex(),
        sleep=AsyncMock(),
    )


# ---------------------------------------------------------------------------
# handle_opportunity
# ---------------------------------------------------------------------------

class TestHandleOpportunity:
    @pytest.mark.asyncio
    async def test_dry_run_never_submits(self):
        bot = make_bot(dry_run=True)

        assert await bot.handle_opportunity(make_opportunity()) is None

        bot.executor.execute.assert_not_awaited()
        stats = bot.metrics.snapshot()
        assert stats.opportunities_found == 1
        assert stats.trades_executed == 0
        bot.logger.opportunity_detected.assert_called_once()

    @pytest.mark.asyncio
    async def test_complete_updates_statistics(self):
        bot = make_bot()

        outcome = await bot.handle_opportunity(make_opportunity())

        assert outcome is ExecutionOutcome.COMPLETE
        bot.executor.execute.assert_awaited_once()
        assert bot.executor.execute.await_args.args[1] == D("10")
        stats = bot.metrics.snapshot()
        assert stats.trades_executed == 1
        assert stats.trades_successful == 1
        assert stats.cumulative_profit == D("0.50")
        bot.logger.trade_executed.assert_called_once()

    @pytest.mark.asyncio
    async def test_size_capped_by_available_liquidity(self):
        bot = make_bot(order_size="10")

        await bot.handle_opportunity(make_opportunity(max_size="3"))

        assert bot.executor.execute.await_args.args[1] == D("3")
        assert bot.metrics.snapshot().cumulative_profit == D("0.15")

    @pytest.mark.asyncio
    async def test_partial_not_counted_as_success(self):
        bot = make_bot(no_ok=False)

        outcome = await bot.handle_opportunity(make_opportunity())

        assert outcome is ExecutionOutcome.PARTIAL
        stats = bot.metrics.snapshot()
        assert stats.trades_executed == 1
        assert stats.trades_successful == 0
        assert stats.trades_partial == 1
        assert stats.cumulative_profit == D("0")

    @pytest.mark.asyncio
    async def test_both_legs_failed(self):
        bot = make_bot(yes_ok=False, no_ok=False)

        outcome = await bot.handle_opportunity(make_opportunity())

        assert outcome is ExecutionOutcome.FAILED
        stats = bot.metrics.snapshot()
        assert stats.trades_failed == 1
        assert stats.trades_successful == 0
        bot.logger.trade_failed.assert_called_once()

    @pytest.mark.asyncio
    async def test_undersized_order_skipped(self):
        bot = make_bot()

        assert await bot.handle_opportunity(make_opportunity(max_size="0.5")) is None

        bot.executor.execute.assert_not_awaited()
        assert bot.metrics.snapshot().trades_executed == 0

    @pytest.mark.asyncio
    async def test_executor_exception_counted_as_failure(self):
        bot = make_bot()
        bot.executor.execute = AsyncMock(side_effect=RuntimeError("boom"))

        assert await bot.handle_opportunity(make_opportunity()) is ExecutionOutcome.FAILED
        assert bot.metrics.snapshot().trades_failed == 1


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------

class TestPolling:
    @pytest.mark.asyncio
    async def test_poll_once_scans_and_dispatches(self):
        bot = make_bot()
        bot.detector.scan_all = AsyncMock(return_value=[make_opportunity()])

        found = await bot.poll_once(1)

        assert len(found) == 1
        bot.detector.scan_all.assert_awaited_once_with([PAIR])
        bot.registry.refresh.assert_not_awaited()
        stats = bot.metrics.snapshot()
        assert stats.scans == 1
        assert stats.trades_successful == 1

    @pytest.mark.asyncio
    async def test_refresh_every_n_ticks(self):
        bot = make_bot()
        await bot.poll_once(bot.config.scan.refresh_every_ticks)
        bot.registry.refresh.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_running(self):
        bot = make_bot()
        bot.registry.refresh = AsyncMock(side_effect=ConnectionError("down"))

        await bot.poll_once(bot.config.scan.refresh_every_ticks)

        assert bot.metrics.snapshot().refresh_failures == 1
        bot.detector.scan_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_scan_failure_is_not_fatal(self):
        bot = make_bot()
        bot.detector.scan_all = AsyncMock(side_effect=ConnectionError("down"))

        assert await bot.poll_once(1) == []
        assert bot.metrics.snapshot().scans == 0

    @pytest.mark.asyncio
    async def test_stats_every_n_ticks(self):
        bot = make_bot()
        await bot.poll_once(bot.config.scan.stats_every_ticks)
        bot.logger.stats.assert_called_once()


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestStreaming:
    @pytest.mark.asyncio
    async def test_one_sided_index_does_not_scan(self):
        bot = make_bot()

        await bot.on_price_update(PriceUpdate("yes1", None, D("0.40")))

        bot.detector.scan_market.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_both_legs_below_ceiling_triggers_fresh_scan(self):
        bot = make_bot()
        bot.detector.scan_market = AsyncMock(return_value=make_opportunity())

        await bot.on_price_update(PriceUpdate("yes1", None, D("0.40")))
        opp = await bot.on_price_update(PriceUpdate("no1", None, D("0.55")))

        assert opp is not None
        bot.detector.scan_market.assert_awaited_once_with(PAIR)
        bot.executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_prices_at_parity_do_not_scan(self):
        bot = make_bot()

        await bot.on_price_update(PriceUpdate("yes1", None, D("0.60")))
        await bot.on_price_update(PriceUpdate("no1", None, D("0.40")))

        bot.detector.scan_market.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unwatched_token_ignored(self):
        bot = make_bot()

        assert await bot.on_price_update(PriceUpdate("other", None, D("0.01"))) is None
        bot.detector.scan_market.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_index_fresh_books_disagree(self):
        bot = make_bot()

        await bot.on_price_update(PriceUpdate("yes1", None, D("0.40")))
        opp = await bot.on_price_update(PriceUpdate("no1", None, D("0.55")))

        assert opp is None
        bot.detector.scan_market.assert_awaited_once()
        bot.executor.execute.assert_not_awaited()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_with_no_markets(self):
        bot = make_bot()
        bot.rest_client.auth.has_l2_credentials.return_value = True
        bot.registry.refresh = AsyncMock(return_value=0)

        assert await bot.start() is False

    @pytest.mark.asyncio
    async def test_start_derives_missing_credentials(self):
        bot = make_bot()
        bot.rest_client.auth.has_l2_credentials.return_value = False
        bot.rest_client.create_or_derive_api_key = AsyncMock()

        assert await bot.start() is True
        bot.rest_client.create_or_derive_api_key.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_exits_cleanly_without_markets(self):
        bot = make_bot()
        bot.rest_client.auth.has_l2_credentials.return_value = True
        bot.rest_client.close = AsyncMock()
        bot.feed.stop = AsyncMock()
        bot.registry.refresh = AsyncMock(return_value=0)

        assert await bot.run() == 0
        bot.rest_client.close.assert_awaited_once()
        bot.logger.shutdown.assert_called_once()
