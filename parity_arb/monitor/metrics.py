"""
Run statistics for monitoring bot performance.
"""

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal


@dataclass
class RunStatistics:
    """Process-wide counters. Lives for the process lifetime."""
    started_at: float = field(default_factory=time.time)

    scans: int = 0
    opportunities_found: int = 0
    trades_executed: int = 0
    trades_successful: int = 0
    trades_failed: int = 0
    trades_partial: int = 0
    cumulative_profit: Decimal = Decimal("0")

    refresh_failures: int = 0
    ws_reconnects: int = 0


class MetricsCollector:
    """
    Owns the run statistics.

    Every mutation takes the lock; callers read through snapshot().
    """

    def __init__(self):
        self._stats = RunStatistics()
        self._lock = asyncio.Lock()

    async def record_scan(self) -> None:
        async with self._lock:
            self._stats.scans += 1

    async def record_opportunity(self) -> None:
        async with self._lock:
            self._stats.opportunities_found += 1

    async def record_trade_attempt(self) -> None:
        async with self._lock:
            self._stats.trades_executed += 1

    async def record_trade_success(self, profit: Decimal) -> None:
        """Record a fully executed pair and the profit it locked."""
        async with self._lock:
            self._stats.trades_successful += 1
            self._stats.cumulative_profit += profit

    async def record_trade_failure(self) -> None:
        async with self._lock:
            self._stats.trades_failed += 1

    async def record_trade_partial(self) -> None:
        async with self._lock:
            self._stats.trades_partial += 1

    async def record_refresh_failure(self) -> None:
        async with self._lock:
            self._stats.refresh_failures += 1

    async def record_ws_reconnect(self) -> None:
        async with self._lock:
            self._stats.ws_reconnects += 1

    def snapshot(self) -> RunStatistics:
        """Copy of the current counters."""
        s = self._stats
        return RunStatistics(
            started_at=s.started_at,
            scans=s.scans,
            opportunities_found=s.opportunities_found,
            trades_executed=s.trades_executed,
            trades_successful=s.trades_successful,
            trades_failed=s.trades_failed,
            trades_partial=s.trades_partial,
            cumulative_profit=s.cumulative_profit,
            refresh_failures=s.refresh_failures,
            ws_reconnects=s.ws_reconnects,
        )

    def get_session_metrics(self) -> dict:
        """Get current statistics as dict."""
        s = self.snapshot()
        return {
            "uptime_seconds": round(time.time() - s.started_at, 1),
            "scans": s.scans,
            "opportunities_found": s.opportunities_found,
            "trades_executed": s.trades_executed,
            "trades_successful": s.trades_successful,
            "trades_failed": s.trades_failed,
            "trades_partial": s.trades_partial,
            "cumulative_profit": str(s.cumulative_profit),
            "refresh_failures": s.refresh_failures,
            "ws_reconnects": s.ws_reconnects,
        }
