"""
Structured JSON logging for the arbitrage bot.
All logs are JSON for easy parsing and manual reconciliation.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "event": record.msg,
            "logger": record.name,
        }

        # Add extra fields
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Decimals, sets and enums fall back to str
        return json.dumps(log_data, default=str)


class Logger:
    """
    Structured JSON logger for the arbitrage bot.

    All log entries are JSON objects with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level
    - event: Event name/type
    - Additional context fields
    """

    def __init__(
        self,
        name: str = "parity_arb",
        level: str = "INFO",
        log_file: Optional[str] = None,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers = []  # Clear existing handlers
        self.logger.propagate = False

        formatter = JSONFormatter()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    def _log(self, level: int, event: str, **kwargs: Any) -> None:
        """Internal log method."""
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(
            self.logger.name,
            level,
            "",
            0,
            event,
            (),
            None,
        )
        record.extra_fields = kwargs
        self.logger.handle(record)

    def debug(self, event: str, **kwargs: Any) -> None:
        """Log debug message."""
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        """Log info message."""
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        """Log warning message."""
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        """Log error message."""
        self._log(logging.ERROR, event, **kwargs)

    def critical(self, event: str, **kwargs: Any) -> None:
        """Log critical message."""
        self._log(logging.CRITICAL, event, **kwargs)

    # === Convenience methods for common events ===

    def opportunity_detected(self, opportunity: Any, expected_profit: Any) -> None:
        """Log a detected opportunity in full."""
        self.info(
            "opportunity_detected",
            market_id=opportunity.market_id,
            description=opportunity.description,
            yes_token_id=opportunity.yes_token_id,
            no_token_id=opportunity.no_token_id,
            yes_ask=opportunity.yes_ask_price,
            no_ask=opportunity.no_ask_price,
            combined_price=opportunity.combined_price,
            profit_per_share=opportunity.profit_per_share,
            max_size=opportunity.max_size,
            expected_profit=expected_profit,
        )

    def trade_executed(
        self,
        market_id: str,
        size: Any,
        profit: Any,
        yes_order_id: Optional[str],
        no_order_id: Optional[str],
    ) -> None:
        """Log a fully executed pair."""
        self.info(
            "trade_executed",
            market_id=market_id,
            size=size,
            locked_profit=profit,
            yes_order_id=yes_order_id,
            no_order_id=no_order_id,
        )

    def trade_failed(
        self,
        market_id: str,
        yes_error: Optional[str],
        no_error: Optional[str],
    ) -> None:
        """Log a pair where neither leg filled."""
        self.warning(
            "trade_failed",
            market_id=market_id,
            yes_error=yes_error,
            no_error=no_error,
        )

    def partial_execution(self, **kwargs: Any) -> None:
        """High-severity alert: one leg filled, the other did not."""
        self.critical("partial_execution", **kwargs)

    def ws_connected(self, url: str, tokens: int) -> None:
        """Log WebSocket connected."""
        self.info("ws_connected", url=url, tokens=tokens)

    def ws_disconnected(self, reason: str = "", retry_in: Optional[float] = None) -> None:
        """Log WebSocket disconnected."""
        self.warning("ws_disconnected", reason=reason, retry_in=retry_in)

    def stats(self, stats: dict) -> None:
        """Log aggregate run statistics."""
        self.info("stats", **stats)

    def startup(self, config: dict) -> None:
        """Log bot startup."""
        self.info("bot_startup", config=config)

    def shutdown(self, reason: str = "normal") -> None:
        """Log bot shutdown."""
        self.info("bot_shutdown", reason=reason)
