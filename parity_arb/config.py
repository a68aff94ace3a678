"""
Configuration management for the YES+NO parity arbitrage bot.
All secrets via environment variables. All tunable parameters externalized.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional

from dotenv import load_dotenv


TRUE_VALUES = ("true", "1", "yes")


class ConfigError(ValueError):
    """Raised when an environment value cannot be parsed."""


@dataclass
class TradingConfig:
    """Price gating and order sizing."""
    max_combined_price: Decimal = Decimal("0.99")  # Signal only below this YES+NO sum
    min_profit_threshold: Decimal = Decimal("0.005")  # Minimum profit per share (0.5c)
    order_size: Decimal = Decimal("10.0")  # Requested size per trade


@dataclass
class ScanConfig:
    """Market selection and drive mode."""
    poll_interval_ms: int = 2000
    use_streaming_feed: bool = True
    max_markets: int = 50
    topic_filter_enabled: bool = True  # Only crypto markets (fast resolution)
    refresh_every_ticks: int = 100  # Polling: registry refresh cadence
    stats_every_ticks: int = 50  # Polling: statistics log cadence
    stream_refresh_seconds: int = 300
    stream_stats_seconds: int = 30


@dataclass
class ConnectionConfig:
    """API connection configuration."""
    clob_rest_url: str = "https://clob.polymarket.com"
    clob_ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    chain_id: int = 137  # Polygon mainnet
    ws_ping_interval_seconds: int = 30
    ws_reconnect_initial_seconds: float = 1.0
    ws_reconnect_max_seconds: float = 60.0
    rest_timeout_seconds: int = 10
    max_retries: int = 3
    retry_backoff_base: float = 1.5


@dataclass
class Config:
    """Main configuration container."""
    # Secrets from environment
    private_key: str = ""
    funder_address: str = ""
    signature_type: int = 0

    # API credentials (derived from private key when absent)
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    api_passphrase: Optional[str] = None

    # Sub-configs
    trading: TradingConfig = field(default_factory=TradingConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)

    # Detect and log, never submit
    dry_run: bool = True

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []

        if not self.private_key:
            errors.append("POLYMARKET_PRIVATE_KEY is required")
        if self.trading.max_combined_price <= 0:
            errors.append("max_combined_price must be positive")
        if self.trading.max_combined_price > 1:
            errors.append("max_combined_price cannot exceed 1")
        if self.trading.min_profit_threshold < 0:
            errors.append("min_profit_threshold cannot be negative")
        if self.trading.order_size <= 0:
            errors.append("order_size must be positive")
        if self.scan.poll_interval_ms <= 0:
            errors.append("poll_interval_ms must be positive")
        if self.scan.max_markets <= 0:
            errors.append("max_markets must be positive")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"Unknown LOG_LEVEL {self.log_level!r}")

        return errors

    def summary(self) -> dict:
        """Non-secret settings for the startup log."""
        return {
            "max_combined_price": self.trading.max_combined_price,
            "min_profit_threshold": self.trading.min_profit_threshold,
            "order_size": self.trading.order_size,
            "poll_interval_ms": self.scan.poll_interval_ms,
            "use_streaming_feed": self.scan.use_streaming_feed,
            "max_markets": self.scan.max_markets,
            "crypto_only": self.scan.topic_filter_enabled,
            "dry_run": self.dry_run,
        }


def _env_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        raise ConfigError(f"Invalid {name}: {raw!r}") from None
    if not value.is_finite():
        raise ConfigError(f"Invalid {name}: {raw!r} is not a finite number")
    return value


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        raise ConfigError(f"Invalid {name}: {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in TRUE_VALUES


def load_config_from_env(dotenv: bool = True) -> Config:
    """Load configuration from environment variables (and a .env file if present)."""
    if dotenv:
        load_dotenv()

    config = Config(
        private_key=os.environ.get("POLYMARKET_PRIVATE_KEY", ""),
        funder_address=os.environ.get("POLYMARKET_FUNDER_ADDRESS", ""),
        signature_type=_env_int("POLYMARKET_SIGNATURE_TYPE", 0),
        api_key=os.environ.get("POLYMARKET_API_KEY") or None,
        api_secret=os.environ.get("POLYMARKET_API_SECRET") or None,
        api_passphrase=os.environ.get("POLYMARKET_API_PASSPHRASE") or None,
        dry_run=_env_bool("DRY_RUN", True),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_file=os.environ.get("LOG_FILE") or None,
    )

    # Trading params
    config.trading.max_combined_price = _env_decimal(
        "MAX_COMBINED_PRICE", config.trading.max_combined_price
    )
    config.trading.min_profit_threshold = _env_decimal(
        "MIN_PROFIT_THRESHOLD", config.trading.min_profit_threshold
    )
    config.trading.order_size = _env_decimal("ORDER_SIZE", config.trading.order_size)

    # Scan params
    config.scan.poll_interval_ms = _env_int("POLL_INTERVAL_MS", config.scan.poll_interval_ms)
    config.scan.use_streaming_feed = _env_bool("USE_WEBSOCKET", config.scan.use_streaming_feed)
    config.scan.max_markets = _env_int("MAX_MARKETS", config.scan.max_markets)
    config.scan.topic_filter_enabled = _env_bool("CRYPTO_ONLY", config.scan.topic_filter_enabled)

    # Connection overrides
    if os.environ.get("CLOB_REST_URL"):
        config.connection.clob_rest_url = os.environ["CLOB_REST_URL"]
    if os.environ.get("CLOB_WS_URL"):
        config.connection.clob_ws_url = os.environ["CLOB_WS_URL"]

    return config
