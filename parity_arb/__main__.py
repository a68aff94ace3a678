"""
Entry point for running the arbitrage bot.
Usage: python -m parity_arb
"""

import asyncio
import sys

from .bot import run_bot
from .config import ConfigError, load_config_from_env


def main() -> int:
    """Main entry point."""
    try:
        config = load_config_from_env()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    errors = config.validate()
    if errors:
        print("Configuration errors:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    try:
        return asyncio.run(run_bot(config))
    except KeyboardInterrupt:
        print("\nShutdown requested")
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
