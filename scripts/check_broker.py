#!/usr/bin/env python
"""
Broker connection check script.

Loads a connection from the broker configuration, runs test_connection and
prints the account summary.

Usage:
    # Active broker from config/broker_config.yaml
    python scripts/check_broker.py

    # Specific entry of the brokers: table
    python scripts/check_broker.py --broker alpaca

    # List supported brokers
    python scripts/check_broker.py --list
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse

from brokerlink.cli import check_broker, list_brokers
from brokerlink.execution.broker_factory import DEFAULT_CONFIG_PATH
from brokerlink.execution.exceptions import BrokerError
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Check broker credentials and connectivity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/check_broker.py
  python scripts/check_broker.py --broker oanda
  python scripts/check_broker.py --config my_brokers.yaml --broker dhan
        """,
    )

    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Broker config file")
    parser.add_argument("--broker", help="Config entry (default: active_broker)")
    parser.add_argument("--list", action="store_true", help="List supported brokers")

    args = parser.parse_args()

    if args.list:
        list_brokers()
        return

    try:
        ok = check_broker(args.config, args.broker)
    except (BrokerError, FileNotFoundError) as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

    if not ok:
        sys.exit(1)
    print("✅ Broker ready")


if __name__ == "__main__":
    main()
