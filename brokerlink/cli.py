"""
Command-line interface for brokerlink.

Provides a small CLI for checking broker configuration and connectivity.
"""

import argparse
import sys
from typing import List, Optional

from brokerlink.execution.broker_factory import DEFAULT_CONFIG_PATH, BrokerFactory
from brokerlink.execution.exceptions import BrokerError
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)


def list_brokers() -> None:
    """Print registered brokers and their simulated environment support."""
    print("\n" + "=" * 70)
    print("AVAILABLE BROKERS")
    print("=" * 70)

    for broker_id, info in BrokerFactory.list_available_brokers().items():
        simulated = info["simulated_environment"] or "-"
        print(f"  {broker_id:<22} {info['adapter']:<26} simulated: {simulated}")
        if info["description"]:
            print(f"  {'':<22} {info['description']}")
    print()


def check_broker(config_path: Optional[str] = None, name: Optional[str] = None) -> bool:
    """
    Test the connection of a configured broker and print its account.

    Args:
        config_path: Broker configuration file
        name: Entry of the ``brokers:`` table (default: active_broker)

    Returns:
        True if the broker answered
    """
    broker = BrokerFactory.from_config(config_path, name=name)

    print(f"\nTesting {broker.broker_name} at {broker.base_url} ...")
    if not broker.test_connection():
        print("Connection FAILED (see log for the error)")
        return False

    account = broker.get_account_info()
    print("Connection OK")
    print(f"  Account:   {account.account_id} ({account.name or '-'})")
    print(f"  Balance:   {account.balance} {account.currency}")
    if account.available_balance is not None:
        print(f"  Available: {account.available_balance} {account.currency}")
    if account.margin_used is not None:
        print(f"  Margin:    {account.margin_used} {account.currency}")
    return True


def show_quote(symbol: str, config_path: Optional[str] = None, name: Optional[str] = None) -> None:
    """Print the latest quote for a symbol from a configured broker."""
    broker = BrokerFactory.from_config(config_path, name=name)
    quote = broker.get_quote(symbol)
    print(f"{quote.symbol}  bid {quote.bid} x {quote.bid_size}  ask {quote.ask} x {quote.ask_size}  @ {quote.timestamp.isoformat()}")


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="brokerlink multi-broker integration layer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List supported brokers
  brokerlink list

  # Check the active broker from config/broker_config.yaml
  brokerlink check

  # Check a specific entry
  brokerlink check --broker oanda

  # Latest quote
  brokerlink quote RELIANCE --broker upstox
        """,
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Broker config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("list", help="List supported brokers")

    check_parser = subparsers.add_parser("check", help="Test connection and show account")
    check_parser.add_argument("--broker", help="Config entry (default: active_broker)")

    quote_parser = subparsers.add_parser("quote", help="Show latest quote")
    quote_parser.add_argument("symbol", help="Canonical symbol (e.g. AAPL, RELIANCE, EURUSD)")
    quote_parser.add_argument("--broker", help="Config entry (default: active_broker)")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "list":
            list_brokers()

        elif args.command == "check":
            if not check_broker(args.config, args.broker):
                sys.exit(1)

        elif args.command == "quote":
            show_quote(args.symbol, args.config, args.broker)

    except KeyboardInterrupt:
        logger.info("\nOperation cancelled by user")
        sys.exit(0)
    except (BrokerError, FileNotFoundError) as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
