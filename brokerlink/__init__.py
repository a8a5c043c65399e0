"""
brokerlink: multi-broker integration layer.

One capability contract (account, quotes, bars, orders, positions, fills)
over the REST APIs of Alpaca, TD Ameritrade, Interactive Brokers, OANDA,
Zerodha Kite Connect, Upstox and DhanHQ.
"""

__version__ = "0.1.0"

from brokerlink.execution import BrokerConnection, BrokerFactory, BrokerInterface

__all__ = ["BrokerConnection", "BrokerFactory", "BrokerInterface", "__version__"]
