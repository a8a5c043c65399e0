"""
Execution layer: broker abstraction and order execution.

This module provides one canonical interface over several brokerage REST
APIs. Each adapter translates symbols, order vocabulary and response shapes
between the canonical model and its provider.

Components:
    - BrokerInterface: Abstract base class defining broker contract
    - BrokerConnection: Caller-owned credentials and environment selector
    - AlpacaBroker, TDAmeritradeBroker, InteractiveBrokersBroker, OandaBroker:
      US and forex adapters
    - KiteBroker, UpstoxBroker, DhanBroker: Indian market adapters
    - BrokerFactory: Factory for easy broker switching

Example:
    >>> from brokerlink.execution import BrokerConnection, BrokerFactory, Order, OrderSide, OrderType
    >>> broker = BrokerFactory.resolve(BrokerConnection(broker="paper_trading", api_key="...", api_secret="..."))
    >>> order = Order(symbol="AAPL", side=OrderSide.BUY, type=OrderType.MARKET, quantity=10)
    >>> placed = broker.place_order(order)
"""

from brokerlink.execution.broker_interface import (
    AccountInfo,
    Bar,
    BrokerInterface,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    Quote,
    TimeInForce,
    Trade,
)
from brokerlink.execution.connection import BrokerConnection
from brokerlink.execution.exceptions import (
    AuthenticationError,
    BrokerError,
    BrokerProtocolError,
    ConfigurationError,
    OrderNotFoundError,
    TransientNetworkError,
    ValidationError,
)
from brokerlink.execution.broker_factory import BrokerFactory
from brokerlink.execution.alpaca_broker import AlpacaBroker
from brokerlink.execution.dhan_broker import DhanBroker
from brokerlink.execution.ib_broker import InteractiveBrokersBroker
from brokerlink.execution.kite_broker import KiteBroker
from brokerlink.execution.oanda_broker import OandaBroker
from brokerlink.execution.td_ameritrade_broker import TDAmeritradeBroker
from brokerlink.execution.upstox_broker import UpstoxBroker

__all__ = [
    "AccountInfo",
    "Bar",
    "BrokerInterface",
    "Order",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Position",
    "Quote",
    "TimeInForce",
    "Trade",
    "BrokerConnection",
    "AuthenticationError",
    "BrokerError",
    "BrokerProtocolError",
    "ConfigurationError",
    "OrderNotFoundError",
    "TransientNetworkError",
    "ValidationError",
    "BrokerFactory",
    "AlpacaBroker",
    "DhanBroker",
    "InteractiveBrokersBroker",
    "KiteBroker",
    "OandaBroker",
    "TDAmeritradeBroker",
    "UpstoxBroker",
]
