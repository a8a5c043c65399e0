"""
Shared base class for REST broker adapters.

RestBroker wires a BrokerConnection to a RestTransport, resolves the host
for the connection's environment, and implements the parts of the contract
that are identical for every provider: the failure-absorbing
``test_connection`` / ``cancel_order`` and request validation in
``place_order``. Subclasses supply the provider tables and the
``_ping`` / ``_submit`` / ``_cancel`` hooks.
"""

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional

import requests

from brokerlink.execution.broker_interface import BrokerInterface, Order, Trade
from brokerlink.execution.connection import BrokerConnection
from brokerlink.execution.enum_maps import EnumTranslator
from brokerlink.execution.exceptions import (
    AuthenticationError,
    BrokerProtocolError,
    ConfigurationError,
    OrderNotFoundError,
    ValidationError,
)
from brokerlink.execution.symbol_mapper import PassThroughSymbols, SymbolTranslator
from brokerlink.execution.transport import NoAuth, RestTransport, TokenHolder
from brokerlink.utils.helpers import to_utc
from brokerlink.utils.logging_config import get_logger, log_suppressed_error

logger = get_logger(__name__)


def whole_quantity(quantity: Decimal) -> int:
    """Integer share quantity; Indian cash equities do not trade fractions."""
    if quantity != quantity.to_integral_value():
        raise ValidationError(f"Quantity must be a whole number of shares, got {quantity}")
    return int(quantity)


class RestBroker(BrokerInterface):
    """
    Base class for JSON-over-HTTPS adapters.

    Class attributes:
        broker_name: Provider name used in logs and errors
        live_url: Production host
        simulated_url: Paper/practice/sandbox host (None when the provider
            has no simulated trading)
        envelope: Provider wraps responses in ``{status, data}``
        headers: Headers sent with every request
        order_types: Order type translator
        time_in_force_map: Time-in-force translator

    Attributes:
        connection: Caller's credentials (never modified)
        base_url: Resolved host for this instance
        symbols: Symbol notation translator
        tokens: Access token holder
        transport: RestTransport used for every request
    """

    broker_name = ""
    live_url = ""
    simulated_url: Optional[str] = None
    envelope = False
    headers = {"Accept": "application/json"}
    order_types: EnumTranslator
    time_in_force_map: EnumTranslator

    def __init__(self, connection: BrokerConnection, session: Optional[requests.Session] = None):
        self.connection = connection
        self.base_url = self.resolve_base_url(connection)
        self.symbols = self.build_symbols()
        self.tokens = TokenHolder(self.initial_token(), self.build_refresher())
        self.transport = RestTransport(
            self.broker_name,
            self.base_url,
            auth=self.build_auth(),
            tokens=self.tokens,
            session=session,
            timeout=connection.timeout,
            envelope=self.envelope,
            headers=self.headers,
        )

        logger.info(f"Initialized {self.broker_name} adapter ({connection.environment}) at {self.base_url}")

    def resolve_base_url(self, connection: BrokerConnection) -> str:
        """Simulated environments always use the simulated host."""
        if connection.is_simulated and self.simulated_url:
            return self.simulated_url
        return connection.base_url or self.live_url

    def build_symbols(self) -> SymbolTranslator:
        return PassThroughSymbols()

    def build_auth(self) -> NoAuth:
        return NoAuth()

    def initial_token(self) -> Optional[str]:
        return self.connection.api_token

    def build_refresher(self):
        """Token refresh callable; None when the provider has no refresh path."""
        return None

    def require(self, value: Optional[str], field: str) -> str:
        """Return a connection field or raise ConfigurationError."""
        if not value:
            raise ConfigurationError(f"{self.broker_name} connection requires {field}")
        return value

    def test_connection(self) -> bool:
        try:
            self._ping()
            logger.info(f"{self.broker_name} connection OK")
            return True
        except Exception as e:
            log_suppressed_error("test_connection", self.broker_name, e)
            return False

    def cancel_order(self, order_id: str) -> bool:
        try:
            self._cancel(order_id)
            logger.info(f"{self.broker_name} order cancelled: {order_id}")
            return True
        except Exception as e:
            log_suppressed_error("cancel_order", self.broker_name, e, order_id=order_id)
            return False

    def place_order(self, order: Order) -> Order:
        if order.id is not None:
            raise ValidationError(f"Order already has an id: {order.id}")
        order.validate()

        if not self.order_types.supports(order.type):
            raise ValidationError(f"{self.broker_name} does not support {order.type.value} orders")

        try:
            placed = self._submit(order)
        except Exception as e:
            logger.error(f"{self.broker_name} order placement failed for {order.symbol}: {e}")
            raise

        logger.info(
            f"{self.broker_name} order placed: {placed.id} - {order.side.value} "
            f"{order.quantity} {order.symbol} @ {order.type.value}"
        )
        return placed

    def _ping(self) -> None:
        """Make one cheap authenticated request."""
        self.get_account_info()

    def _submit(self, order: Order) -> Order:
        raise NotImplementedError

    def _cancel(self, order_id: str) -> None:
        raise NotImplementedError

    @contextmanager
    def order_lookup(self, order_id: str) -> Iterator[None]:
        """Translate the provider's 404 for an order id into OrderNotFoundError."""
        try:
            yield
        except BrokerProtocolError as e:
            if e.status_code == 404 and not isinstance(e, (AuthenticationError, OrderNotFoundError)):
                raise OrderNotFoundError(self.broker_name, order_id) from e
            raise

    @staticmethod
    def filter_trades(
        trades: Iterable[Trade],
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Trade]:
        """Keep fills with start <= timestamp <= end."""
        start = to_utc(start) if start else None
        end = to_utc(end) if end else None
        return [
            trade
            for trade in trades
            if (start is None or trade.timestamp >= start) and (end is None or trade.timestamp <= end)
        ]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(environment={self.connection.environment!r}, base_url={self.base_url!r})"
