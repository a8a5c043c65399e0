"""
Canonical broker model and the capability contract.

This module defines the provider-neutral value types every adapter produces
and consumes, and the abstract interface every adapter implements. Callers
only ever see these types, whichever brokerage sits behind the adapter.

Classes:
    OrderSide: buy / sell
    OrderType: market / limit / stop / stop_limit
    TimeInForce: day / gtc / ioc / fok
    OrderStatus: canonical order status buckets
    AccountInfo: Account balance snapshot
    Quote: Top-of-book quote
    Bar: Historical OHLCV bar
    Order: Order request or provider order record
    Position: Open position
    Trade: Completed execution
    BrokerInterface: Abstract base class for all adapters
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from brokerlink.execution.exceptions import ValidationError
from brokerlink.utils.helpers import to_decimal


class OrderSide(Enum):
    """Order side (buy/sell)."""

    BUY = "buy"
    SELL = "sell"


class OrderType(Enum):
    """Order types of the canonical vocabulary."""

    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class TimeInForce(Enum):
    """Time-in-force of the canonical vocabulary."""

    DAY = "day"
    GTC = "gtc"
    IOC = "ioc"
    FOK = "fok"


class OrderStatus(Enum):
    """Canonical order status buckets."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    FILLED = "filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AccountInfo:
    """
    Account balance snapshot.

    Attributes:
        account_id: Provider account identifier
        balance: Total account value in account currency
        currency: ISO currency code
        name: Display name or account number
        available_balance: Funds available for trading
        margin_used: Margin currently in use
    """

    account_id: str
    balance: Decimal
    currency: str
    name: Optional[str] = None
    available_balance: Optional[Decimal] = None
    margin_used: Optional[Decimal] = None


@dataclass(frozen=True)
class Quote:
    """
    Top-of-book quote.

    Crossed quotes (ask below bid) are passed through as the provider
    reported them.
    """

    symbol: str
    timestamp: datetime
    bid: Decimal
    ask: Decimal
    bid_size: Optional[Decimal] = None
    ask_size: Optional[Decimal] = None


@dataclass(frozen=True)
class Bar:
    """Historical OHLCV bar. OHLC consistency is not checked."""

    symbol: str
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Optional[Decimal] = None


@dataclass(frozen=True)
class Order:
    """
    Canonical order.

    Used both as the request passed to ``place_order`` (``id`` absent) and
    as the record returned by the provider (``id`` set). Numeric fields
    accept ints, floats and strings and are stored as Decimal.

    Attributes:
        symbol: Canonical symbol
        side: BUY or SELL
        type: MARKET, LIMIT, STOP or STOP_LIMIT
        quantity: Order size, always positive (direction is in ``side``)
        price: Limit price (limit and stop_limit orders)
        stop_price: Trigger price (stop and stop_limit orders)
        time_in_force: DAY unless the caller or provider says otherwise
        id: Provider-assigned order id
        status: Canonical status bucket
        raw_status: Status string exactly as the provider reported it
        filled_quantity: Quantity filled so far, when the provider reports it
    """

    symbol: str
    side: OrderSide
    type: OrderType
    quantity: Decimal
    price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    time_in_force: TimeInForce = TimeInForce.DAY
    id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    raw_status: Optional[str] = None
    filled_quantity: Optional[Decimal] = None

    def __post_init__(self) -> None:
        """Coerce numeric fields to Decimal and validate new requests."""
        for name in ("quantity", "price", "stop_price", "filled_quantity"):
            raw = getattr(self, name)
            if raw is None:
                continue
            value = to_decimal(raw)
            if value is None:
                raise ValidationError(f"{name} must be numeric, got {raw!r}")
            object.__setattr__(self, name, value)

        if self.time_in_force is None:
            object.__setattr__(self, "time_in_force", TimeInForce.DAY)

        if self.id is None:
            self.validate()

    def validate(self) -> None:
        """
        Check that the order is complete enough to submit.

        Runs on construction for requests (no id). Provider records are
        taken as reported.

        Raises:
            ValidationError: If a required field is missing or out of range
        """
        if not self.symbol:
            raise ValidationError("Order requires a symbol")

        if self.quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {self.quantity}")

        if self.type in (OrderType.LIMIT, OrderType.STOP_LIMIT) and self.price is None:
            raise ValidationError(f"{self.type.value} order requires price")

        if self.type in (OrderType.STOP, OrderType.STOP_LIMIT) and self.stop_price is None:
            raise ValidationError(f"{self.type.value} order requires stop_price")

        if self.price is not None and self.price <= 0:
            raise ValidationError(f"Price must be positive, got {self.price}")

        if self.stop_price is not None and self.stop_price <= 0:
            raise ValidationError(f"Stop price must be positive, got {self.stop_price}")

    def with_id(self, order_id: str, status: OrderStatus, raw_status: Optional[str] = None) -> "Order":
        """Return a copy carrying the provider-assigned id and status."""
        return replace(self, id=order_id, status=status, raw_status=raw_status)


@dataclass(frozen=True)
class Position:
    """
    Open position.

    Attributes:
        symbol: Canonical symbol
        quantity: Signed quantity (positive=long, negative=short)
        average_price: Average entry price
        current_price: Latest price, when the provider exposes it
        market_value: Current market value
        unrealized_pnl: Unrealized profit and loss
    """

    symbol: str
    quantity: Decimal
    average_price: Decimal
    current_price: Optional[Decimal] = None
    market_value: Optional[Decimal] = None
    unrealized_pnl: Optional[Decimal] = None


@dataclass(frozen=True)
class Trade:
    """
    Completed execution (fill).

    ``commission`` is zero when the provider does not report it.
    """

    id: str
    symbol: str
    side: OrderSide
    quantity: Decimal
    price: Decimal
    timestamp: datetime
    commission: Decimal = Decimal("0")
    status: OrderStatus = OrderStatus.FILLED


class BrokerInterface(ABC):
    """
    Abstract base class for broker adapters.

    All adapters inherit from this class and implement every abstract
    method. Callers program against this contract and never against a
    concrete provider.

    Two operations absorb failures instead of raising: ``test_connection``
    and ``cancel_order`` report any error as ``False``. Every other
    operation propagates a BrokerError subclass.
    """

    broker_name: str = ""
    base_url: str = ""

    @abstractmethod
    def test_connection(self) -> bool:
        """
        Check that the credentials work.

        Returns:
            True if the provider accepted an authenticated request,
            False on any error
        """
        pass

    @abstractmethod
    def get_account_info(self) -> AccountInfo:
        """
        Get account balance and margin details.

        Returns:
            AccountInfo snapshot
        """
        pass

    @abstractmethod
    def get_quote(self, symbol: str) -> Quote:
        """
        Get the current top-of-book quote.

        Args:
            symbol: Canonical symbol

        Returns:
            Quote carrying the symbol exactly as requested
        """
        pass

    @abstractmethod
    def get_historical_data(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> List[Bar]:
        """
        Get historical bars.

        Args:
            symbol: Canonical symbol
            timeframe: Canonical bar size ('1m', '5m', '15m', '1h', '1d', ...);
                unsupported sizes fall back to daily bars
            start: Range start
            end: Range end

        Returns:
            Bars in provider order
        """
        pass

    @abstractmethod
    def place_order(self, order: Order) -> Order:
        """
        Submit a new order.

        Args:
            order: Order without an id

        Returns:
            Order with the provider-assigned id

        Raises:
            ValidationError: If the order already has an id or cannot be
                expressed by this provider
        """
        pass

    @abstractmethod
    def cancel_order(self, order_id: str) -> bool:
        """
        Cancel an open order.

        Args:
            order_id: Provider order id

        Returns:
            True if the provider accepted the cancellation, False on any error
        """
        pass

    @abstractmethod
    def get_order(self, order_id: str) -> Order:
        """
        Get a single order.

        Args:
            order_id: Provider order id

        Returns:
            Order with current status

        Raises:
            OrderNotFoundError: If the provider has no such order
        """
        pass

    @abstractmethod
    def get_open_orders(self) -> List[Order]:
        """Get all orders still working at the provider."""
        pass

    @abstractmethod
    def get_positions(self) -> List[Position]:
        """Get all current positions."""
        pass

    @abstractmethod
    def get_trades(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Trade]:
        """
        Get completed executions.

        Args:
            start: Only fills at or after this time
            end: Only fills at or before this time

        Returns:
            List of Trade objects
        """
        pass
