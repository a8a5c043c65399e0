"""
DhanHQ broker implementation (API v2).

This module implements the BrokerInterface for the DhanHQ REST API, supporting
both sandbox (testing) and live trading. Paper and practice connections are
routed to the sandbox host, which provides virtual capital.

DhanHQ addresses instruments by numeric security id within an exchange
segment ("NSE_EQ", "BSE_EQ"). Canonical tickers are resolved through a
SecurityIdMapper seeded with the most traded NSE stocks; further mappings
are loaded from the CSV named by ``metadata.security_map``.

Classes:
    DhanBroker: DhanHQ broker implementation

Example:
    >>> connection = BrokerConnection(
    ...     broker="dhan", api_key="1234567890", api_token="your_token", environment="paper"
    ... )
    >>> broker = DhanBroker(connection)
    >>> order = Order(symbol="RELIANCE", side=OrderSide.BUY, type=OrderType.MARKET, quantity=1)
    >>> placed = broker.place_order(order)

Note:
    See: https://dhanhq.co/docs/v2/
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from brokerlink.execution.broker_interface import (
    AccountInfo,
    Bar,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    Quote,
    TimeInForce,
    Trade,
)
from brokerlink.execution.enum_maps import StatusMap, TimeframeMap, order_type_translator, time_in_force_translator
from brokerlink.execution.exceptions import BrokerProtocolError, OrderNotFoundError
from brokerlink.execution.registry import register_broker
from brokerlink.execution.rest_broker import RestBroker, whole_quantity
from brokerlink.execution.symbol_mapper import ExchangeSegmentSymbols, SecurityIdMapper, SymbolTranslator, split_exchange
from brokerlink.execution.transport import HeaderPairAuth
from brokerlink.utils.helpers import IST, parse_timestamp, to_decimal, to_utc, utc_now
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)

ZERO = Decimal("0")


def dhan_time(value) -> datetime:
    """DhanHQ reports exchange time naive in IST, sometimes as DD/MM/YYYY."""
    if isinstance(value, str) and "/" in value:
        return datetime.strptime(value.strip(), "%d/%m/%Y %H:%M:%S").replace(tzinfo=IST)
    return parse_timestamp(value, utc_now(), assume_tz=IST)


# Intraday chart intervals in minutes; anything else uses the daily endpoint
INTRADAY_INTERVALS = {"1", "5", "15", "25", "60"}


@register_broker("dhan", description="DhanHQ v2 (NSE/BSE; live and sandbox)", simulated="sandbox")
class DhanBroker(RestBroker):
    """
    DhanHQ broker implementation.

    Attributes:
        client_id: DhanHQ client id (``api_key``, else ``account_id``)
        product: Dhan product type for new orders ('CNC' by default,
            'INTRADAY' or 'MARGIN' via ``metadata.product``)
        security_ids: Ticker <-> security id mapper
    """

    broker_name = "DhanHQ"
    live_url = "https://api.dhan.co/v2"
    simulated_url = "https://sandbox.dhan.co/v2"

    order_types = order_type_translator(
        {
            OrderType.MARKET: "MARKET",
            OrderType.LIMIT: "LIMIT",
            OrderType.STOP: "STOP_LOSS_MARKET",
            OrderType.STOP_LIMIT: "STOP_LOSS",
        }
    )

    time_in_force_map = time_in_force_translator(
        {
            TimeInForce.DAY: "DAY",
            TimeInForce.IOC: "IOC",
        }
    )

    statuses = StatusMap(
        {
            "TRANSIT": OrderStatus.PENDING,
            "PENDING": OrderStatus.SUBMITTED,
            "PART_TRADED": OrderStatus.SUBMITTED,
            "TRADED": OrderStatus.FILLED,
            "CANCELLED": OrderStatus.CANCELLED,
            "EXPIRED": OrderStatus.CANCELLED,
            "REJECTED": OrderStatus.REJECTED,
        }
    )

    timeframes = TimeframeMap(
        {
            "1m": "1",
            "5m": "5",
            "15m": "15",
            "25m": "25",
            "1h": "60",
            "1d": "D",
        },
        daily="D",
    )

    # Product type mapping (Indian market shorthand -> DhanHQ)
    PRODUCT_MAP = {
        "MIS": "INTRADAY",
        "CNC": "CNC",
        "NRML": "MARGIN",
    }

    def __init__(self, connection, session=None):
        self.client_id = connection.api_key or connection.account_id
        super().__init__(connection, session)
        self.require(self.client_id, "api_key (DhanHQ client id)")

        product = str(connection.metadata.get("product", "CNC")).upper()
        self.product = self.PRODUCT_MAP.get(product, product)
        self.security_ids = SecurityIdMapper(connection.metadata.get("security_map"))

    def build_symbols(self) -> SymbolTranslator:
        return ExchangeSegmentSymbols()

    def build_auth(self) -> HeaderPairAuth:
        return HeaderPairAuth({"access-token": self.connection.api_token, "client-id": self.client_id})

    def instrument(self, symbol: str) -> Tuple[str, str]:
        """
        Resolve a canonical symbol to (exchange segment, security id).

        Raises:
            ValidationError: If no security id is known for the ticker
        """
        exchange, ticker = split_exchange(symbol)
        exchange = self.symbols.exchanges.get(exchange, exchange)
        return self.symbols.segment_for(exchange), self.security_ids.get_security_id(ticker, exchange)

    def _ping(self) -> None:
        self.transport.request("GET", "/fundlimit")

    def get_account_info(self) -> AccountInfo:
        funds = self.transport.request("GET", "/fundlimit") or {}

        # 'availabelBalance' is DhanHQ's spelling
        available = funds.get("availabelBalance", funds.get("availableBalance"))

        return AccountInfo(
            account_id=str(funds.get("dhanClientId") or self.client_id),
            name=str(funds.get("dhanClientId") or self.client_id),
            balance=to_decimal(funds.get("sodLimit"), ZERO),
            currency="INR",
            available_balance=to_decimal(available),
            margin_used=to_decimal(funds.get("utilizedAmount"), ZERO),
        )

    def get_quote(self, symbol: str) -> Quote:
        segment, security_id = self.instrument(symbol)

        data = self.transport.request(
            "POST",
            "/marketfeed/quote",
            envelope=True,
            json={segment: [int(security_id)]},
        )
        quote = ((data or {}).get(segment) or {}).get(str(security_id))
        if quote is None:
            raise BrokerProtocolError(self.broker_name, 200, f"No quote returned for {symbol}")

        depth = quote.get("depth") or {}
        buy = (depth.get("buy") or [{}])[0]
        sell = (depth.get("sell") or [{}])[0]
        last_price = to_decimal(quote.get("last_price"), ZERO)

        return Quote(
            symbol=self.symbols.canonical(symbol),
            timestamp=dhan_time(quote.get("last_trade_time")),
            bid=to_decimal(buy.get("price")) or last_price,
            ask=to_decimal(sell.get("price")) or last_price,
            bid_size=to_decimal(buy.get("quantity")),
            ask_size=to_decimal(sell.get("quantity")),
        )

    def get_historical_data(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> List[Bar]:
        """
        Get historical bars.

        Daily and coarser bars come from ``/charts/historical``; minute bars
        from ``/charts/intraday``. Both return parallel arrays.
        """
        segment, security_id = self.instrument(symbol)
        interval = self.timeframes(timeframe)

        body: Dict[str, Any] = {
            "securityId": str(security_id),
            "exchangeSegment": segment,
            "instrument": "EQUITY",
        }
        if interval in INTRADAY_INTERVALS:
            path = "/charts/intraday"
            body["interval"] = interval
            body["fromDate"] = to_utc(start).astimezone(IST).strftime("%Y-%m-%d %H:%M:%S")
            body["toDate"] = to_utc(end).astimezone(IST).strftime("%Y-%m-%d %H:%M:%S")
        else:
            path = "/charts/historical"
            body["expiryCode"] = 0
            body["fromDate"] = to_utc(start).astimezone(IST).strftime("%Y-%m-%d")
            body["toDate"] = to_utc(end).astimezone(IST).strftime("%Y-%m-%d")

        data = self.transport.request("POST", path, json=body) or {}

        timestamps = data.get("timestamp") or []
        volumes = data.get("volume") or []
        return [
            Bar(
                symbol=self.symbols.canonical(symbol),
                timestamp=parse_timestamp(ts),
                open=to_decimal(data["open"][i], ZERO),
                high=to_decimal(data["high"][i], ZERO),
                low=to_decimal(data["low"][i], ZERO),
                close=to_decimal(data["close"][i], ZERO),
                volume=to_decimal(volumes[i]) if i < len(volumes) else None,
            )
            for i, ts in enumerate(timestamps)
        ]

    def _submit(self, order: Order) -> Order:
        segment, security_id = self.instrument(order.symbol)

        body: Dict[str, Any] = {
            "dhanClientId": self.client_id,
            "transactionType": "BUY" if order.side == OrderSide.BUY else "SELL",
            "exchangeSegment": segment,
            "productType": self.product,
            "orderType": self.order_types.to_wire(order.type),
            "validity": self.time_in_force_map.to_wire(order.time_in_force),
            "securityId": str(security_id),
            "quantity": whole_quantity(order.quantity),
            "afterMarketOrder": False,
        }
        if order.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            body["price"] = float(order.price)
        if order.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            body["triggerPrice"] = float(order.stop_price)

        response = self.transport.request("POST", "/orders", json=body) or {}

        order_id = response.get("orderId")
        if not order_id:
            raise BrokerProtocolError(self.broker_name, 200, f"Order placement failed: {response}")

        raw_status = response.get("orderStatus")
        return order.with_id(str(order_id), self.statuses(raw_status), raw_status)

    def _cancel(self, order_id: str) -> None:
        self.transport.request("DELETE", f"/orders/{order_id}")

    def get_order(self, order_id: str) -> Order:
        with self.order_lookup(order_id):
            data = self.transport.request("GET", f"/orders/{order_id}")

        # Some API versions wrap the single order in a list
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise OrderNotFoundError(self.broker_name, order_id)
        return self._to_order(data)

    def get_open_orders(self) -> List[Order]:
        orders = [self._to_order(o) for o in self.transport.request("GET", "/orders") or []]
        return [o for o in orders if o.status in (OrderStatus.PENDING, OrderStatus.SUBMITTED)]

    def get_positions(self) -> List[Position]:
        positions = []
        for p in self.transport.request("GET", "/positions") or []:
            quantity = to_decimal(p.get("netQty"), ZERO)
            if quantity == 0:
                continue

            last_price = to_decimal(p.get("lastPrice"))
            average_price = to_decimal(p.get("costPrice", p.get("buyAvg")), ZERO)
            positions.append(
                Position(
                    symbol=self._symbol_of(p),
                    quantity=quantity,
                    average_price=average_price,
                    current_price=last_price,
                    market_value=last_price * quantity if last_price is not None else None,
                    unrealized_pnl=to_decimal(p.get("unrealizedProfit")),
                )
            )
        return positions

    def get_trades(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Trade]:
        fills = self.transport.request("GET", "/trades")

        trades = [
            Trade(
                id=str(t.get("exchangeTradeId") or t["orderId"]),
                symbol=self._symbol_of(t),
                side=OrderSide.BUY if str(t.get("transactionType", "")).upper() == "BUY" else OrderSide.SELL,
                quantity=to_decimal(t.get("tradedQuantity"), ZERO),
                price=to_decimal(t.get("tradedPrice"), ZERO),
                timestamp=dhan_time(t.get("exchangeTime") or t.get("createTime")),
            )
            for t in fills or []
        ]

        # The trade book covers the current day only
        return self.filter_trades(trades, start, end)

    def _symbol_of(self, raw: Dict[str, Any]) -> str:
        segment = raw.get("exchangeSegment") or "NSE_EQ"
        ticker = raw.get("tradingSymbol")
        if not ticker:
            exchange = self.symbols.exchanges.get(segment, segment)
            ticker = self.security_ids.get_symbol(str(raw.get("securityId")), exchange) or str(raw.get("securityId"))
        return self.symbols.join(segment, ticker)

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        raw_status = raw.get("orderStatus")
        order_type = self.order_types.from_wire(raw.get("orderType"))

        return Order(
            id=str(raw["orderId"]),
            symbol=self._symbol_of(raw),
            side=OrderSide.BUY if str(raw.get("transactionType", "")).upper() == "BUY" else OrderSide.SELL,
            type=order_type,
            quantity=to_decimal(raw.get("quantity"), ZERO),
            price=to_decimal(raw.get("price")) if order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT) else None,
            stop_price=to_decimal(raw.get("triggerPrice")) if order_type in (OrderType.STOP, OrderType.STOP_LIMIT) else None,
            time_in_force=self.time_in_force_map.from_wire(raw.get("validity")),
            status=self.statuses(raw_status),
            raw_status=raw_status,
            filled_quantity=to_decimal(raw.get("filledQty")),
        )
