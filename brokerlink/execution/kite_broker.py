"""
Kite Connect broker implementation for Zerodha.

This module implements the BrokerInterface for Zerodha's Kite Connect v3
REST API. Requests carry the ``token api_key:access_token`` header, order
parameters are form-encoded, and every JSON response is wrapped in a
``{status, data}`` envelope.

Classes:
    KiteBroker: Kite Connect broker implementation

Example:
    >>> connection = BrokerConnection(broker="zerodha", api_key="your_api_key", api_token="your_access_token")
    >>> broker = KiteBroker(connection)
    >>> order = Order(symbol="RELIANCE", side=OrderSide.BUY, type=OrderType.MARKET, quantity=1)
    >>> placed = broker.place_order(order)

Note:
    Kite Connect requires a login flow to generate the access token; this
    adapter expects an already issued token.
    See: https://kite.trade/docs/connect/v3/
"""

import csv
import io
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

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
from brokerlink.execution.exceptions import BrokerProtocolError, OrderNotFoundError, ValidationError
from brokerlink.execution.registry import register_broker
from brokerlink.execution.rest_broker import RestBroker, whole_quantity
from brokerlink.execution.symbol_mapper import ExchangePrefixSymbols, SymbolTranslator, split_exchange
from brokerlink.execution.transport import CompositeTokenAuth
from brokerlink.utils.helpers import IST, parse_timestamp, to_decimal, to_utc, utc_now
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)

ZERO = Decimal("0")


@register_broker("zerodha", description="Zerodha Kite Connect (NSE/BSE)")
@register_broker("kite", description="Alias of zerodha")
class KiteBroker(RestBroker):
    """
    Kite Connect broker implementation.

    Attributes:
        product: Kite product code for new orders ('CNC' delivery by default,
            'MIS' intraday via ``metadata.product``)
        instrument_tokens: Cache of "EXCHANGE:TRADINGSYMBOL" -> instrument token
        loaded_exchanges: Exchanges whose instrument dump is already cached
    """

    broker_name = "Zerodha"
    live_url = "https://api.kite.trade"
    envelope = True
    headers = {"Accept": "application/json", "X-Kite-Version": "3"}

    order_types = order_type_translator(
        {
            OrderType.MARKET: "MARKET",
            OrderType.LIMIT: "LIMIT",
            OrderType.STOP: "SL-M",
            OrderType.STOP_LIMIT: "SL",
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
            "OPEN": OrderStatus.SUBMITTED,
            "TRIGGER PENDING": OrderStatus.SUBMITTED,
            "COMPLETE": OrderStatus.FILLED,
            "CANCELLED": OrderStatus.CANCELLED,
            "REJECTED": OrderStatus.REJECTED,
        }
    )

    timeframes = TimeframeMap(
        {
            "1m": "minute",
            "3m": "3minute",
            "5m": "5minute",
            "10m": "10minute",
            "15m": "15minute",
            "30m": "30minute",
            "1h": "60minute",
            "1d": "day",
        },
        daily="day",
    )

    def __init__(self, connection, session=None):
        super().__init__(connection, session)
        self.product = str(connection.metadata.get("product", "CNC")).upper()
        self.instrument_tokens: Dict[str, str] = {}
        self.loaded_exchanges: Set[str] = set()

        if not connection.api_token:
            logger.warning("Kite Connect initialized without access token; requests will be rejected")

    def build_symbols(self) -> SymbolTranslator:
        return ExchangePrefixSymbols()

    def build_auth(self) -> CompositeTokenAuth:
        return CompositeTokenAuth(self.connection.api_key)

    def _ping(self) -> None:
        self.transport.request("GET", "/user/profile")

    def get_account_info(self) -> AccountInfo:
        profile = self.transport.request("GET", "/user/profile")
        margins = self.transport.request("GET", "/user/margins")
        equity = margins.get("equity") or {}

        return AccountInfo(
            account_id=self.connection.account_id or profile.get("user_id"),
            name=profile.get("user_name"),
            balance=to_decimal(equity.get("net"), ZERO),
            currency="INR",
            available_balance=to_decimal((equity.get("available") or {}).get("cash")),
            margin_used=to_decimal((equity.get("utilised") or {}).get("debits"), ZERO),
        )

    def get_quote(self, symbol: str) -> Quote:
        instrument = self.symbols.to_wire(symbol)
        data = self.transport.request("GET", "/quote", params={"i": instrument})

        quote = (data or {}).get(instrument)
        if quote is None:
            raise BrokerProtocolError(self.broker_name, 200, f"No quote returned for {symbol}")

        depth = quote.get("depth") or {}
        buy = (depth.get("buy") or [{}])[0]
        sell = (depth.get("sell") or [{}])[0]

        return Quote(
            symbol=self.symbols.canonical(symbol),
            timestamp=parse_timestamp(quote.get("timestamp"), utc_now(), assume_tz=IST),
            bid=to_decimal(buy.get("price"), ZERO),
            ask=to_decimal(sell.get("price"), ZERO),
            bid_size=to_decimal(buy.get("quantity")),
            ask_size=to_decimal(sell.get("quantity")),
        )

    def instrument_token(self, symbol: str) -> str:
        """
        Resolve the numeric instrument token historical data is keyed by.

        Tokens are looked up in the exchange's instrument dump on first use
        and cached. A purely numeric ticker is taken to be a token already.

        Raises:
            ValidationError: If the exchange lists no such trading symbol
        """
        exchange, ticker = split_exchange(self.symbols.to_wire(symbol))
        if ticker.isdigit():
            return ticker

        key = f"{exchange}:{ticker.upper()}"
        if key not in self.instrument_tokens and exchange not in self.loaded_exchanges:
            dump = self.transport.request("GET", f"/instruments/{exchange}", envelope=False)
            rows = list(csv.DictReader(io.StringIO(dump or "")))
            for row in rows:
                self.instrument_tokens[f"{exchange}:{row['tradingsymbol'].upper()}"] = row["instrument_token"]
            self.loaded_exchanges.add(exchange)
            logger.info(f"Loaded {len(rows)} Kite instrument tokens for {exchange}")

        if key not in self.instrument_tokens:
            raise ValidationError(f"Unknown Kite instrument: {key}")
        return self.instrument_tokens[key]

    def get_historical_data(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> List[Bar]:
        token = self.instrument_token(symbol)
        interval = self.timeframes(timeframe)

        data = self.transport.request(
            "GET",
            f"/instruments/historical/{token}/{interval}",
            params={
                "from": to_utc(start).astimezone(IST).strftime("%Y-%m-%d %H:%M:%S"),
                "to": to_utc(end).astimezone(IST).strftime("%Y-%m-%d %H:%M:%S"),
            },
        )

        return [
            Bar(
                symbol=self.symbols.canonical(symbol),
                timestamp=parse_timestamp(candle[0], assume_tz=IST),
                open=to_decimal(candle[1], ZERO),
                high=to_decimal(candle[2], ZERO),
                low=to_decimal(candle[3], ZERO),
                close=to_decimal(candle[4], ZERO),
                volume=to_decimal(candle[5]) if len(candle) > 5 else None,
            )
            for candle in (data or {}).get("candles") or []
        ]

    def _submit(self, order: Order) -> Order:
        exchange, ticker = split_exchange(self.symbols.to_wire(order.symbol))

        params: Dict[str, Any] = {
            "exchange": exchange,
            "tradingsymbol": ticker,
            "transaction_type": "BUY" if order.side == OrderSide.BUY else "SELL",
            "quantity": whole_quantity(order.quantity),
            "product": self.product,
            "order_type": self.order_types.to_wire(order.type),
            "validity": self.time_in_force_map.to_wire(order.time_in_force),
        }

        if order.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            params["price"] = str(order.price)
        if order.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            params["trigger_price"] = str(order.stop_price)

        data = self.transport.request("POST", "/orders/regular", data=params)

        order_id = (data or {}).get("order_id")
        if not order_id:
            raise BrokerProtocolError(self.broker_name, 200, "Order placement failed: No order ID returned")

        return order.with_id(str(order_id), OrderStatus.PENDING)

    def _cancel(self, order_id: str) -> None:
        self.transport.request("DELETE", f"/orders/regular/{order_id}")

    def get_order(self, order_id: str) -> Order:
        with self.order_lookup(order_id):
            history = self.transport.request("GET", f"/orders/{order_id}")

        if not history:
            raise OrderNotFoundError(self.broker_name, order_id)

        # Order history is oldest first
        return self._to_order(history[-1])

    def get_open_orders(self) -> List[Order]:
        orders = [self._to_order(o) for o in self.transport.request("GET", "/orders") or []]
        return [o for o in orders if o.status in (OrderStatus.PENDING, OrderStatus.SUBMITTED)]

    def get_positions(self) -> List[Position]:
        data = self.transport.request("GET", "/portfolio/positions")

        positions = []
        # Kite returns 'net' and 'day' positions
        for p in (data or {}).get("net") or []:
            quantity = to_decimal(p.get("quantity"), ZERO)
            if quantity == 0:
                continue  # Skip closed positions

            last_price = to_decimal(p.get("last_price"))
            positions.append(
                Position(
                    symbol=self.symbols.join(p.get("exchange"), p["tradingsymbol"]),
                    quantity=quantity,
                    average_price=to_decimal(p.get("average_price"), ZERO),
                    current_price=last_price,
                    market_value=last_price * quantity if last_price is not None else None,
                    unrealized_pnl=to_decimal(p.get("unrealised")),
                )
            )

        return positions

    def get_trades(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Trade]:
        fills = self.transport.request("GET", "/trades")

        trades = [
            Trade(
                id=str(t["trade_id"]),
                symbol=self.symbols.join(t.get("exchange"), t["tradingsymbol"]),
                side=OrderSide.BUY if str(t.get("transaction_type", "")).upper() == "BUY" else OrderSide.SELL,
                quantity=to_decimal(t.get("quantity"), ZERO),
                price=to_decimal(t.get("average_price"), ZERO),
                timestamp=parse_timestamp(
                    t.get("fill_timestamp") or t.get("exchange_timestamp"), utc_now(), assume_tz=IST
                ),
            )
            for t in fills or []
        ]

        # The trade book covers the current day only and takes no range
        return self.filter_trades(trades, start, end)

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        raw_status = raw.get("status")
        order_type = self.order_types.from_wire(raw.get("order_type"))

        return Order(
            id=str(raw["order_id"]),
            symbol=self.symbols.join(raw.get("exchange"), raw.get("tradingsymbol", "")),
            side=OrderSide.BUY if str(raw.get("transaction_type", "")).upper() == "BUY" else OrderSide.SELL,
            type=order_type,
            quantity=to_decimal(raw.get("quantity"), ZERO),
            price=to_decimal(raw.get("price")) if order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT) else None,
            stop_price=to_decimal(raw.get("trigger_price")) if order_type in (OrderType.STOP, OrderType.STOP_LIMIT) else None,
            time_in_force=self.time_in_force_map.from_wire(raw.get("validity")),
            status=self.statuses(raw_status),
            raw_status=raw_status,
            filled_quantity=to_decimal(raw.get("filled_quantity")),
        )
