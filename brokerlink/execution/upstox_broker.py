"""
Upstox broker implementation (API v2).

Instruments are addressed as "SEGMENT:TICKER" ("NSE_EQ:RELIANCE"); bare
canonical tickers are NSE equities. Responses are ``{status, data}``
envelopes with OAuth2 bearer auth.

Classes:
    UpstoxBroker: Upstox adapter

Note:
    See: https://upstox.com/developer/api-documentation/
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

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
from brokerlink.execution.symbol_mapper import ExchangeSegmentSymbols, SymbolTranslator
from brokerlink.execution.transport import BearerAuth
from brokerlink.utils.helpers import IST, parse_timestamp, to_decimal, to_utc, utc_now

ZERO = Decimal("0")


@register_broker("upstox", description="Upstox API v2 (NSE/BSE)")
class UpstoxBroker(RestBroker):
    """
    Upstox adapter.

    Attributes:
        product: Upstox product code for new orders ('D' delivery by
            default, 'I' intraday via ``metadata.product``)
    """

    broker_name = "Upstox"
    live_url = "https://api.upstox.com/v2"
    envelope = True

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
            "open": OrderStatus.SUBMITTED,
            "trigger pending": OrderStatus.SUBMITTED,
            "complete": OrderStatus.FILLED,
            "cancelled": OrderStatus.CANCELLED,
            "rejected": OrderStatus.REJECTED,
        }
    )

    timeframes = TimeframeMap(
        {
            "1m": "1minute",
            "30m": "30minute",
            "1d": "day",
            "1w": "week",
            "1M": "month",
        },
        daily="day",
    )

    def __init__(self, connection, session=None):
        super().__init__(connection, session)
        self.product = str(connection.metadata.get("product", "D")).upper()

    def build_symbols(self) -> SymbolTranslator:
        return ExchangeSegmentSymbols()

    def build_auth(self) -> BearerAuth:
        return BearerAuth()

    def _ping(self) -> None:
        self.transport.request("GET", "/user/profile")

    def get_account_info(self) -> AccountInfo:
        profile = self.transport.request("GET", "/user/profile")
        funds = self.transport.request("GET", "/user/get-funds-and-margin", params={"segment": "SEC"})
        equity = (funds or {}).get("equity") or {}

        used = to_decimal(equity.get("used_margin"), ZERO)
        available = to_decimal(equity.get("available_margin"), ZERO)

        return AccountInfo(
            account_id=profile.get("user_id") or self.connection.account_id or "",
            name=profile.get("user_name") or "Upstox Account",
            balance=used + available,
            currency="INR",
            available_balance=available,
            margin_used=used,
        )

    def get_quote(self, symbol: str) -> Quote:
        instrument = self.symbols.to_wire(symbol)
        data = self.transport.request("GET", "/market-quote/quotes", params={"instrument_key": instrument}) or {}

        quote = data.get(instrument)
        if quote is None and len(data) == 1:
            quote = next(iter(data.values()))
        if quote is None:
            raise BrokerProtocolError(self.broker_name, 200, f"No quote returned for {symbol}")

        depth = quote.get("depth") or {}
        buy = (depth.get("buy") or [{}])[0]
        sell = (depth.get("sell") or [{}])[0]
        last_price = to_decimal(quote.get("last_price"), ZERO)

        return Quote(
            symbol=self.symbols.canonical(symbol),
            timestamp=parse_timestamp(quote.get("timestamp"), utc_now(), assume_tz=IST),
            bid=to_decimal(buy.get("price")) or last_price,
            ask=to_decimal(sell.get("price")) or last_price,
            bid_size=to_decimal(buy.get("quantity")),
            ask_size=to_decimal(sell.get("quantity")),
        )

    def get_historical_data(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> List[Bar]:
        instrument = self.symbols.to_wire(symbol)
        interval = self.timeframes(timeframe)
        to_date = to_utc(end).astimezone(IST).strftime("%Y-%m-%d")
        from_date = to_utc(start).astimezone(IST).strftime("%Y-%m-%d")

        data = self.transport.request("GET", f"/historical-candle/{instrument}/{interval}/{to_date}/{from_date}")

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
        body: Dict[str, Any] = {
            "instrument_token": self.symbols.to_wire(order.symbol),
            "quantity": whole_quantity(order.quantity),
            "product": self.product,
            "validity": self.time_in_force_map.to_wire(order.time_in_force),
            "order_type": self.order_types.to_wire(order.type),
            "transaction_type": "BUY" if order.side == OrderSide.BUY else "SELL",
            "price": 0,
            "trigger_price": 0,
            "disclosed_quantity": 0,
            "is_amo": False,
        }
        if order.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            body["price"] = float(order.price)
        if order.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            body["trigger_price"] = float(order.stop_price)

        data = self.transport.request("POST", "/order/place", json=body)

        order_id = (data or {}).get("order_id")
        if not order_id:
            raise BrokerProtocolError(self.broker_name, 200, "Order placement failed: No order ID returned")

        return order.with_id(str(order_id), OrderStatus.PENDING)

    def _cancel(self, order_id: str) -> None:
        self.transport.request("DELETE", "/order/cancel", params={"order_id": order_id})

    def get_order(self, order_id: str) -> Order:
        with self.order_lookup(order_id):
            data = self.transport.request("GET", "/order/details", params={"order_id": order_id})

        if not data:
            raise OrderNotFoundError(self.broker_name, order_id)
        return self._to_order(data)

    def get_open_orders(self) -> List[Order]:
        orders = [self._to_order(o) for o in self.transport.request("GET", "/order/retrieve-all") or []]
        return [o for o in orders if o.status in (OrderStatus.PENDING, OrderStatus.SUBMITTED)]

    def get_positions(self) -> List[Position]:
        positions = []
        for p in self.transport.request("GET", "/portfolio/short-term-positions") or []:
            quantity = to_decimal(p.get("quantity"), ZERO)
            last_price = to_decimal(p.get("last_price"))

            positions.append(
                Position(
                    symbol=self._symbol_of(p),
                    quantity=quantity,
                    average_price=to_decimal(p.get("average_price"), ZERO),
                    current_price=last_price,
                    market_value=last_price * quantity if last_price is not None else None,
                    unrealized_pnl=to_decimal(p.get("unrealised")),
                )
            )
        return positions

    def get_trades(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Trade]:
        fills = self.transport.request("GET", "/order/trades/get-trades-for-day")

        trades = [
            Trade(
                id=str(t.get("trade_id") or t["order_id"]),
                symbol=self._symbol_of(t),
                side=OrderSide.BUY if str(t.get("transaction_type", "")).upper() == "BUY" else OrderSide.SELL,
                quantity=to_decimal(t.get("quantity"), ZERO),
                price=to_decimal(t.get("average_price", t.get("price")), ZERO),
                timestamp=parse_timestamp(
                    t.get("exchange_timestamp") or t.get("order_timestamp"), utc_now(), assume_tz=IST
                ),
            )
            for t in fills or []
        ]

        # The trade book covers the current day only and takes no range
        return self.filter_trades(trades, start, end)

    def _symbol_of(self, raw: Dict[str, Any]) -> str:
        ticker = raw.get("trading_symbol") or raw.get("tradingsymbol")
        if ticker:
            return self.symbols.join(raw.get("exchange"), ticker)
        return self.symbols.from_wire(raw.get("instrument_token") or raw.get("instrument_key") or "")

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        raw_status = raw.get("status")
        order_type = self.order_types.from_wire(raw.get("order_type"))

        return Order(
            id=str(raw["order_id"]),
            symbol=self._symbol_of(raw),
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
