"""
Alpaca broker implementation.

US equities through the Alpaca Trading API v2. Trading requests go to the
live or paper host depending on the connection environment; market data
always comes from the shared data host.

Classes:
    AlpacaBroker: Alpaca adapter

Example:
    >>> connection = BrokerConnection(broker="alpaca", api_key="...", api_secret="...", environment="paper")
    >>> broker = AlpacaBroker(connection)
    >>> broker.base_url
    'https://paper-api.alpaca.markets'

Note:
    See: https://docs.alpaca.markets/reference
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
from brokerlink.execution.registry import register_broker
from brokerlink.execution.rest_broker import RestBroker
from brokerlink.execution.transport import HeaderPairAuth
from brokerlink.utils.helpers import isoformat_z, parse_timestamp, to_decimal, utc_now

ZERO = Decimal("0")


@register_broker("alpaca", description="Alpaca US equities (live and paper)", simulated="paper")
class AlpacaBroker(RestBroker):
    """
    Alpaca adapter.

    Authenticates with the static key-id / secret-key header pair.
    """

    broker_name = "Alpaca"
    live_url = "https://api.alpaca.markets"
    simulated_url = "https://paper-api.alpaca.markets"
    data_url = "https://data.alpaca.markets"

    order_types = order_type_translator(
        {
            OrderType.MARKET: "market",
            OrderType.LIMIT: "limit",
            OrderType.STOP: "stop",
            OrderType.STOP_LIMIT: "stop_limit",
        }
    )

    time_in_force_map = time_in_force_translator(
        {
            TimeInForce.DAY: "day",
            TimeInForce.GTC: "gtc",
            TimeInForce.IOC: "ioc",
            TimeInForce.FOK: "fok",
        }
    )

    statuses = StatusMap(
        {
            "new": OrderStatus.SUBMITTED,
            "accepted": OrderStatus.SUBMITTED,
            "pending_new": OrderStatus.SUBMITTED,
            "accepted_for_bidding": OrderStatus.SUBMITTED,
            "partially_filled": OrderStatus.SUBMITTED,
            "pending_replace": OrderStatus.SUBMITTED,
            "replaced": OrderStatus.SUBMITTED,
            "calculated": OrderStatus.SUBMITTED,
            "done_for_day": OrderStatus.SUBMITTED,
            "filled": OrderStatus.FILLED,
            "canceled": OrderStatus.CANCELLED,
            "expired": OrderStatus.CANCELLED,
            "rejected": OrderStatus.REJECTED,
            "suspended": OrderStatus.REJECTED,
        }
    )

    timeframes = TimeframeMap(
        {
            "1m": "1Min",
            "3m": "3Min",
            "5m": "5Min",
            "10m": "10Min",
            "15m": "15Min",
            "30m": "30Min",
            "1h": "1Hour",
            "1d": "1Day",
            "1w": "1Week",
            "1M": "1Month",
        },
        daily="1Day",
    )

    def build_auth(self) -> HeaderPairAuth:
        return HeaderPairAuth(
            {
                "APCA-API-KEY-ID": self.connection.api_key,
                "APCA-API-SECRET-KEY": self.connection.api_secret,
            }
        )

    def get_account_info(self) -> AccountInfo:
        account = self.transport.request("GET", "/v2/account")

        return AccountInfo(
            account_id=str(account["id"]),
            name=account.get("account_number"),
            balance=to_decimal(account.get("portfolio_value") or account.get("equity"), ZERO),
            currency=account.get("currency") or "USD",
            available_balance=to_decimal(account.get("buying_power")),
            margin_used=to_decimal(account.get("initial_margin")),
        )

    def get_quote(self, symbol: str) -> Quote:
        payload = self.transport.request(
            "GET", f"{self.data_url}/v2/stocks/{self.symbols.to_wire(symbol)}/quotes/latest"
        )
        quote = payload.get("quote", payload)

        return Quote(
            symbol=self.symbols.canonical(symbol),
            timestamp=parse_timestamp(quote.get("t"), utc_now()),
            bid=to_decimal(quote.get("bp"), ZERO),
            ask=to_decimal(quote.get("ap"), ZERO),
            bid_size=to_decimal(quote.get("bs")),
            ask_size=to_decimal(quote.get("as")),
        )

    def get_historical_data(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> List[Bar]:
        payload = self.transport.request(
            "GET",
            f"{self.data_url}/v2/stocks/{self.symbols.to_wire(symbol)}/bars",
            params={
                "timeframe": self.timeframes(timeframe),
                "start": isoformat_z(start),
                "end": isoformat_z(end),
            },
        )

        return [
            Bar(
                symbol=self.symbols.canonical(symbol),
                timestamp=parse_timestamp(bar["t"]),
                open=to_decimal(bar.get("o"), ZERO),
                high=to_decimal(bar.get("h"), ZERO),
                low=to_decimal(bar.get("l"), ZERO),
                close=to_decimal(bar.get("c"), ZERO),
                volume=to_decimal(bar.get("v")),
            )
            for bar in (payload or {}).get("bars") or []
        ]

    def _submit(self, order: Order) -> Order:
        body: Dict[str, Any] = {
            "symbol": self.symbols.to_wire(order.symbol),
            "qty": str(order.quantity),
            "side": order.side.value,
            "type": self.order_types.to_wire(order.type),
            "time_in_force": self.time_in_force_map.to_wire(order.time_in_force),
        }
        if order.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            body["limit_price"] = str(order.price)
        if order.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            body["stop_price"] = str(order.stop_price)

        response = self.transport.request("POST", "/v2/orders", json=body)
        return self._to_order(response)

    def _cancel(self, order_id: str) -> None:
        self.transport.request("DELETE", f"/v2/orders/{order_id}")

    def get_order(self, order_id: str) -> Order:
        with self.order_lookup(order_id):
            response = self.transport.request("GET", f"/v2/orders/{order_id}")
        return self._to_order(response)

    def get_open_orders(self) -> List[Order]:
        orders = self.transport.request("GET", "/v2/orders", params={"status": "open"})
        return [self._to_order(o) for o in orders or []]

    def get_positions(self) -> List[Position]:
        positions = self.transport.request("GET", "/v2/positions")

        return [
            Position(
                symbol=self.symbols.from_wire(p["symbol"]),
                quantity=to_decimal(p.get("qty"), ZERO),
                average_price=to_decimal(p.get("avg_entry_price"), ZERO),
                current_price=to_decimal(p.get("current_price")),
                market_value=to_decimal(p.get("market_value")),
                unrealized_pnl=to_decimal(p.get("unrealized_pl")),
            )
            for p in positions or []
        ]

    def get_trades(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Trade]:
        params = {}
        if start:
            params["after"] = isoformat_z(start)
        if end:
            params["until"] = isoformat_z(end)

        activities = self.transport.request("GET", "/v2/account/activities/FILL", params=params)

        return [
            Trade(
                id=str(a["id"]),
                symbol=self.symbols.from_wire(a["symbol"]),
                side=OrderSide.BUY if str(a.get("side", "")).lower() == "buy" else OrderSide.SELL,
                quantity=to_decimal(a.get("qty"), ZERO),
                price=to_decimal(a.get("price"), ZERO),
                timestamp=parse_timestamp(a.get("transaction_time"), utc_now()),
                commission=to_decimal(a.get("commission"), ZERO),
            )
            for a in activities or []
        ]

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        return Order(
            id=str(raw["id"]),
            symbol=self.symbols.from_wire(raw["symbol"]),
            side=OrderSide.BUY if str(raw.get("side", "")).lower() == "buy" else OrderSide.SELL,
            type=self.order_types.from_wire(raw.get("type") or raw.get("order_type")),
            quantity=to_decimal(raw.get("qty"), ZERO),
            price=to_decimal(raw.get("limit_price")),
            stop_price=to_decimal(raw.get("stop_price")),
            time_in_force=self.time_in_force_map.from_wire(raw.get("time_in_force")),
            status=self.statuses(raw.get("status")),
            raw_status=raw.get("status"),
            filled_quantity=to_decimal(raw.get("filled_qty")),
        )
