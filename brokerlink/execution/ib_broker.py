"""
Interactive Brokers implementation (Client Portal Web API).

Interactive Brokers addresses every instrument by contract id, so the
canonical symbol for this adapter is the conid string ("265598" for AAPL).
Paper connections are routed to the paper host.

Classes:
    InteractiveBrokersBroker: Interactive Brokers adapter
"""

import re
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
from brokerlink.execution.rest_broker import RestBroker
from brokerlink.execution.symbol_mapper import ConidSymbols, SymbolTranslator
from brokerlink.execution.transport import BearerAuth
from brokerlink.utils.helpers import parse_timestamp, to_decimal, to_utc, utc_now
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)

ZERO = Decimal("0")

# Snapshot field ids
FIELD_BID = "84"
FIELD_ASK_SIZE = "85"
FIELD_ASK = "86"
FIELD_BID_SIZE = "88"

# Snapshot values may carry a one-letter prefix (C=close, H=halted) and thousands separators
_SNAPSHOT_NOISE = re.compile(r"^[A-Za-z]|,")

MAX_CONFIRMATIONS = 5


def snapshot_value(value: Any) -> Optional[Decimal]:
    """Decimal from a market data snapshot field."""
    if isinstance(value, str):
        value = _SNAPSHOT_NOISE.sub("", value.strip())
    return to_decimal(value)


@register_broker("interactive_brokers", description="Interactive Brokers Client Portal (live and paper)", simulated="paper")
class InteractiveBrokersBroker(RestBroker):
    """
    Interactive Brokers adapter.

    Attributes:
        account_id: IB account id ("U1234567" / "DU1234567")
    """

    broker_name = "Interactive Brokers"
    live_url = "https://api.interactivebrokers.com/v1/portal"
    simulated_url = "https://paper-api.interactivebrokers.com/v1/portal"

    order_types = order_type_translator(
        {
            OrderType.MARKET: "MKT",
            OrderType.LIMIT: "LMT",
            OrderType.STOP: "STP",
            OrderType.STOP_LIMIT: "STOP_LIMIT",
        },
        reverse={
            "MKT": OrderType.MARKET,
            "MARKET": OrderType.MARKET,
            "LMT": OrderType.LIMIT,
            "LIMIT": OrderType.LIMIT,
            "STP": OrderType.STOP,
            "STOP": OrderType.STOP,
            "STOP_LIMIT": OrderType.STOP_LIMIT,
            "STOP LIMIT": OrderType.STOP_LIMIT,
        },
    )

    time_in_force_map = time_in_force_translator(
        {
            TimeInForce.DAY: "DAY",
            TimeInForce.GTC: "GTC",
            TimeInForce.IOC: "IOC",
            TimeInForce.FOK: "FOK",
        }
    )

    statuses = StatusMap(
        {
            "PendingSubmit": OrderStatus.SUBMITTED,
            "PreSubmitted": OrderStatus.SUBMITTED,
            "Submitted": OrderStatus.SUBMITTED,
            "PendingCancel": OrderStatus.SUBMITTED,
            "Filled": OrderStatus.FILLED,
            "Cancelled": OrderStatus.CANCELLED,
            "ApiCancelled": OrderStatus.CANCELLED,
            "Inactive": OrderStatus.REJECTED,
        }
    )

    timeframes = TimeframeMap(
        {
            "1m": "1min",
            "3m": "3min",
            "5m": "5min",
            "10m": "10min",
            "15m": "15min",
            "30m": "30min",
            "1h": "1h",
            "1d": "1d",
            "1w": "1w",
            "1M": "1m",
        },
        daily="1d",
    )

    def __init__(self, connection, session=None):
        super().__init__(connection, session)
        self.account_id = self.require(connection.account_id, "account_id")

    def build_symbols(self) -> SymbolTranslator:
        return ConidSymbols()

    def build_auth(self) -> BearerAuth:
        return BearerAuth()

    def get_account_info(self) -> AccountInfo:
        summary = self.transport.request("GET", f"/portfolio/{self.account_id}/summary")
        # Summary keys are lower-case in current API versions
        summary = {str(key).lower(): value for key, value in (summary or {}).items()}

        net_liquidation = summary.get("netliquidation") or {}

        return AccountInfo(
            account_id=self.account_id,
            name=summary.get("accounttitle") or (summary.get("accountcode") or {}).get("value"),
            balance=to_decimal(net_liquidation.get("amount"), ZERO),
            currency=net_liquidation.get("currency") or "USD",
            available_balance=to_decimal((summary.get("availablefunds") or {}).get("amount")),
            margin_used=to_decimal((summary.get("initmarginreq") or {}).get("amount")),
        )

    def get_quote(self, symbol: str) -> Quote:
        conid = self.symbols.to_wire(symbol)
        snapshots = self.transport.request(
            "GET",
            "/iserver/marketdata/snapshot",
            params={"conids": conid, "fields": ",".join([FIELD_BID, FIELD_ASK_SIZE, FIELD_ASK, FIELD_BID_SIZE])},
        )
        if not snapshots:
            raise BrokerProtocolError(self.broker_name, 200, f"No market data returned for {symbol}")

        snapshot = snapshots[0]
        return Quote(
            symbol=self.symbols.canonical(symbol),
            timestamp=parse_timestamp(snapshot.get("_updated"), utc_now()),
            bid=snapshot_value(snapshot.get(FIELD_BID)) or ZERO,
            ask=snapshot_value(snapshot.get(FIELD_ASK)) or ZERO,
            bid_size=snapshot_value(snapshot.get(FIELD_BID_SIZE)),
            ask_size=snapshot_value(snapshot.get(FIELD_ASK_SIZE)),
        )

    def get_historical_data(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> List[Bar]:
        """
        Get historical bars.

        The history endpoint takes a look-back period ending at
        ``startTime``; the period is derived from the requested range.
        """
        days = max(1, (to_utc(end) - to_utc(start)).days)

        response = self.transport.request(
            "GET",
            "/iserver/marketdata/history",
            params={
                "conid": self.symbols.to_wire(symbol),
                "bar": self.timeframes(timeframe),
                "period": f"{days}d",
                "startTime": to_utc(end).strftime("%Y%m%d-%H:%M:%S"),
                "outsideRth": "false",
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
            for bar in (response or {}).get("data") or []
        ]

    def _submit(self, order: Order) -> Order:
        ib_order: Dict[str, Any] = {
            "acctId": self.account_id,
            "conid": int(self.symbols.to_wire(order.symbol)),
            "orderType": self.order_types.to_wire(order.type),
            "side": "BUY" if order.side == OrderSide.BUY else "SELL",
            "quantity": float(order.quantity),
            "tif": self.time_in_force_map.to_wire(order.time_in_force),
        }
        if order.type == OrderType.STOP:
            ib_order["price"] = float(order.stop_price)
        elif order.type == OrderType.LIMIT:
            ib_order["price"] = float(order.price)
        elif order.type == OrderType.STOP_LIMIT:
            ib_order["price"] = float(order.price)
            ib_order["auxPrice"] = float(order.stop_price)

        replies = self.transport.request(
            "POST", f"/iserver/account/{self.account_id}/orders", json={"orders": [ib_order]}
        )

        # Precautionary warnings must be confirmed before the order is routed
        for _ in range(MAX_CONFIRMATIONS):
            if isinstance(replies, dict):
                raise BrokerProtocolError(self.broker_name, 200, replies.get("error") or str(replies))

            reply = (replies or [{}])[0]
            if "order_id" in reply:
                raw_status = reply.get("order_status")
                return order.with_id(str(reply["order_id"]), self.statuses(raw_status), raw_status)

            if "id" not in reply:
                break

            logger.info(f"Confirming order warning: {reply.get('message')}")
            replies = self.transport.request("POST", f"/iserver/reply/{reply['id']}", json={"confirmed": True})

        raise BrokerProtocolError(self.broker_name, 200, f"Order not accepted: {replies}")

    def _cancel(self, order_id: str) -> None:
        self.transport.request("DELETE", f"/iserver/account/{self.account_id}/order/{order_id}")

    def _list_orders(self) -> List[Dict[str, Any]]:
        response = self.transport.request("GET", "/iserver/account/orders")
        if isinstance(response, dict):
            return response.get("orders") or []
        return response or []

    def get_order(self, order_id: str) -> Order:
        for raw in self._list_orders():
            if str(raw.get("orderId")) == str(order_id):
                return self._to_order(raw)
        raise OrderNotFoundError(self.broker_name, order_id)

    def get_open_orders(self) -> List[Order]:
        orders = [self._to_order(raw) for raw in self._list_orders()]
        return [o for o in orders if o.status in (OrderStatus.PENDING, OrderStatus.SUBMITTED)]

    def get_positions(self) -> List[Position]:
        positions = self.transport.request("GET", f"/portfolio/{self.account_id}/positions/0")

        return [
            Position(
                symbol=self.symbols.from_wire(str(p["conid"])),
                quantity=to_decimal(p.get("position"), ZERO),
                average_price=to_decimal(p.get("avgPrice", p.get("avgCost")), ZERO),
                current_price=to_decimal(p.get("mktPrice")),
                market_value=to_decimal(p.get("mktValue")),
                unrealized_pnl=to_decimal(p.get("unrealizedPnl")),
            )
            for p in positions or []
        ]

    def get_trades(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Trade]:
        executions = self.transport.request("GET", "/iserver/account/trades")

        trades = [
            Trade(
                id=str(e["execution_id"]),
                symbol=self.symbols.from_wire(str(e.get("conid") or e.get("symbol"))),
                side=OrderSide.BUY if str(e.get("side", "")).upper() in ("B", "BUY", "BOT") else OrderSide.SELL,
                quantity=abs(to_decimal(e.get("size"), ZERO)),
                price=to_decimal(e.get("price"), ZERO),
                timestamp=parse_timestamp(e.get("trade_time_r") or e.get("trade_time"), utc_now()),
                commission=to_decimal(e.get("commission"), ZERO),
            )
            for e in executions or []
        ]

        # No server-side range filter
        return self.filter_trades(trades, start, end)

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        raw_status = raw.get("status")
        side = str(raw.get("side", "")).upper()

        return Order(
            id=str(raw["orderId"]),
            symbol=self.symbols.from_wire(str(raw.get("conid", ""))),
            side=OrderSide.BUY if side in ("B", "BUY") else OrderSide.SELL,
            type=self.order_types.from_wire(raw.get("origOrderType") or raw.get("orderType")),
            quantity=to_decimal(raw.get("totalSize", raw.get("quantity")), ZERO),
            price=to_decimal(raw.get("price")),
            stop_price=to_decimal(raw.get("auxPrice")),
            time_in_force=self.time_in_force_map.from_wire(raw.get("timeInForce") or raw.get("tif")),
            status=self.statuses(raw_status),
            raw_status=raw_status,
            filled_quantity=to_decimal(raw.get("filledQuantity")),
        )
