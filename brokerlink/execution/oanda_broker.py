"""
OANDA v20 broker implementation.

Forex and CFD trading through the OANDA v20 REST API. Practice (and paper)
connections are routed to the fxPractice host.

Translation notes:
    - Instruments use underscores ("EUR_USD"); canonical pairs do not ("EURUSD").
    - Direction is carried by the sign of ``units``.
    - Canonical ``day`` is sent as GTD expiring at the end of the UTC day.
    - OANDA has no stop-limit type: a stop-limit order is a STOP order whose
      ``priceBound`` is the limit price.

Classes:
    OandaBroker: OANDA adapter
"""

from datetime import datetime, time
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
from brokerlink.execution.exceptions import BrokerProtocolError
from brokerlink.execution.registry import register_broker
from brokerlink.execution.rest_broker import RestBroker
from brokerlink.execution.symbol_mapper import CurrencyPairSymbols, SymbolTranslator
from brokerlink.execution.transport import BearerAuth
from brokerlink.utils.helpers import isoformat_z, parse_timestamp, to_decimal, utc_now

ZERO = Decimal("0")


def end_of_day(now: datetime) -> datetime:
    """Last second of the UTC day containing ``now``."""
    return datetime.combine(now.date(), time(23, 59, 59), tzinfo=now.tzinfo)


@register_broker("oanda", description="OANDA v20 forex (live and practice)", simulated="practice")
class OandaBroker(RestBroker):
    """OANDA adapter."""

    broker_name = "OANDA"
    live_url = "https://api-fxtrade.oanda.com/v3"
    simulated_url = "https://api-fxpractice.oanda.com/v3"
    headers = {"Accept": "application/json", "Accept-Datetime-Format": "RFC3339"}

    order_types = order_type_translator(
        {
            OrderType.MARKET: "MARKET",
            OrderType.LIMIT: "LIMIT",
            OrderType.STOP: "STOP",
            OrderType.STOP_LIMIT: "STOP",
        }
    )

    time_in_force_map = time_in_force_translator(
        {
            TimeInForce.DAY: "GTD",
            TimeInForce.GTC: "GTC",
            TimeInForce.IOC: "IOC",
            TimeInForce.FOK: "FOK",
        }
    )

    statuses = StatusMap(
        {
            "PENDING": OrderStatus.SUBMITTED,
            "TRIGGERED": OrderStatus.SUBMITTED,
            "FILLED": OrderStatus.FILLED,
            "CANCELLED": OrderStatus.CANCELLED,
        }
    )

    timeframes = TimeframeMap(
        {
            "1m": "M1",
            "5m": "M5",
            "10m": "M10",
            "15m": "M15",
            "30m": "M30",
            "1h": "H1",
            "1d": "D",
            "1w": "W",
            "1M": "M",
        },
        daily="D",
    )

    def __init__(self, connection, session=None):
        super().__init__(connection, session)
        self.account_id = self.require(connection.account_id, "account_id")

    def build_symbols(self) -> SymbolTranslator:
        return CurrencyPairSymbols()

    def build_auth(self) -> BearerAuth:
        return BearerAuth()

    def initial_token(self) -> Optional[str]:
        return self.connection.api_token or self.connection.api_key

    def get_account_info(self) -> AccountInfo:
        response = self.transport.request("GET", f"/accounts/{self.account_id}")
        account = response["account"]

        return AccountInfo(
            account_id=str(account["id"]),
            name=account.get("alias") or account["id"],
            balance=to_decimal(account.get("balance"), ZERO),
            currency=account.get("currency") or "USD",
            available_balance=to_decimal(account.get("marginAvailable")),
            margin_used=to_decimal(account.get("marginUsed")),
        )

    def get_quote(self, symbol: str) -> Quote:
        response = self.transport.request(
            "GET",
            f"/accounts/{self.account_id}/pricing",
            params={"instruments": self.symbols.to_wire(symbol)},
        )
        prices = (response or {}).get("prices") or []
        if not prices:
            raise BrokerProtocolError(self.broker_name, 200, f"No price returned for {symbol}")

        pricing = prices[0]
        best_bid = (pricing.get("bids") or [{}])[0]
        best_ask = (pricing.get("asks") or [{}])[0]

        return Quote(
            symbol=self.symbols.canonical(symbol),
            timestamp=parse_timestamp(pricing.get("time"), utc_now()),
            bid=to_decimal(best_bid.get("price"), ZERO),
            ask=to_decimal(best_ask.get("price"), ZERO),
            bid_size=to_decimal(best_bid.get("liquidity")),
            ask_size=to_decimal(best_ask.get("liquidity")),
        )

    def get_historical_data(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> List[Bar]:
        response = self.transport.request(
            "GET",
            f"/instruments/{self.symbols.to_wire(symbol)}/candles",
            params={
                "price": "M",
                "granularity": self.timeframes(timeframe),
                "from": isoformat_z(start),
                "to": isoformat_z(end),
            },
        )

        bars = []
        for candle in (response or {}).get("candles") or []:
            mid = candle.get("mid") or {}
            bars.append(
                Bar(
                    symbol=self.symbols.canonical(symbol),
                    timestamp=parse_timestamp(candle["time"]),
                    open=to_decimal(mid.get("o"), ZERO),
                    high=to_decimal(mid.get("h"), ZERO),
                    low=to_decimal(mid.get("l"), ZERO),
                    close=to_decimal(mid.get("c"), ZERO),
                    volume=to_decimal(candle.get("volume")),
                )
            )
        return bars

    def _submit(self, order: Order) -> Order:
        units = order.quantity if order.side == OrderSide.BUY else -order.quantity
        time_in_force = self.time_in_force_map.to_wire(order.time_in_force)

        body: Dict[str, Any] = {
            "units": str(units),
            "instrument": self.symbols.to_wire(order.symbol),
            "timeInForce": time_in_force,
            "type": self.order_types.to_wire(order.type),
            "positionFill": "DEFAULT",
        }
        if time_in_force == "GTD":
            body["gtdTime"] = isoformat_z(end_of_day(utc_now()))

        if order.type == OrderType.LIMIT:
            body["price"] = str(order.price)
        elif order.type == OrderType.STOP:
            body["price"] = str(order.stop_price)
        elif order.type == OrderType.STOP_LIMIT:
            body["price"] = str(order.stop_price)
            body["priceBound"] = str(order.price)

        response = self.transport.request("POST", f"/accounts/{self.account_id}/orders", json={"order": body})

        created = response.get("orderCreateTransaction") or {}
        if "orderCancelTransaction" in response:
            raw_status = "CANCELLED"
        elif "orderFillTransaction" in response:
            raw_status = "FILLED"
        else:
            raw_status = "PENDING"

        return order.with_id(str(created["id"]), self.statuses(raw_status), raw_status)

    def _cancel(self, order_id: str) -> None:
        self.transport.request("PUT", f"/accounts/{self.account_id}/orders/{order_id}/cancel")

    def get_order(self, order_id: str) -> Order:
        with self.order_lookup(order_id):
            response = self.transport.request("GET", f"/accounts/{self.account_id}/orders/{order_id}")
        return self._to_order(response["order"])

    def get_open_orders(self) -> List[Order]:
        response = self.transport.request("GET", f"/accounts/{self.account_id}/pendingOrders")
        return [self._to_order(o) for o in (response or {}).get("orders") or [] if "instrument" in o]

    def get_positions(self) -> List[Position]:
        """
        Get open positions.

        Hedged accounts can hold a long and a short side on the same
        instrument; each non-zero side is returned as its own position.
        """
        response = self.transport.request("GET", f"/accounts/{self.account_id}/openPositions")

        positions = []
        for p in (response or {}).get("positions") or []:
            symbol = self.symbols.from_wire(p["instrument"])
            for side in ("long", "short"):
                data = p.get(side) or {}
                units = to_decimal(data.get("units"), ZERO)
                if units == 0:
                    continue

                positions.append(
                    Position(
                        symbol=symbol,
                        quantity=units,
                        average_price=to_decimal(data.get("averagePrice"), ZERO),
                        unrealized_pnl=to_decimal(data.get("unrealizedPL")),
                    )
                )
        return positions

    def get_trades(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Trade]:
        response = self.transport.request(
            "GET",
            f"/accounts/{self.account_id}/trades",
            params={"state": "CLOSED", "count": 500},
        )

        trades = []
        for t in (response or {}).get("trades") or []:
            initial_units = to_decimal(t.get("initialUnits"), ZERO)
            trades.append(
                Trade(
                    id=str(t["id"]),
                    symbol=self.symbols.from_wire(t["instrument"]),
                    side=OrderSide.BUY if initial_units > 0 else OrderSide.SELL,
                    quantity=abs(initial_units),
                    price=to_decimal(t.get("price"), ZERO),
                    timestamp=parse_timestamp(t.get("closeTime") or t.get("openTime"), utc_now()),
                )
            )

        # The trades endpoint has no time range filter
        return self.filter_trades(trades, start, end)

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        units = to_decimal(raw.get("units"), ZERO)
        order_type = self.order_types.from_wire(raw.get("type"))
        price = to_decimal(raw.get("price"))
        stop_price = None

        if order_type == OrderType.STOP:
            stop_price, price = price, None
            if raw.get("priceBound"):
                order_type = OrderType.STOP_LIMIT
                price = to_decimal(raw.get("priceBound"))

        raw_status = raw.get("state")
        return Order(
            id=str(raw["id"]),
            symbol=self.symbols.from_wire(raw.get("instrument", "")),
            side=OrderSide.BUY if units > 0 else OrderSide.SELL,
            type=order_type,
            quantity=abs(units),
            price=price,
            stop_price=stop_price,
            time_in_force=self.time_in_force_map.from_wire(raw.get("timeInForce")),
            status=self.statuses(raw_status),
            raw_status=raw_status,
        )
