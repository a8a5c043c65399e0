"""
TD Ameritrade broker implementation.

US equities through the TD Ameritrade REST API v1. Requests carry an OAuth2
bearer token. When the connection metadata holds a ``refresh_token``, an
expired access token is refreshed once via the ``refresh_token`` grant and
the failed request retried once.

Classes:
    TDAmeritradeBroker: TD Ameritrade adapter

Note:
    See: https://developer.tdameritrade.com/apis
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
from brokerlink.execution.exceptions import AuthenticationError, BrokerError, BrokerProtocolError
from brokerlink.execution.registry import register_broker
from brokerlink.execution.rest_broker import RestBroker
from brokerlink.execution.transport import BearerAuth, RestTransport
from brokerlink.utils.helpers import parse_timestamp, to_decimal, to_utc, utc_now
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)

ZERO = Decimal("0")


@register_broker("td_ameritrade", description="TD Ameritrade US equities (OAuth2 with token refresh)")
class TDAmeritradeBroker(RestBroker):
    """
    TD Ameritrade adapter.

    Attributes:
        account_id: TD account number every trading path is scoped to
    """

    broker_name = "TD Ameritrade"
    live_url = "https://api.tdameritrade.com/v1"
    token_path = "/oauth2/token"

    order_types = order_type_translator(
        {
            OrderType.MARKET: "MARKET",
            OrderType.LIMIT: "LIMIT",
            OrderType.STOP: "STOP",
            OrderType.STOP_LIMIT: "STOP_LIMIT",
        }
    )

    time_in_force_map = time_in_force_translator(
        {
            TimeInForce.DAY: "DAY",
            TimeInForce.GTC: "GOOD_TILL_CANCEL",
            TimeInForce.IOC: "IMMEDIATE_OR_CANCEL",
            TimeInForce.FOK: "FILL_OR_KILL",
        }
    )

    statuses = StatusMap(
        {
            "ACCEPTED": OrderStatus.SUBMITTED,
            "QUEUED": OrderStatus.SUBMITTED,
            "WORKING": OrderStatus.SUBMITTED,
            "PENDING_ACTIVATION": OrderStatus.SUBMITTED,
            "PENDING_REPLACE": OrderStatus.SUBMITTED,
            "PENDING_CANCEL": OrderStatus.SUBMITTED,
            "FILLED": OrderStatus.FILLED,
            "CANCELED": OrderStatus.CANCELLED,
            "EXPIRED": OrderStatus.CANCELLED,
            "REPLACED": OrderStatus.CANCELLED,
            "REJECTED": OrderStatus.REJECTED,
        }
    )

    # periodType:frequencyType:frequency
    timeframes = TimeframeMap(
        {
            "1m": "day:minute:1",
            "5m": "day:minute:5",
            "10m": "day:minute:10",
            "15m": "day:minute:15",
            "30m": "day:minute:30",
            "1d": "month:daily:1",
            "1w": "year:weekly:1",
            "1M": "year:monthly:1",
        },
        daily="month:daily:1",
    )

    def __init__(self, connection, session=None):
        super().__init__(connection, session)
        self.account_id = self.require(connection.account_id, "account_id")

    def build_auth(self) -> BearerAuth:
        return BearerAuth()

    def build_refresher(self):
        if not self.connection.refresh_token:
            return None
        return self._refresh_access_token

    def _refresh_access_token(self) -> str:
        """
        Exchange the refresh token for a new access token.

        Returns:
            New access token

        Raises:
            AuthenticationError: If the token endpoint rejects the grant
        """
        auth_transport = RestTransport(
            self.broker_name,
            self.live_url,
            session=self.transport.session,
            timeout=self.transport.timeout,
        )
        response = auth_transport.request(
            "POST",
            self.token_path,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self.connection.refresh_token,
                "client_id": self.connection.api_key,
            },
        )

        access_token = (response or {}).get("access_token") if isinstance(response, dict) else None
        if not access_token:
            raise AuthenticationError(self.broker_name, None, "Token endpoint returned no access_token")

        logger.info(f"{self.broker_name} access token refreshed")
        return access_token

    def _ping(self) -> None:
        self.transport.request("GET", f"/accounts/{self.account_id}")

    def get_account_info(self) -> AccountInfo:
        response = self.transport.request("GET", f"/accounts/{self.account_id}")
        account = response["securitiesAccount"]
        balances = account.get("currentBalances") or {}

        available = balances.get("availableFunds")
        if available is None:
            available = balances.get("cashAvailableForTrading")

        return AccountInfo(
            account_id=str(account["accountId"]),
            name=str(account["accountId"]),
            balance=to_decimal(balances.get("liquidationValue"), ZERO),
            currency="USD",
            available_balance=to_decimal(available),
            margin_used=to_decimal(balances.get("marginBalance")),
        )

    def get_quote(self, symbol: str) -> Quote:
        wire_symbol = self.symbols.to_wire(symbol)
        response = self.transport.request("GET", f"/marketdata/{wire_symbol}/quotes")

        quote = (response or {}).get(wire_symbol)
        if quote is None:
            raise BrokerProtocolError(self.broker_name, 200, f"No quote returned for {symbol}")

        return Quote(
            symbol=self.symbols.canonical(symbol),
            timestamp=parse_timestamp(quote.get("quoteTimeInLong"), utc_now()),
            bid=to_decimal(quote.get("bidPrice"), ZERO),
            ask=to_decimal(quote.get("askPrice"), ZERO),
            bid_size=to_decimal(quote.get("bidSize")),
            ask_size=to_decimal(quote.get("askSize")),
        )

    def get_historical_data(self, symbol: str, timeframe: str, start: datetime, end: datetime) -> List[Bar]:
        period_type, frequency_type, frequency = self.timeframes(timeframe).split(":")

        response = self.transport.request(
            "GET",
            f"/marketdata/{self.symbols.to_wire(symbol)}/pricehistory",
            params={
                "periodType": period_type,
                "frequencyType": frequency_type,
                "frequency": frequency,
                "startDate": int(to_utc(start).timestamp() * 1000),
                "endDate": int(to_utc(end).timestamp() * 1000),
            },
        )

        return [
            Bar(
                symbol=self.symbols.canonical(symbol),
                timestamp=parse_timestamp(candle["datetime"]),
                open=to_decimal(candle.get("open"), ZERO),
                high=to_decimal(candle.get("high"), ZERO),
                low=to_decimal(candle.get("low"), ZERO),
                close=to_decimal(candle.get("close"), ZERO),
                volume=to_decimal(candle.get("volume")),
            )
            for candle in (response or {}).get("candles") or []
        ]

    def _submit(self, order: Order) -> Order:
        body: Dict[str, Any] = {
            "orderType": self.order_types.to_wire(order.type),
            "session": "NORMAL",
            "duration": self.time_in_force_map.to_wire(order.time_in_force),
            "orderStrategyType": "SINGLE",
            "orderLegCollection": [
                {
                    "instruction": "BUY" if order.side == OrderSide.BUY else "SELL",
                    "quantity": float(order.quantity),
                    "instrument": {"symbol": self.symbols.to_wire(order.symbol), "assetType": "EQUITY"},
                }
            ],
        }
        if order.type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            body["price"] = str(order.price)
        if order.type in (OrderType.STOP, OrderType.STOP_LIMIT):
            body["stopPrice"] = str(order.stop_price)

        response = self.transport.send("POST", f"/accounts/{self.account_id}/orders", json=body)

        # The new order id is only returned in the Location header
        location = response.headers.get("Location", "")
        order_id = location.rstrip("/").rsplit("/", 1)[-1] if location else ""
        if not order_id:
            raise BrokerProtocolError(self.broker_name, response.status_code, "Order accepted without an order id")

        # The order exists from here on; a failed status read must not hide its id
        try:
            details = self.transport.request("GET", f"/accounts/{self.account_id}/orders/{order_id}")
        except BrokerError as e:
            logger.warning(f"Order {order_id} placed but status lookup failed: {e}")
            return order.with_id(order_id, OrderStatus.SUBMITTED)

        raw_status = (details or {}).get("status")
        return order.with_id(order_id, self.statuses(raw_status), raw_status)

    def _cancel(self, order_id: str) -> None:
        self.transport.request("DELETE", f"/accounts/{self.account_id}/orders/{order_id}")

    def get_order(self, order_id: str) -> Order:
        with self.order_lookup(order_id):
            response = self.transport.request("GET", f"/accounts/{self.account_id}/orders/{order_id}")
        return self._to_order(response)

    def get_open_orders(self) -> List[Order]:
        orders = self.transport.request("GET", f"/accounts/{self.account_id}/orders", params={"status": "WORKING"})
        return [self._to_order(o) for o in orders or []]

    def get_positions(self) -> List[Position]:
        response = self.transport.request("GET", f"/accounts/{self.account_id}", params={"fields": "positions"})
        positions = (response.get("securitiesAccount") or {}).get("positions") or []

        result = []
        for p in positions:
            quantity = to_decimal(p.get("longQuantity"), ZERO) - to_decimal(p.get("shortQuantity"), ZERO)
            average_price = to_decimal(p.get("averagePrice"), ZERO)
            market_value = to_decimal(p.get("marketValue"))

            current_price = None
            unrealized_pnl = None
            if market_value is not None and quantity != 0:
                current_price = market_value / abs(quantity)
                unrealized_pnl = market_value - average_price * quantity

            result.append(
                Position(
                    symbol=self.symbols.from_wire(p["instrument"]["symbol"]),
                    quantity=quantity,
                    average_price=average_price,
                    current_price=current_price,
                    market_value=market_value,
                    unrealized_pnl=unrealized_pnl,
                )
            )

        return result

    def get_trades(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Trade]:
        params = {"type": "TRADE"}
        if start:
            params["startDate"] = to_utc(start).strftime("%Y-%m-%d")
        if end:
            params["endDate"] = to_utc(end).strftime("%Y-%m-%d")

        transactions = self.transport.request("GET", f"/accounts/{self.account_id}/transactions", params=params)

        trades = []
        for t in transactions or []:
            item = t.get("transactionItem") or {}
            trades.append(
                Trade(
                    id=str(t["transactionId"]),
                    symbol=self.symbols.from_wire(item["instrument"]["symbol"]),
                    side=OrderSide.BUY if item.get("instruction") == "BUY" else OrderSide.SELL,
                    quantity=abs(to_decimal(item.get("amount"), ZERO)),
                    price=to_decimal(item.get("price"), ZERO),
                    timestamp=parse_timestamp(t.get("transactionDate"), utc_now()),
                    commission=to_decimal((t.get("fees") or {}).get("commission"), ZERO),
                )
            )

        # Date params are day-granular
        return self.filter_trades(trades, start, end)

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        leg = (raw.get("orderLegCollection") or [{}])[0]
        raw_status = raw.get("status")

        return Order(
            id=str(raw["orderId"]),
            symbol=self.symbols.from_wire((leg.get("instrument") or {}).get("symbol", "")),
            side=OrderSide.BUY if leg.get("instruction") == "BUY" else OrderSide.SELL,
            type=self.order_types.from_wire(raw.get("orderType")),
            quantity=to_decimal(leg.get("quantity", raw.get("quantity")), ZERO),
            price=to_decimal(raw.get("price")),
            stop_price=to_decimal(raw.get("stopPrice")),
            time_in_force=self.time_in_force_map.from_wire(raw.get("duration")),
            status=self.statuses(raw_status),
            raw_status=raw_status,
            filled_quantity=to_decimal(raw.get("filledQuantity")),
        )
