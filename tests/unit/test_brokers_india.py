"""
Unit tests for the Indian market adapters (Zerodha Kite, Upstox, DhanHQ)
against recorded provider payloads.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from brokerlink.execution.broker_interface import Order, OrderSide, OrderStatus, OrderType
from brokerlink.execution.dhan_broker import DhanBroker, dhan_time
from brokerlink.execution.exceptions import ConfigurationError, OrderNotFoundError, ValidationError
from brokerlink.execution.kite_broker import KiteBroker
from brokerlink.execution.upstox_broker import UpstoxBroker

pytestmark = pytest.mark.unit

INSTRUMENT_DUMP = (
    "instrument_token,exchange_token,tradingsymbol,name,exchange\n"
    "738561,2885,RELIANCE,RELIANCE INDUSTRIES,NSE\n"
    "2953217,11536,TCS,TATA CONSULTANCY SERV LT,NSE\n"
)


def success(data):
    return {"status": "success", "data": data}


class TestKiteBroker:
    """Test Zerodha Kite Connect adapter."""

    @pytest.fixture
    def kite(self, fake_session, connection_factory):
        return KiteBroker(connection_factory("zerodha"), session=fake_session)

    def test_auth_header(self, kite, fake_session, response_factory, recorded_call):
        """Test 'token api_key:access_token' scheme."""
        fake_session.request.return_value = response_factory(200, success({"user_id": "AB1234"}))

        assert kite.test_connection() is True

        _, url, kwargs = recorded_call(fake_session)
        assert url == "https://api.kite.trade/user/profile"
        assert kwargs["headers"]["Authorization"] == "token test_key:test_token"
        assert kwargs["headers"]["X-Kite-Version"] == "3"

    def test_account_info(self, kite, fake_session, response_factory):
        """Test profile and margins are combined."""
        fake_session.request.side_effect = [
            response_factory(200, success({"user_id": "AB1234", "user_name": "Test User"})),
            response_factory(
                200,
                success({"equity": {"net": 150000.5, "available": {"cash": 120000}, "utilised": {"debits": 30000.5}}}),
            ),
        ]

        account = kite.get_account_info()

        assert account.account_id == "AB1234"
        assert account.name == "Test User"
        assert account.currency == "INR"
        assert account.balance == Decimal("150000.5")
        assert account.margin_used == Decimal("30000.5")

    def test_limit_order_is_form_encoded(self, kite, fake_session, response_factory, recorded_call):
        """Test order parameters go as form data."""
        fake_session.request.return_value = response_factory(200, success({"order_id": "151220000000000"}))
        request = Order(symbol="RELIANCE", side=OrderSide.BUY, type=OrderType.LIMIT, quantity=10, price=2450.5)

        placed = kite.place_order(request)

        method, url, kwargs = recorded_call(fake_session)
        assert method == "POST"
        assert url == "https://api.kite.trade/orders/regular"
        assert kwargs["json"] is None
        assert kwargs["data"] == {
            "exchange": "NSE",
            "tradingsymbol": "RELIANCE",
            "transaction_type": "BUY",
            "quantity": 10,
            "product": "CNC",
            "order_type": "LIMIT",
            "validity": "DAY",
            "price": "2450.5",
        }
        assert placed.id == "151220000000000"
        assert placed.status == OrderStatus.PENDING

    def test_stop_orders(self, kite, fake_session, response_factory, recorded_call):
        """Test stop maps to SL-M and stop-limit to SL."""
        fake_session.request.return_value = response_factory(200, success({"order_id": "1"}))

        kite.place_order(Order(symbol="BSE:SBIN", side=OrderSide.SELL, type=OrderType.STOP, quantity=5, stop_price=600))
        params = recorded_call(fake_session)[2]["data"]
        assert params["order_type"] == "SL-M"
        assert params["exchange"] == "BSE"
        assert params["trigger_price"] == "600"
        assert "price" not in params

        kite.place_order(
            Order(symbol="INFY", side=OrderSide.SELL, type=OrderType.STOP_LIMIT, quantity=5, price=1490, stop_price=1500)
        )
        params = recorded_call(fake_session)[2]["data"]
        assert params["order_type"] == "SL"
        assert params["price"] == "1490"
        assert params["trigger_price"] == "1500"

    def test_fractional_quantity_rejected_before_request(self, kite, fake_session):
        """Test that Indian equities take whole shares only."""
        request = Order(symbol="RELIANCE", side=OrderSide.BUY, type=OrderType.MARKET, quantity="1.5")

        with pytest.raises(ValidationError, match="whole number"):
            kite.place_order(request)

        fake_session.request.assert_not_called()

    def test_historical_data_resolves_instrument_token(self, kite, fake_session, response_factory, recorded_call):
        """Test CSV token lookup and IST request window."""
        fake_session.request.side_effect = [
            response_factory(200, text=INSTRUMENT_DUMP),
            response_factory(200, success({"candles": [["2024-01-15T09:15:00+0530", 2750, 2755, 2748, 2752, 10000]]})),
            response_factory(200, success({"candles": []})),
        ]

        bars = kite.get_historical_data(
            "RELIANCE",
            "5m",
            datetime(2024, 1, 15, 3, 45, tzinfo=timezone.utc),
            datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc),
        )

        assert recorded_call(fake_session, 0)[1] == "https://api.kite.trade/instruments/NSE"
        _, url, kwargs = recorded_call(fake_session, 1)
        assert url == "https://api.kite.trade/instruments/historical/738561/5minute"
        assert kwargs["params"] == {"from": "2024-01-15 09:15:00", "to": "2024-01-15 15:30:00"}

        assert len(bars) == 1
        assert bars[0].symbol == "RELIANCE"
        assert bars[0].timestamp == datetime(2024, 1, 15, 3, 45, tzinfo=timezone.utc)
        assert bars[0].volume == Decimal("10000")

        # Token cache avoids a second dump download
        kite.get_historical_data(
            "TCS", "1d", datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 15, tzinfo=timezone.utc)
        )
        assert fake_session.request.call_count == 3
        assert recorded_call(fake_session)[1].endswith("/instruments/historical/2953217/day")

    def test_unknown_instrument(self, kite, fake_session, response_factory):
        """Test trading symbol missing from the dump."""
        fake_session.request.return_value = response_factory(200, text=INSTRUMENT_DUMP)

        with pytest.raises(ValidationError, match="Unknown Kite instrument: NSE:NOSUCH"):
            kite.instrument_token("NOSUCH")
        with pytest.raises(ValidationError, match="Unknown Kite instrument: NSE:OTHER"):
            kite.instrument_token("OTHER")

        # The exchange dump is downloaded once even for unknown symbols
        assert fake_session.request.call_count == 1
        assert kite.loaded_exchanges == {"NSE"}

    def test_get_order_uses_latest_history_entry(self, kite, fake_session, response_factory):
        """Test order history is read newest last."""
        fake_session.request.return_value = response_factory(
            200,
            success(
                [
                    {"order_id": "1", "exchange": "NSE", "tradingsymbol": "INFY", "transaction_type": "BUY",
                     "order_type": "LIMIT", "quantity": 5, "price": 1500, "validity": "DAY", "status": "OPEN"},
                    {"order_id": "1", "exchange": "NSE", "tradingsymbol": "INFY", "transaction_type": "BUY",
                     "order_type": "LIMIT", "quantity": 5, "price": 1500, "validity": "DAY", "status": "COMPLETE",
                     "filled_quantity": 5},
                ]
            ),
        )

        order = kite.get_order("1")

        assert order.status == OrderStatus.FILLED
        assert order.filled_quantity == Decimal("5")
        assert order.symbol == "INFY"

    def test_empty_history_is_not_found(self, kite, fake_session, response_factory):
        """Test empty order history."""
        fake_session.request.return_value = response_factory(200, success([]))

        with pytest.raises(OrderNotFoundError):
            kite.get_order("1")

    def test_positions_market_value(self, kite, fake_session, response_factory):
        """Test market value from last price and closed-position skipping."""
        fake_session.request.return_value = response_factory(
            200,
            success(
                {
                    "net": [
                        {"exchange": "NSE", "tradingsymbol": "RELIANCE", "quantity": 10, "average_price": 2700,
                         "last_price": 2750, "unrealised": 500},
                        {"exchange": "NSE", "tradingsymbol": "TCS", "quantity": 0, "average_price": 3500,
                         "last_price": 3600, "unrealised": 0},
                    ],
                    "day": [],
                }
            ),
        )

        positions = kite.get_positions()

        assert len(positions) == 1
        assert positions[0].market_value == Decimal("27500")
        assert positions[0].unrealized_pnl == Decimal("500")


class TestUpstoxBroker:
    """Test Upstox adapter."""

    @pytest.fixture
    def upstox(self, fake_session, connection_factory):
        return UpstoxBroker(connection_factory("upstox"), session=fake_session)

    def test_place_order_body(self, upstox, fake_session, response_factory, recorded_call):
        """Test JSON order body."""
        fake_session.request.return_value = response_factory(200, success({"order_id": "240115000000123"}))
        request = Order(symbol="BSE:SBIN", side=OrderSide.SELL, type=OrderType.MARKET, quantity=5)

        placed = upstox.place_order(request)

        _, url, kwargs = recorded_call(fake_session)
        assert url == "https://api.upstox.com/v2/order/place"
        assert kwargs["headers"]["Authorization"] == "Bearer test_token"
        assert kwargs["json"]["instrument_token"] == "BSE_EQ:SBIN"
        assert kwargs["json"]["quantity"] == 5
        assert kwargs["json"]["product"] == "D"
        assert kwargs["json"]["transaction_type"] == "SELL"
        assert kwargs["json"]["price"] == 0
        assert placed.id == "240115000000123"

    def test_fractional_quantity_rejected(self, upstox, fake_session):
        """Test whole-share quantities."""
        with pytest.raises(ValidationError):
            upstox.place_order(Order(symbol="TCS", side=OrderSide.BUY, type=OrderType.MARKET, quantity="0.5"))

        fake_session.request.assert_not_called()

    def test_cancel_error_envelope_returns_false(self, upstox, fake_session, response_factory, log_records):
        """Test an error envelope on HTTP 200 makes cancel report False."""
        fake_session.request.return_value = response_factory(
            200, {"status": "error", "errors": [{"errorCode": "UDAPI100010", "message": "Order not found"}]}
        )

        assert upstox.cancel_order("240115000000123") is False

        record = [r for r in log_records if r["extra"].get("operation") == "cancel_order"][-1]
        assert "Order not found" in record["extra"]["error"]

    def test_quote_falls_back_to_last_price(self, upstox, fake_session, response_factory):
        """Test empty depth uses the last traded price."""
        fake_session.request.return_value = response_factory(
            200, success({"NSE_EQ:TCS": {"last_price": 3600.5, "depth": {"buy": [], "sell": []}}})
        )

        quote = upstox.get_quote("TCS")

        assert quote.bid == Decimal("3600.5")
        assert quote.ask == Decimal("3600.5")

    def test_prefixed_symbol_is_normalized(self, upstox, fake_session, response_factory):
        """Test exchange-prefixed input comes back in canonical form."""
        fake_session.request.return_value = response_factory(
            200, success({"NSE_EQ:TCS": {"last_price": 3600.5, "depth": {"buy": [], "sell": []}}})
        )

        assert upstox.get_quote("NSE:TCS").symbol == "TCS"
        assert upstox.get_quote("NSE_EQ:TCS").symbol == "TCS"

    def test_historical_path(self, upstox, fake_session, response_factory, recorded_call):
        """Test date-path candle request."""
        fake_session.request.return_value = response_factory(
            200, success({"candles": [["2024-01-15T00:00:00+05:30", 2740, 2760, 2735, 2750, 500000, 0]]})
        )

        bars = upstox.get_historical_data(
            "RELIANCE", "1d", datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 15, tzinfo=timezone.utc)
        )

        assert recorded_call(fake_session)[1] == (
            "https://api.upstox.com/v2/historical-candle/NSE_EQ:RELIANCE/day/2024-01-15/2024-01-01"
        )
        assert bars[0].close == Decimal("2750")

    def test_trades(self, upstox, fake_session, response_factory):
        """Test trade book translation."""
        fake_session.request.return_value = response_factory(
            200,
            success([{"trade_id": "50000001", "order_id": "1", "exchange": "NSE", "trading_symbol": "INFY",
                      "transaction_type": "BUY", "quantity": 5, "average_price": 1500.25,
                      "exchange_timestamp": "2024-01-15 10:30:00"}]),
        )

        trade = upstox.get_trades()[0]

        assert trade.id == "50000001"
        assert trade.symbol == "INFY"
        assert trade.timestamp == datetime(2024, 1, 15, 5, 0, tzinfo=timezone.utc)
        assert trade.commission == Decimal("0")


class TestDhanBroker:
    """Test DhanHQ adapter."""

    @pytest.fixture
    def dhan(self, fake_session, connection_factory):
        return DhanBroker(connection_factory("dhan", api_key="1000000001", environment="paper"), session=fake_session)

    def test_requires_client_id(self, fake_session, connection_factory):
        """Test client id is mandatory."""
        with pytest.raises(ConfigurationError, match="client id"):
            DhanBroker(connection_factory("dhan", api_key=None), session=fake_session)

    def test_sandbox_host_and_headers(self, dhan, fake_session, response_factory, recorded_call):
        """Test sandbox routing and header-pair auth."""
        fake_session.request.return_value = response_factory(
            200, {"dhanClientId": "1000000001", "availabelBalance": 98440.0, "sodLimit": 113642, "utilizedAmount": 15202}
        )

        account = dhan.get_account_info()

        _, url, kwargs = recorded_call(fake_session)
        assert url == "https://sandbox.dhan.co/v2/fundlimit"
        assert kwargs["headers"]["access-token"] == "test_token"
        assert kwargs["headers"]["client-id"] == "1000000001"
        assert account.available_balance == Decimal("98440.0")
        assert account.balance == Decimal("113642")
        assert account.margin_used == Decimal("15202")

    def test_quote(self, dhan, fake_session, response_factory, recorded_call):
        """Test security id lookup and nested quote payload."""
        fake_session.request.return_value = response_factory(
            200,
            success(
                {
                    "NSE_EQ": {
                        "2885": {
                            "last_price": 2750.0,
                            "last_trade_time": "15/01/2024 10:30:00",
                            "depth": {"buy": [{"price": 2749.5, "quantity": 100}],
                                      "sell": [{"price": 2750.0, "quantity": 50}]},
                        }
                    }
                }
            ),
        )

        quote = dhan.get_quote("RELIANCE")

        method, url, kwargs = recorded_call(fake_session)
        assert method == "POST"
        assert url == "https://sandbox.dhan.co/v2/marketfeed/quote"
        assert kwargs["json"] == {"NSE_EQ": [2885]}
        assert quote.symbol == "RELIANCE"
        assert quote.bid == Decimal("2749.5")
        assert quote.ask == Decimal("2750.0")
        assert quote.timestamp == datetime(2024, 1, 15, 5, 0, tzinfo=timezone.utc)

    def test_unknown_symbol_fails_before_request(self, dhan, fake_session):
        """Test unmapped tickers."""
        with pytest.raises(ValidationError, match="Security ID not found"):
            dhan.get_quote("NOSUCHSTOCK")

        fake_session.request.assert_not_called()

    def test_place_order(self, dhan, fake_session, response_factory, recorded_call):
        """Test order body and status mapping."""
        fake_session.request.return_value = response_factory(200, {"orderId": "112111182198", "orderStatus": "PENDING"})
        request = Order(symbol="TCS", side=OrderSide.BUY, type=OrderType.STOP_LIMIT, quantity=2, price=3610, stop_price=3600)

        placed = dhan.place_order(request)

        body = recorded_call(fake_session)[2]["json"]
        assert body["dhanClientId"] == "1000000001"
        assert body["exchangeSegment"] == "NSE_EQ"
        assert body["securityId"] == "11536"
        assert body["orderType"] == "STOP_LOSS"
        assert body["productType"] == "CNC"
        assert body["quantity"] == 2
        assert body["price"] == 3610.0
        assert body["triggerPrice"] == 3600.0
        assert placed.id == "112111182198"
        assert placed.status == OrderStatus.SUBMITTED
        assert placed.raw_status == "PENDING"

    def test_product_mapping(self, fake_session, connection_factory):
        """Test intraday product shorthand."""
        dhan = DhanBroker(connection_factory("dhan", metadata={"product": "MIS"}), session=fake_session)

        assert dhan.product == "INTRADAY"
        assert dhan.base_url == "https://api.dhan.co/v2"

    def test_intraday_history(self, dhan, fake_session, response_factory, recorded_call):
        """Test parallel-array chart parsing."""
        fake_session.request.return_value = response_factory(
            200,
            {"open": [2750, 2752], "high": [2755, 2756], "low": [2748, 2750], "close": [2752, 2754],
             "volume": [1000, 1200], "timestamp": [1705290300, 1705290600]},
        )

        bars = dhan.get_historical_data(
            "RELIANCE", "5m", datetime(2024, 1, 15, 3, 45, tzinfo=timezone.utc), datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        )

        _, url, kwargs = recorded_call(fake_session)
        assert url.endswith("/charts/intraday")
        assert kwargs["json"]["interval"] == "5"
        assert kwargs["json"]["fromDate"] == "2024-01-15 09:15:00"
        assert kwargs["json"]["securityId"] == "2885"
        assert len(bars) == 2
        assert bars[1].close == Decimal("2754")
        assert bars[0].timestamp == datetime(2024, 1, 15, 3, 45, tzinfo=timezone.utc)

    def test_daily_history_endpoint(self, dhan, fake_session, response_factory, recorded_call):
        """Test daily charts use the historical endpoint."""
        fake_session.request.return_value = response_factory(200, {"open": [], "timestamp": []})

        assert dhan.get_historical_data(
            "TCS", "1d", datetime(2024, 1, 1, tzinfo=timezone.utc), datetime(2024, 1, 15, tzinfo=timezone.utc)
        ) == []

        body = recorded_call(fake_session)[2]["json"]
        assert recorded_call(fake_session)[1].endswith("/charts/historical")
        assert body["expiryCode"] == 0
        assert body["fromDate"] == "2024-01-01"

    def test_get_order_unwraps_list(self, dhan, fake_session, response_factory):
        """Test single order wrapped in a list."""
        fake_session.request.return_value = response_factory(
            200,
            [{"orderId": "1", "orderStatus": "TRADED", "transactionType": "SELL", "exchangeSegment": "NSE_EQ",
              "securityId": "1333", "orderType": "MARKET", "quantity": 3, "filledQty": 3, "validity": "DAY"}],
        )

        order = dhan.get_order("1")

        assert order.status == OrderStatus.FILLED
        assert order.symbol == "HDFCBANK"
        assert order.side == OrderSide.SELL

    def test_positions_and_trades(self, dhan, fake_session, response_factory):
        """Test positions skip flat rows and trades parse exchange time."""
        fake_session.request.side_effect = [
            response_factory(
                200,
                [
                    {"tradingSymbol": "INFY", "exchangeSegment": "NSE_EQ", "netQty": 4, "costPrice": 1500,
                     "lastPrice": 1510, "unrealizedProfit": 40},
                    {"tradingSymbol": "TCS", "exchangeSegment": "NSE_EQ", "netQty": 0, "costPrice": 3500},
                ],
            ),
            response_factory(
                200,
                [{"exchangeTradeId": "T-1", "orderId": "1", "tradingSymbol": "SBIN", "exchangeSegment": "BSE_EQ",
                  "transactionType": "BUY", "tradedQuantity": 10, "tradedPrice": 610.5,
                  "exchangeTime": "2024-01-15 11:00:00"}],
            ),
        ]

        positions = dhan.get_positions()
        trades = dhan.get_trades()

        assert [p.symbol for p in positions] == ["INFY"]
        assert positions[0].market_value == Decimal("6040")
        assert trades[0].symbol == "BSE:SBIN"
        assert trades[0].timestamp == datetime(2024, 1, 15, 5, 30, tzinfo=timezone.utc)

    def test_dhan_time(self):
        """Test both timestamp shapes."""
        assert dhan_time("15/01/2024 10:30:00") == dhan_time("2024-01-15 10:30:00")
