"""
Integration tests for broker execution flow.

Tests end-to-end workflows through the factory: configuration to adapter,
order placement, lookup and cancellation, quotes and token refresh, with
recorded provider payloads replayed through a mocked requests.Session.
"""

from decimal import Decimal

import pytest

from brokerlink.execution import (
    BrokerConnection,
    BrokerFactory,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
)
from brokerlink.execution.exceptions import AuthenticationError, BrokerError

pytestmark = pytest.mark.integration


def success(data):
    return {"status": "success", "data": data}


class TestPaperTradingFlow:
    """Test complete Alpaca paper trading workflow."""

    def test_full_trading_cycle(self, fake_session, response_factory, recorded_call):
        """Test place -> lookup -> cancel on the paper host."""
        broker = BrokerFactory.create("paper_trading", session=fake_session, api_key="k", api_secret="s")
        assert broker.base_url == "https://paper-api.alpaca.markets"

        order_record = {
            "id": "61e69015-8549-4bfd-b9c3-01e75843f47d",
            "symbol": "AAPL",
            "side": "buy",
            "type": "limit",
            "qty": "10",
            "limit_price": "150",
            "time_in_force": "day",
            "status": "new",
        }
        fake_session.request.side_effect = [
            response_factory(200, order_record),
            response_factory(200, dict(order_record, status="partially_filled", filled_qty="4")),
            response_factory(204),
            response_factory(200, dict(order_record, status="canceled", filled_qty="4")),
        ]

        placed = broker.place_order(
            Order(symbol="AAPL", side=OrderSide.BUY, type=OrderType.LIMIT, quantity=10, price=150)
        )
        assert placed.status == OrderStatus.SUBMITTED

        working = broker.get_order(placed.id)
        assert working.status == OrderStatus.SUBMITTED
        assert working.filled_quantity == Decimal("4")

        assert broker.cancel_order(placed.id) is True
        assert recorded_call(fake_session)[0] == "DELETE"

        cancelled = broker.get_order(placed.id)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.raw_status == "canceled"

        for _, url, _ in (recorded_call(fake_session, i) for i in range(4)):
            assert url.startswith("https://paper-api.alpaca.markets/v2/orders")


class TestIndianMarketFlow:
    """Test Indian broker flows."""

    def test_upstox_quote_keeps_requested_symbol(self, fake_session, response_factory, recorded_call):
        """Test segment notation in, canonical symbol out."""
        fake_session.request.return_value = response_factory(
            200,
            success(
                {
                    "NSE_EQ:RELIANCE": {
                        "last_price": 2749.75,
                        "timestamp": "2024-01-15T10:30:00.000+05:30",
                        "depth": {
                            "buy": [{"quantity": 120, "price": 2749.50, "orders": 3}],
                            "sell": [{"quantity": 80, "price": 2750.00, "orders": 2}],
                        },
                    }
                }
            ),
        )
        broker = BrokerFactory.create("upstox", session=fake_session, api_token="tok")

        quote = broker.get_quote("RELIANCE")

        assert recorded_call(fake_session)[2]["params"] == {"instrument_key": "NSE_EQ:RELIANCE"}
        assert quote.symbol == "RELIANCE"
        assert quote.bid == Decimal("2749.50")
        assert quote.ask == Decimal("2750.00")
        assert quote.bid_size == Decimal("120")

    def test_dhan_sandbox_order_flow(self, fake_session, response_factory):
        """Test place -> open orders -> cancel on the Dhan sandbox."""
        broker = BrokerFactory.create(
            "dhan", session=fake_session, api_key="1000000001", api_token="tok", environment="paper"
        )
        fake_session.request.side_effect = [
            response_factory(200, {"orderId": "52209001", "orderStatus": "TRANSIT"}),
            response_factory(
                200,
                [
                    {"orderId": "52209001", "orderStatus": "PENDING", "transactionType": "BUY",
                     "exchangeSegment": "NSE_EQ", "tradingSymbol": "INFY", "securityId": "1594",
                     "orderType": "LIMIT", "quantity": 1, "price": 1500, "validity": "DAY"},
                    {"orderId": "52209000", "orderStatus": "TRADED", "transactionType": "BUY",
                     "exchangeSegment": "NSE_EQ", "tradingSymbol": "TCS", "securityId": "11536",
                     "orderType": "MARKET", "quantity": 1, "validity": "DAY"},
                ],
            ),
            response_factory(200, {"orderId": "52209001", "orderStatus": "CANCELLED"}),
        ]

        placed = broker.place_order(
            Order(symbol="INFY", side=OrderSide.BUY, type=OrderType.LIMIT, quantity=1, price=1500)
        )
        open_orders = broker.get_open_orders()

        assert placed.status == OrderStatus.PENDING
        assert [o.id for o in open_orders] == ["52209001"]
        assert open_orders[0].price == Decimal("1500")
        assert broker.cancel_order(placed.id) is True


class TestForexFlow:
    """Test OANDA flows."""

    def test_market_order_without_time_in_force(self, fake_session, response_factory, recorded_call):
        """Test a market order with no explicit TIF expires at end of day."""
        fake_session.request.return_value = response_factory(
            201, {"orderCreateTransaction": {"id": "101"}, "orderFillTransaction": {"id": "102"}}
        )
        broker = BrokerFactory.resolve(
            BrokerConnection(broker="OANDA", api_token="tok", account_id="101-001-1-001", environment="practice"),
            session=fake_session,
        )

        placed = broker.place_order(
            Order(symbol="EURUSD", side=OrderSide.BUY, type=OrderType.MARKET, quantity=10000, time_in_force=None)
        )

        body = recorded_call(fake_session)[2]["json"]["order"]
        assert body["timeInForce"] == "GTD"
        assert "gtdTime" in body
        assert body["units"] == "10000"
        assert placed.status == OrderStatus.FILLED


class TestAuthenticationFlow:
    """Test token refresh through the factory."""

    def test_td_refresh_then_failure(self, fake_session, response_factory):
        """Test one refresh per rejected request and a final failure."""
        broker = BrokerFactory.create(
            "TD Ameritrade",
            session=fake_session,
            api_key="client",
            api_token="expired",
            account_id="123",
            metadata={"refresh_token": "r1"},
        )
        fake_session.request.side_effect = [
            response_factory(401, text="expired"),
            response_factory(200, {"access_token": "fresh"}),
            response_factory(401, text="revoked"),
        ]

        assert broker.test_connection() is False
        assert fake_session.request.call_count == 3
        assert broker.tokens.token == "fresh"

        fake_session.request.side_effect = [response_factory(403, text="forbidden")]
        with pytest.raises(AuthenticationError):
            broker.get_account_info()

    def test_errors_share_one_base_class(self, fake_session, response_factory):
        """Test callers can catch every adapter failure as BrokerError."""
        broker = BrokerFactory.create("alpaca", session=fake_session, api_key="k", api_secret="s")
        fake_session.request.return_value = response_factory(500, text="internal")

        with pytest.raises(BrokerError):
            broker.get_positions()
