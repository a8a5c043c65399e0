"""
Unit tests for the command-line interface.
"""

from unittest.mock import patch

import pytest

from brokerlink import cli
from brokerlink.execution.alpaca_broker import AlpacaBroker
from brokerlink.execution.connection import BrokerConnection

pytestmark = pytest.mark.unit


def test_list_command(capsys):
    """Test broker listing."""
    cli.main(["list"])

    output = capsys.readouterr().out
    assert "AVAILABLE BROKERS" in output
    assert "paper_trading" in output
    assert "DhanBroker" in output


def test_no_command_exits(capsys):
    """Test help and exit without a command."""
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])

    assert exc_info.value.code == 1


def test_missing_config_exits(temp_dir):
    """Test a missing config file fails cleanly."""
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--config", str(temp_dir / "missing.yaml"), "check"])

    assert exc_info.value.code == 1


def test_check_broker(fake_session, response_factory, capsys):
    """Test connection check output."""
    fake_session.request.return_value = response_factory(
        200, {"id": "acc-1", "account_number": "PA1", "portfolio_value": "1000", "buying_power": "2000"}
    )
    broker = AlpacaBroker(BrokerConnection(broker="alpaca", api_key="k", api_secret="s"), session=fake_session)

    with patch.object(cli.BrokerFactory, "from_config", return_value=broker):
        assert cli.check_broker("ignored.yaml", "alpaca") is True

    output = capsys.readouterr().out
    assert "Connection OK" in output
    assert "acc-1" in output


def test_check_broker_failure(fake_session, response_factory, capsys):
    """Test failed connection check."""
    fake_session.request.return_value = response_factory(401, text="bad key")
    broker = AlpacaBroker(BrokerConnection(broker="alpaca", api_key="k", api_secret="s"), session=fake_session)

    with patch.object(cli.BrokerFactory, "from_config", return_value=broker):
        assert cli.check_broker() is False

    assert "FAILED" in capsys.readouterr().out


def test_quote_command(fake_session, response_factory, capsys):
    """Test quote output through main."""
    fake_session.request.return_value = response_factory(
        200,
        {"symbol": "AAPL", "quote": {"t": "2024-01-15T15:30:00Z", "bp": 189.9, "ap": 190.1, "bs": 3, "as": 5}},
    )
    broker = AlpacaBroker(BrokerConnection(broker="alpaca", api_key="k", api_secret="s"), session=fake_session)

    with patch.object(cli.BrokerFactory, "from_config", return_value=broker):
        cli.main(["quote", "AAPL"])

    output = capsys.readouterr().out
    assert "AAPL" in output
    assert "bid 189.9" in output
    assert "ask 190.1" in output
