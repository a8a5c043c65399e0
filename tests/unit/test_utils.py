"""
Unit tests for utility functions.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from brokerlink.utils.helpers import (
    IST,
    expand_env,
    isoformat_z,
    load_config,
    parse_timestamp,
    to_decimal,
    to_utc,
)
from brokerlink.utils.logging_config import get_logger, log_suppressed_error

pytestmark = pytest.mark.unit


class TestToDecimal:
    """Test numeric coercion."""

    def test_float_goes_through_str(self):
        """Test that floats keep their short decimal form."""
        assert to_decimal(2749.5) == Decimal("2749.5")
        assert str(to_decimal(0.1)) == "0.1"

    def test_strings_and_ints(self):
        """Test string and int input."""
        assert to_decimal(" 12.50 ") == Decimal("12.50")
        assert to_decimal(7) == Decimal("7")

    @pytest.mark.parametrize("value", [None, "", "  ", "abc", "NaN", True])
    def test_default_for_unusable_input(self, value):
        """Test that unusable input yields the default."""
        assert to_decimal(value) is None
        assert to_decimal(value, Decimal("0")) == Decimal("0")


class TestParseTimestamp:
    """Test provider timestamp parsing."""

    def test_rfc3339_with_nanoseconds(self):
        """Test OANDA-style nanosecond timestamps."""
        parsed = parse_timestamp("2024-01-15T10:30:00.123456789Z")

        assert parsed == datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)

    def test_compact_offset(self):
        """Test '+0530' offsets."""
        parsed = parse_timestamp("2024-01-15T09:15:00+0530")

        assert parsed.utcoffset() == timedelta(hours=5, minutes=30)
        assert to_utc(parsed) == datetime(2024, 1, 15, 3, 45, tzinfo=timezone.utc)

    def test_epoch_seconds_and_millis(self):
        """Test numeric epochs."""
        expected = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        seconds = int(expected.timestamp())

        assert parse_timestamp(seconds) == expected
        assert parse_timestamp(seconds * 1000) == expected
        assert parse_timestamp(str(seconds * 1000)) == expected

    def test_naive_uses_assumed_zone(self):
        """Test that naive timestamps take the assumed zone."""
        assert parse_timestamp("2024-01-15 10:30:00").tzinfo == timezone.utc
        assert parse_timestamp("2024-01-15 10:30:00", assume_tz=IST).utcoffset() == timedelta(hours=5, minutes=30)

    def test_default_for_empty(self):
        """Test None and empty input."""
        default = datetime(2020, 1, 1, tzinfo=timezone.utc)

        assert parse_timestamp(None, default) is default
        assert parse_timestamp("", default) is default

    def test_garbage_raises(self):
        """Test that unparseable strings raise ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp("not a time")

    def test_isoformat_z(self):
        """Test RFC3339 UTC formatting."""
        value = datetime(2024, 1, 15, 16, 0, tzinfo=IST)

        assert isoformat_z(value) == "2024-01-15T10:30:00Z"


class TestConfigLoading:
    """Test configuration loading."""

    def test_load_yaml(self, temp_dir):
        """Test YAML config loading."""
        config_path = temp_dir / "brokers.yaml"
        config_path.write_text("active_broker: oanda\nbrokers:\n  oanda:\n    environment: practice\n")

        config = load_config(config_path)

        assert config["active_broker"] == "oanda"
        assert config["brokers"]["oanda"]["environment"] == "practice"

    def test_load_json(self, temp_dir):
        """Test JSON config loading."""
        config_path = temp_dir / "brokers.json"
        config_path.write_text(json.dumps({"active_broker": "alpaca"}))

        assert load_config(config_path) == {"active_broker": "alpaca"}

    def test_missing_file(self, temp_dir):
        """Test missing config file."""
        with pytest.raises(FileNotFoundError):
            load_config(temp_dir / "missing.yaml")

    def test_unsupported_format(self, temp_dir):
        """Test unsupported config suffix."""
        config_path = temp_dir / "brokers.ini"
        config_path.write_text("[x]")

        with pytest.raises(ValueError, match="Unsupported configuration format"):
            load_config(config_path)

    def test_expand_env(self, monkeypatch):
        """Test ${VAR} expansion."""
        monkeypatch.setenv("BROKERLINK_TEST_VAR", "value")

        assert expand_env("${BROKERLINK_TEST_VAR}") == "value"
        assert expand_env("plain") == "plain"
        assert expand_env("prefix-${BROKERLINK_TEST_VAR}") == "prefix-${BROKERLINK_TEST_VAR}"
        assert expand_env(42) == 42


class TestLogging:
    """Test logging helpers."""

    def test_get_logger_binds_name(self, log_records):
        """Test that the module name is bound to records."""
        get_logger("brokerlink.test").info("hello")

        assert log_records[-1]["extra"]["name"] == "brokerlink.test"
        assert log_records[-1]["message"] == "hello"

    def test_log_suppressed_error_record(self, log_records):
        """Test the structured record for absorbed failures."""
        from brokerlink.execution.exceptions import BrokerProtocolError

        log_suppressed_error("cancel_order", "Alpaca", BrokerProtocolError("Alpaca", 422, "too late"), order_id="o1")

        record = log_records[-1]
        assert record["level"].name == "WARNING"
        assert record["extra"]["operation"] == "cancel_order"
        assert record["extra"]["broker"] == "Alpaca"
        assert record["extra"]["error_type"] == "BrokerProtocolError"
        assert record["extra"]["status_code"] == 422
        assert record["extra"]["order_id"] == "o1"
        assert "too late" in record["extra"]["error"]
