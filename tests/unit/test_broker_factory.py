"""
Unit tests for BrokerFactory and the adapter registry.
"""

import pytest

from brokerlink.execution.alpaca_broker import AlpacaBroker
from brokerlink.execution.broker_factory import BrokerFactory
from brokerlink.execution.connection import BrokerConnection
from brokerlink.execution.dhan_broker import DhanBroker
from brokerlink.execution.exceptions import ConfigurationError
from brokerlink.execution.ib_broker import InteractiveBrokersBroker
from brokerlink.execution.kite_broker import KiteBroker
from brokerlink.execution.oanda_broker import OandaBroker
from brokerlink.execution.registry import BROKER_REGISTRY, register_broker
from brokerlink.execution.td_ameritrade_broker import TDAmeritradeBroker
from brokerlink.execution.upstox_broker import UpstoxBroker

pytestmark = pytest.mark.unit


class TestBrokerFactory:
    """Test broker factory."""

    @pytest.mark.parametrize(
        "broker, expected",
        [
            ("alpaca", AlpacaBroker),
            ("Alpaca", AlpacaBroker),
            ("TD Ameritrade", TDAmeritradeBroker),
            ("Interactive Brokers", InteractiveBrokersBroker),
            ("OANDA", OandaBroker),
            ("zerodha", KiteBroker),
            ("kite", KiteBroker),
            ("upstox", UpstoxBroker),
            ("dhan", DhanBroker),
        ],
    )
    def test_resolve_dispatches_on_normalized_id(self, broker, expected, fake_session):
        """Test identifier normalization and dispatch."""
        connection = BrokerConnection(
            broker=broker, api_key="k", api_secret="s", api_token="t", account_id="ACC1"
        )

        adapter = BrokerFactory.resolve(connection, session=fake_session)

        assert isinstance(adapter, expected)

    def test_paper_trading_alias(self, fake_session):
        """Test the alias resolves to Alpaca on the paper host."""
        connection = BrokerConnection(broker="paper_trading", api_key="k", api_secret="s")

        adapter = BrokerFactory.resolve(connection, session=fake_session)

        assert isinstance(adapter, AlpacaBroker)
        assert adapter.base_url == "https://paper-api.alpaca.markets"
        assert adapter.connection.environment == "paper"
        # Caller's connection is untouched
        assert connection.broker == "paper_trading"
        assert connection.environment == "live"

    def test_simulated_environment_overrides_base_url(self, fake_session):
        """Test that paper routing beats an explicit live base_url."""
        adapter = BrokerFactory.create(
            "alpaca",
            session=fake_session,
            api_key="k",
            api_secret="s",
            base_url="https://api.alpaca.markets",
            environment="paper",
        )

        assert adapter.base_url == "https://paper-api.alpaca.markets"

    def test_unknown_broker(self):
        """Test unsupported broker error names the identifier."""
        with pytest.raises(ConfigurationError, match="Unsupported broker: robinhood") as exc_info:
            BrokerFactory.create("robinhood")

        assert "alpaca" in str(exc_info.value)

    def test_session_is_shared(self, fake_session, response_factory):
        """Test the injected session carries the adapter's requests."""
        fake_session.request.return_value = response_factory(200, {"id": "acc", "portfolio_value": "1"})
        adapter = BrokerFactory.create("alpaca", session=fake_session, api_key="k", api_secret="s")

        adapter.get_account_info()

        fake_session.request.assert_called_once()

    def test_supported_brokers(self):
        """Test registry listing includes aliases."""
        supported = BrokerFactory.supported_brokers()

        for broker_id in ("alpaca", "td_ameritrade", "interactive_brokers", "oanda", "zerodha", "kite",
                          "upstox", "dhan", "paper_trading"):
            assert broker_id in supported

    def test_list_available_brokers(self):
        """Test capability listing."""
        brokers = BrokerFactory.list_available_brokers()

        assert brokers["oanda"]["supports_simulated"] is True
        assert brokers["oanda"]["simulated_environment"] == "practice"
        assert brokers["td_ameritrade"]["supports_simulated"] is False
        assert brokers["dhan"]["adapter"] == "DhanBroker"
        assert brokers["paper_trading"]["supports_live"] is False
        assert brokers["paper_trading"]["adapter"] == "AlpacaBroker"


class TestFromConfig:
    """Test configuration-driven creation."""

    CONFIG = """
active_broker: oanda
brokers:
  oanda:
    api_token: ${BROKERLINK_TEST_OANDA_TOKEN}
    account_id: 101-001-1-001
    environment: practice
    timeout: 10
  zerodha:
    api_key: kite_key
    product: MIS
  paper_trading:
    api_secret: from_file
"""

    @pytest.fixture
    def config_path(self, temp_dir):
        path = temp_dir / "broker_config.yaml"
        path.write_text(self.CONFIG)
        return path

    def test_active_broker(self, config_path, fake_session, monkeypatch):
        """Test active entry with env expansion and metadata."""
        monkeypatch.setenv("BROKERLINK_TEST_OANDA_TOKEN", "oanda-token")

        adapter = BrokerFactory.from_config(config_path, session=fake_session)

        assert isinstance(adapter, OandaBroker)
        assert adapter.base_url == "https://api-fxpractice.oanda.com/v3"
        assert adapter.tokens.token == "oanda-token"
        assert adapter.connection.metadata == {"timeout": 10}
        assert adapter.transport.timeout == 10.0

    def test_named_entry_metadata(self, config_path, fake_session):
        """Test non-connection keys become metadata."""
        adapter = BrokerFactory.from_config(config_path, name="zerodha", session=fake_session)

        assert isinstance(adapter, KiteBroker)
        assert adapter.product == "MIS"
        assert adapter.connection.api_key == "kite_key"

    def test_env_var_fallback(self, config_path, monkeypatch):
        """Test <BROKER>_<FIELD> fallback, using the alias target's prefix."""
        monkeypatch.setenv("ALPACA_API_KEY", "env-key")
        monkeypatch.setenv("ALPACA_API_SECRET", "env-secret")

        connection = BrokerFactory.connection_from_config(config_path, "paper_trading")

        assert connection.broker == "paper_trading"
        assert connection.api_key == "env-key"
        assert connection.api_secret == "from_file"

    def test_missing_entry(self, config_path):
        """Test unknown configuration entry."""
        with pytest.raises(ConfigurationError, match="No configuration for broker 'upstox'"):
            BrokerFactory.connection_from_config(config_path, "upstox")

    def test_missing_file(self, temp_dir):
        """Test missing configuration file."""
        with pytest.raises(FileNotFoundError):
            BrokerFactory.from_config(temp_dir / "missing.yaml")


class TestRegistry:
    """Test adapter registration."""

    def test_duplicate_id_rejected(self):
        """Test that an id cannot be taken by a second adapter."""

        class OtherAdapter(AlpacaBroker):
            pass

        with pytest.raises(ValueError, match="already registered: alpaca"):
            register_broker("alpaca")(OtherAdapter)

        assert BROKER_REGISTRY["alpaca"].adapter is AlpacaBroker

    def test_new_adapter_is_resolvable(self, fake_session):
        """Test adding a provider is one registered class."""

        @register_broker("test_alpaca_clone", description="test only")
        class CloneAdapter(AlpacaBroker):
            pass

        try:
            adapter = BrokerFactory.create("test_alpaca_clone", session=fake_session, api_key="k", api_secret="s")
            assert isinstance(adapter, CloneAdapter)
        finally:
            BROKER_REGISTRY.pop("test_alpaca_clone", None)
