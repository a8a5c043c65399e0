"""
Broker factory for easy broker switching.

This module provides a factory pattern for creating broker adapters. Every
adapter registers itself under an identifier; the factory normalizes the
identifier on a BrokerConnection and dispatches to the registered class.
Switching brokers is a one-line change in the configuration.

Classes:
    BrokerFactory: Factory for creating broker instances

Example:
    >>> from brokerlink.execution.broker_factory import BrokerFactory
    >>>
    >>> # Alpaca paper trading
    >>> broker = BrokerFactory.create("paper_trading", api_key="...", api_secret="...")
    >>>
    >>> # Explicit connection
    >>> broker = BrokerFactory.resolve(BrokerConnection(broker="Interactive Brokers", account_id="DU123"))
    >>>
    >>> # From configuration file
    >>> broker = BrokerFactory.from_config()
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests

# Adapter modules register themselves on import
from brokerlink.execution import (  # noqa: F401
    alpaca_broker,
    dhan_broker,
    ib_broker,
    kite_broker,
    oanda_broker,
    td_ameritrade_broker,
    upstox_broker,
)
from brokerlink.execution.broker_interface import BrokerInterface
from brokerlink.execution.connection import BrokerConnection
from brokerlink.execution.exceptions import ConfigurationError
from brokerlink.execution.registry import BROKER_REGISTRY, get_registration
from brokerlink.utils.helpers import expand_env, load_config
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/broker_config.yaml"

# Alias -> (registered broker id, forced environment)
ALIASES = {
    "paper_trading": ("alpaca", "paper"),
}

# Config keys that map onto BrokerConnection fields; the rest go to metadata
CONNECTION_FIELDS = ("api_key", "api_secret", "api_token", "account_id", "base_url")


class BrokerFactory:
    """
    Factory for creating broker instances.

    Simplifies broker instantiation and switching. Supports creating
    brokers from configuration files, explicit connections or keyword
    parameters.
    """

    @staticmethod
    def resolve(connection: BrokerConnection, session: Optional[requests.Session] = None) -> BrokerInterface:
        """
        Create the adapter for a connection.

        Args:
            connection: Credentials and environment selector
            session: Optional requests.Session shared by the adapter

        Returns:
            BrokerInterface implementation

        Raises:
            ConfigurationError: If the broker is not supported
        """
        broker_id = connection.broker_id

        if broker_id in ALIASES:
            target, environment = ALIASES[broker_id]
            logger.info(f"Resolving alias {broker_id} -> {target} ({environment})")
            connection = connection.with_updates(broker=target, environment=environment)
            broker_id = target

        registration = get_registration(broker_id)
        if registration is None:
            supported = ", ".join(BrokerFactory.supported_brokers())
            raise ConfigurationError(f"Unsupported broker: {connection.broker}. Supported: {supported}")

        logger.info(f"Creating broker: {broker_id} ({connection.environment})")
        return registration.adapter(connection, session=session)

    @staticmethod
    def create(broker: str, session: Optional[requests.Session] = None, **kwargs: Any) -> BrokerInterface:
        """
        Create broker instance from keyword parameters.

        Args:
            broker: Broker identifier ('alpaca', 'oanda', 'paper_trading', ...)
            session: Optional requests.Session
            **kwargs: BrokerConnection fields (api_key, environment, metadata, ...)

        Returns:
            BrokerInterface implementation
        """
        return BrokerFactory.resolve(BrokerConnection(broker=broker, **kwargs), session=session)

    @staticmethod
    def from_config(
        config_path: Optional[Union[str, Path]] = None,
        name: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> BrokerInterface:
        """
        Create broker from configuration file.

        Args:
            config_path: Path to broker configuration
                        (default: config/broker_config.yaml)
            name: Entry of the ``brokers:`` table to use
                  (default: ``active_broker``)
            session: Optional requests.Session

        Returns:
            Configured broker instance

        Example:
            >>> broker = BrokerFactory.from_config()
            >>> # Uses active_broker from config/broker_config.yaml
        """
        connection = BrokerFactory.connection_from_config(config_path, name)
        return BrokerFactory.resolve(connection, session=session)

    @staticmethod
    def connection_from_config(
        config_path: Optional[Union[str, Path]] = None,
        name: Optional[str] = None,
    ) -> BrokerConnection:
        """
        Build a BrokerConnection from one entry of a configuration file.

        Credentials written as ``${VAR}`` are expanded from the environment.
        Missing credentials fall back to ``<BROKER>_<FIELD>`` environment
        variables (``ALPACA_API_KEY``, ``DHAN_API_TOKEN``, ...).

        Raises:
            ConfigurationError: If the entry does not exist
        """
        config = load_config(config_path or DEFAULT_CONFIG_PATH)

        name = (name or config.get("active_broker") or "paper_trading").strip()
        brokers = config.get("brokers") or {}
        if name not in brokers and name.lower() not in brokers:
            if name.lower() not in ALIASES:
                raise ConfigurationError(f"No configuration for broker '{name}' in {config_path or DEFAULT_CONFIG_PATH}")
        settings: Dict[str, Any] = dict(brokers.get(name) or brokers.get(name.lower()) or {})

        broker = settings.pop("broker", name)
        metadata = dict(settings.pop("metadata", None) or {})
        fields: Dict[str, Any] = {"broker": broker, "environment": settings.pop("environment", "live")}

        env_prefix = BrokerFactory._env_prefix(broker)
        for field in CONNECTION_FIELDS:
            value = expand_env(settings.pop(field, None))
            if not value:
                value = os.getenv(f"{env_prefix}_{field.upper()}")
            fields[field] = value

        # Anything else (refresh_token, timeout, product, ...) is provider metadata
        metadata.update(settings)

        logger.info(f"Creating broker from config: {name}")
        return BrokerConnection(metadata=metadata, **fields)

    @staticmethod
    def supported_brokers():
        """Registered identifiers and aliases, sorted."""
        return sorted(set(BROKER_REGISTRY) | set(ALIASES))

    @staticmethod
    def list_available_brokers() -> Dict[str, Dict[str, Any]]:
        """
        List all available brokers and their capabilities.

        Returns:
            Dictionary with broker information

        Example:
            >>> brokers = BrokerFactory.list_available_brokers()
            >>> brokers["oanda"]["supports_simulated"]
            True
        """
        brokers: Dict[str, Dict[str, Any]] = {}
        for broker_id, registration in sorted(BROKER_REGISTRY.items()):
            brokers[broker_id] = {
                "adapter": registration.adapter.__name__,
                "supports_live": True,
                "supports_simulated": registration.simulated is not None,
                "simulated_environment": registration.simulated,
                "description": registration.description,
            }

        for alias, (target, environment) in ALIASES.items():
            brokers[alias] = {
                "adapter": BROKER_REGISTRY[target].adapter.__name__,
                "supports_live": False,
                "supports_simulated": True,
                "simulated_environment": environment,
                "description": f"Alias of {target} ({environment} trading)",
            }

        return brokers

    @staticmethod
    def _env_prefix(broker: str) -> str:
        broker_id = broker.strip().lower().replace(" ", "_")
        target = ALIASES.get(broker_id, (broker_id, None))[0]
        return target.upper()
