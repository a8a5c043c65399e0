"""
Broker adapter registry.

Adapters register themselves with ``@register_broker``; the factory
dispatches on the registered identifier. Adding a provider means writing
one adapter class and registering it.

Example:
    >>> @register_broker("alpaca", description="Alpaca US equities", simulated="paper")
    ... class AlpacaBroker(RestBroker):
    ...     ...
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

from brokerlink.execution.broker_interface import BrokerInterface


@dataclass(frozen=True)
class BrokerRegistration:
    """One registry entry."""

    broker_id: str
    adapter: Type[BrokerInterface]
    description: str = ""
    simulated: Optional[str] = None


BROKER_REGISTRY: Dict[str, BrokerRegistration] = {}


def register_broker(
    broker_id: str,
    description: str = "",
    simulated: Optional[str] = None,
) -> Callable[[Type[BrokerInterface]], Type[BrokerInterface]]:
    """
    Class decorator registering an adapter under ``broker_id``.

    Args:
        broker_id: Normalized identifier (lower-case, '_' for spaces)
        description: Human readable description
        simulated: Name of the simulated environment the adapter supports
            ('paper', 'sandbox', ...), None when live only

    Returns:
        The decorator
    """

    def decorator(adapter: Type[BrokerInterface]) -> Type[BrokerInterface]:
        if broker_id in BROKER_REGISTRY and BROKER_REGISTRY[broker_id].adapter is not adapter:
            raise ValueError(f"Broker id already registered: {broker_id}")
        BROKER_REGISTRY[broker_id] = BrokerRegistration(broker_id, adapter, description, simulated)
        return adapter

    return decorator


def get_registration(broker_id: str) -> Optional[BrokerRegistration]:
    return BROKER_REGISTRY.get(broker_id)
