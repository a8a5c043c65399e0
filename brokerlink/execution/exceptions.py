"""
Exception hierarchy for the broker integration layer.

Every failure an adapter raises is a BrokerError subclass, so callers can
catch the whole family or a single kind:

    BrokerError
    ├── ConfigurationError
    ├── ValidationError
    ├── TransientNetworkError
    └── BrokerProtocolError
        ├── AuthenticationError
        └── OrderNotFoundError
"""

from typing import Optional


class BrokerError(Exception):
    """Base class for all broker layer errors."""


class ConfigurationError(BrokerError):
    """Unknown broker identifier or unusable connection settings."""


class ValidationError(BrokerError, ValueError):
    """Canonical input the adapter cannot translate; raised before any request."""


class TransientNetworkError(BrokerError):
    """Connection-level failure (DNS, timeout, reset)."""

    def __init__(self, broker: str, message: str):
        self.broker = broker
        super().__init__(f"{broker} network error: {message}")


class BrokerProtocolError(BrokerError):
    """
    Provider answered with an error.

    Raised for non-2xx HTTP statuses and for 2xx responses whose envelope
    reports a non-success status.

    Attributes:
        broker: Provider name
        status_code: HTTP status code
        body: Raw response body (or envelope message)
    """

    def __init__(self, broker: str, status_code: Optional[int], body: str = ""):
        self.broker = broker
        self.status_code = status_code
        self.body = body
        super().__init__(f"{broker} API error ({status_code}): {body}")


class AuthenticationError(BrokerProtocolError):
    """Credentials rejected and no refresh path left."""


class OrderNotFoundError(BrokerProtocolError):
    """The provider's order book has no order with the requested id."""

    def __init__(self, broker: str, order_id: str):
        self.order_id = order_id
        super().__init__(broker, 404, f"Order {order_id} not found")
