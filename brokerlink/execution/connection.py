"""
Broker connection settings.

A BrokerConnection is the credential bundle a caller hands to the factory.
It is frozen: adapters read it at construction time and never modify it.
"""

import re
from typing import Any, Dict, Optional

from pydantic import ConfigDict, Field, field_validator

from brokerlink.utils.helpers import ConfigModel, expand_env

ENVIRONMENTS = ("live", "paper", "practice")


class BrokerConnection(ConfigModel):
    """
    Credentials and environment selector for one brokerage account.

    Attributes:
        broker: Broker identifier ('alpaca', 'Interactive Brokers', ...)
        api_key: API key / client id
        api_secret: API secret
        api_token: Access token (bearer or session token)
        account_id: Provider account id
        base_url: Host override (ignored when the environment forces a host)
        environment: 'live', 'paper' or 'practice'
        metadata: Provider-specific extras (refresh_token, timeout, ...)
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    broker: str
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    api_secret: Optional[str] = Field(default=None, alias="apiSecret")
    api_token: Optional[str] = Field(default=None, alias="apiToken")
    account_id: Optional[str] = Field(default=None, alias="accountId")
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    environment: str = "live"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("api_key", "api_secret", "api_token", "account_id", "base_url", mode="before")
    @classmethod
    def _expand_env_references(cls, value: Any) -> Any:
        """Resolve ``${VAR}`` references; blank values become None."""
        value = expand_env(value)
        if isinstance(value, str) and not value.strip():
            return None
        if value is not None and not isinstance(value, str):
            value = str(value)
        return value

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: Any) -> str:
        value = (value or "live").strip().lower()
        if value not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {ENVIRONMENTS}, got {value!r}")
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Dict[str, Any]:
        return dict(value or {})

    @property
    def broker_id(self) -> str:
        """Normalized identifier: lower-case with whitespace replaced by '_'."""
        return re.sub(r"\s", "_", self.broker.lower())

    @property
    def is_simulated(self) -> bool:
        """True for paper and practice environments."""
        return self.environment in ("paper", "practice")

    @property
    def refresh_token(self) -> Optional[str]:
        return expand_env(self.metadata.get("refresh_token") or self.metadata.get("refreshToken"))

    @property
    def timeout(self) -> Optional[float]:
        timeout = self.metadata.get("timeout")
        return float(timeout) if timeout is not None else None

    def with_updates(self, **changes: Any) -> "BrokerConnection":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)
