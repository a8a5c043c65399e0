"""
Finite vocabulary maps between canonical enums and provider tokens.

Each adapter declares small tables (order type, time-in-force, status,
timeframe) and wraps them in translators. Lookups are total: a value the
table does not name resolves to the translator's fallback.

Classes:
    EnumTranslator: Bidirectional canonical <-> token map with fallbacks
    StatusMap: Closed, case-insensitive provider status -> OrderStatus lookup
    TimeframeMap: Canonical bar size -> provider granularity

Example:
    >>> order_types = EnumTranslator(
    ...     {OrderType.MARKET: "MKT", OrderType.LIMIT: "LMT"},
    ...     fallback=OrderType.MARKET,
    ... )
    >>> order_types.to_wire(OrderType.LIMIT)
    'LMT'
    >>> order_types.from_wire("TRAIL")
    <OrderType.MARKET: 'market'>
"""

from enum import Enum
from typing import Dict, Generic, Iterable, Mapping, Optional, TypeVar

from brokerlink.execution.broker_interface import OrderStatus, OrderType, TimeInForce

E = TypeVar("E", bound=Enum)


class EnumTranslator(Generic[E]):
    """
    Bidirectional map between a canonical enum and provider tokens.

    Attributes:
        forward: canonical member -> provider token
        reverse: provider token (upper-cased) -> canonical member
        fallback: canonical member used for unknown tokens and for
            canonical members the provider has no token for
    """

    def __init__(
        self,
        forward: Mapping[E, str],
        fallback: E,
        reverse: Optional[Mapping[str, E]] = None,
    ):
        if fallback not in forward:
            raise ValueError(f"Fallback {fallback} must have a provider token")

        self.forward: Dict[E, str] = dict(forward)
        self.fallback = fallback

        if reverse is None:
            # First canonical member wins when several share a token
            reverse = {}
            for member, token in forward.items():
                reverse.setdefault(token, member)
        self.reverse: Dict[str, E] = {token.upper(): member for token, member in reverse.items()}

    def to_wire(self, value: Optional[E]) -> str:
        """Provider token for a canonical value (fallback token when unmapped)."""
        if value is None or value not in self.forward:
            return self.forward[self.fallback]
        return self.forward[value]

    def from_wire(self, token: Optional[str]) -> E:
        """Canonical value for a provider token (fallback when unmapped)."""
        if token is None:
            return self.fallback
        return self.reverse.get(str(token).strip().upper(), self.fallback)

    def supports(self, value: E) -> bool:
        """True when the provider has its own token for the value."""
        return value in self.forward


class StatusMap:
    """
    Closed, provider-specific status lookup.

    Matching is exact and case-insensitive; any status not listed maps to
    ``OrderStatus.PENDING``.
    """

    def __init__(self, table: Mapping[str, OrderStatus], default: OrderStatus = OrderStatus.PENDING):
        self.table = {key.upper(): value for key, value in table.items()}
        self.default = default

    def __call__(self, raw_status: Optional[str]) -> OrderStatus:
        if raw_status is None:
            return self.default
        return self.table.get(str(raw_status).strip().upper(), self.default)

    def statuses(self, *buckets: OrderStatus) -> Iterable[str]:
        """Provider statuses (upper-cased) that fall in the given buckets."""
        return [raw for raw, bucket in self.table.items() if bucket in buckets]


class TimeframeMap:
    """Canonical bar size -> provider granularity, defaulting to daily."""

    def __init__(self, table: Mapping[str, str], daily: str):
        self.table = dict(table)
        self.daily = daily

    def __call__(self, timeframe: Optional[str]) -> str:
        if not timeframe:
            return self.daily
        timeframe = timeframe.strip()
        if timeframe in self.table:
            return self.table[timeframe]
        # 1M (month) must not collapse into 1m (minute)
        if timeframe == "1M":
            return self.daily
        return self.table.get(timeframe.lower(), self.daily)


def order_type_translator(forward: Mapping[OrderType, str], reverse: Optional[Mapping[str, OrderType]] = None) -> EnumTranslator:
    """Order type translator with the market fallback."""
    return EnumTranslator(forward, fallback=OrderType.MARKET, reverse=reverse)


def time_in_force_translator(forward: Mapping[TimeInForce, str], reverse: Optional[Mapping[str, TimeInForce]] = None) -> EnumTranslator:
    """Time-in-force translator with the day fallback."""
    return EnumTranslator(forward, fallback=TimeInForce.DAY, reverse=reverse)
