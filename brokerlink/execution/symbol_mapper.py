"""
Symbol notation translators.

Callers use one canonical symbol notation; every provider expects its own
on the wire. Each adapter owns one translator from this module.

Canonical notation:
    - bare ticker for the default exchange: "RELIANCE", "AAPL"
    - "EXCHANGE:TICKER" for any other exchange: "BSE:SBIN"
    - six-letter currency pairs without separator: "EURUSD"

Classes:
    SymbolTranslator: Base class (to_wire / from_wire)
    PassThroughSymbols: Identity mapping
    ConidSymbols: Numeric contract ids, validated
    ExchangePrefixSymbols: "RELIANCE" <-> "NSE:RELIANCE"
    ExchangeSegmentSymbols: "RELIANCE" <-> "NSE_EQ:RELIANCE"
    CurrencyPairSymbols: "EURUSD" <-> "EUR_USD"
    SecurityIdMapper: Ticker <-> numeric security id (DhanHQ)

Example:
    >>> symbols = ExchangeSegmentSymbols()
    >>> symbols.to_wire("RELIANCE")
    'NSE_EQ:RELIANCE'
    >>> symbols.from_wire("BSE_EQ:SBIN")
    'BSE:SBIN'
"""

import csv
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple, Union

from brokerlink.execution.exceptions import ValidationError
from brokerlink.utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_EXCHANGE = "NSE"
EQUITY_SEGMENTS = {"NSE": "NSE_EQ", "BSE": "BSE_EQ"}


def split_exchange(symbol: str, default_exchange: str = DEFAULT_EXCHANGE) -> Tuple[str, str]:
    """
    Split a canonical symbol into (exchange, ticker).

    Args:
        symbol: "TICKER" or "EXCHANGE:TICKER"
        default_exchange: Exchange assumed for bare tickers

    Returns:
        Tuple of (exchange, ticker)
    """
    if ":" in symbol:
        exchange, ticker = symbol.split(":", 1)
        return exchange.strip().upper(), ticker.strip()
    return default_exchange, symbol.strip()


class SymbolTranslator:
    """Identity translator; subclasses override both directions."""

    def to_wire(self, symbol: str) -> str:
        return symbol

    def from_wire(self, wire_symbol: str) -> str:
        return wire_symbol

    def canonical(self, symbol: str) -> str:
        """Normal form of a caller-supplied symbol."""
        return self.from_wire(self.to_wire(symbol))


class PassThroughSymbols(SymbolTranslator):
    """Providers with no special notation."""


class ConidSymbols(SymbolTranslator):
    """
    Numeric contract ids (Interactive Brokers).

    The canonical symbol is the conid itself; tickers cannot be resolved
    without a contract search and are rejected.
    """

    def to_wire(self, symbol: str) -> str:
        conid = symbol.strip()
        if not conid.isdigit():
            raise ValidationError(f"Interactive Brokers symbols must be numeric conids, got {symbol!r}")
        return conid


class ExchangePrefixSymbols(SymbolTranslator):
    """
    "EXCHANGE:TICKER" notation with a default exchange (Kite Connect).

    Bare tickers gain the default exchange prefix on the wire; the reverse
    direction drops it again so bare input round-trips.
    """

    def __init__(self, default_exchange: str = DEFAULT_EXCHANGE):
        self.default_exchange = default_exchange

    def to_wire(self, symbol: str) -> str:
        exchange, ticker = split_exchange(symbol, self.default_exchange)
        return f"{exchange}:{ticker}"

    def from_wire(self, wire_symbol: str) -> str:
        exchange, ticker = split_exchange(wire_symbol, self.default_exchange)
        if exchange == self.default_exchange:
            return ticker
        return f"{exchange}:{ticker}"

    def join(self, exchange: Optional[str], ticker: str) -> str:
        """Canonical symbol for an exchange/ticker pair from a response."""
        return self.from_wire(f"{(exchange or self.default_exchange).upper()}:{ticker}")


class ExchangeSegmentSymbols(SymbolTranslator):
    """
    "SEGMENT:TICKER" notation (Upstox, DhanHQ).

    "RELIANCE" becomes "NSE_EQ:RELIANCE" and "BSE:SBIN" becomes
    "BSE_EQ:SBIN". Exchanges without a known segment pass through.
    """

    def __init__(
        self,
        segments: Optional[Mapping[str, str]] = None,
        default_exchange: str = DEFAULT_EXCHANGE,
    ):
        self.segments: Dict[str, str] = dict(segments or EQUITY_SEGMENTS)
        self.exchanges: Dict[str, str] = {seg: exch for exch, seg in self.segments.items()}
        self.default_exchange = default_exchange

    def segment_for(self, exchange: str) -> str:
        """Segment name for an exchange ('NSE' -> 'NSE_EQ')."""
        return self.segments.get(exchange.upper(), exchange.upper())

    def to_wire(self, symbol: str) -> str:
        if ":" not in symbol:
            return f"{self.segments[self.default_exchange]}:{symbol.strip()}"

        prefix, ticker = symbol.split(":", 1)
        prefix = prefix.strip().upper()
        if prefix in self.exchanges:
            # Already in wire notation
            return f"{prefix}:{ticker}"
        if prefix in self.segments:
            return f"{self.segments[prefix]}:{ticker}"
        return symbol

    def from_wire(self, wire_symbol: str) -> str:
        separator = ":" if ":" in wire_symbol else "|"
        if separator not in wire_symbol:
            return wire_symbol

        prefix, ticker = wire_symbol.split(separator, 1)
        exchange = self.exchanges.get(prefix.strip().upper())
        if exchange is None:
            return wire_symbol
        if exchange == self.default_exchange:
            return ticker
        return f"{exchange}:{ticker}"

    def join(self, exchange: Optional[str], ticker: str) -> str:
        """Canonical symbol for an exchange (or segment) and ticker from a response."""
        exchange = (exchange or self.default_exchange).upper()
        exchange = self.exchanges.get(exchange, exchange)
        if exchange == self.default_exchange:
            return ticker
        return f"{exchange}:{ticker}"


class CurrencyPairSymbols(SymbolTranslator):
    """
    Underscore-separated instruments (OANDA).

    A six-letter pair "EURUSD" is split into "EUR_USD". Input that already
    contains an underscore is passed through unchanged.
    """

    def to_wire(self, symbol: str) -> str:
        if "_" in symbol:
            return symbol
        if len(symbol) == 6 and symbol.isalpha():
            return f"{symbol[:3]}_{symbol[3:]}"
        return symbol

    def from_wire(self, wire_symbol: str) -> str:
        base, sep, quote = wire_symbol.partition("_")
        if sep and len(base) == 3 and len(quote) == 3 and (base + quote).isalpha():
            return base + quote
        return wire_symbol


class SecurityIdMapper:
    """
    Maps trading symbols to DhanHQ security IDs.

    DhanHQ addresses instruments by numeric security id. The mapper holds a
    built-in table for the most traded NSE stocks and can load or extend it
    from a CSV file with columns ``symbol, exchange, security_id``.

    Attributes:
        csv_path: Optional CSV file containing mappings
        symbol_map: "SYMBOL_EXCHANGE" -> security id
        id_map: "SECURITYID_EXCHANGE" -> symbol
    """

    DEFAULT_MAPPINGS = [
        ("RELIANCE", "NSE", "2885"),
        ("TCS", "NSE", "11536"),
        ("HDFCBANK", "NSE", "1333"),
        ("INFY", "NSE", "1594"),
        ("ICICIBANK", "NSE", "4963"),
        ("HINDUNILVR", "NSE", "1394"),
        ("ITC", "NSE", "1660"),
        ("SBIN", "NSE", "3045"),
        ("BHARTIARTL", "NSE", "10604"),
        ("KOTAKBANK", "NSE", "1922"),
        ("LT", "NSE", "11483"),
        ("AXISBANK", "NSE", "5900"),
        ("ASIANPAINT", "NSE", "236"),
        ("MARUTI", "NSE", "10999"),
        ("SUNPHARMA", "NSE", "3351"),
        ("TITAN", "NSE", "3506"),
        ("WIPRO", "NSE", "3787"),
        ("NTPC", "NSE", "11630"),
        ("POWERGRID", "NSE", "14977"),
        ("ONGC", "NSE", "2475"),
    ]

    def __init__(self, csv_path: Optional[Union[str, Path]] = None, use_defaults: bool = True):
        """
        Initialize mapper.

        Args:
            csv_path: CSV file with additional mappings (loaded if it exists)
            use_defaults: Seed the map with the built-in table
        """
        self.csv_path = Path(csv_path) if csv_path else None
        self.symbol_map: Dict[str, str] = {}
        self.id_map: Dict[str, str] = {}

        if use_defaults:
            for symbol, exchange, security_id in self.DEFAULT_MAPPINGS:
                self._remember(symbol, exchange, security_id)

        if self.csv_path is not None:
            self._load_mappings()

    def get_security_id(self, symbol: str, exchange: str = DEFAULT_EXCHANGE) -> str:
        """
        Get security ID for symbol.

        Args:
            symbol: Trading symbol (e.g., "RELIANCE")
            exchange: Exchange (NSE or BSE)

        Returns:
            DhanHQ security ID

        Raises:
            ValidationError: If symbol not found in mappings
        """
        key = f"{symbol.upper()}_{exchange.upper()}"
        if key in self.symbol_map:
            return self.symbol_map[key]

        if symbol.isdigit():
            # Caller already passed a security id
            return symbol

        raise ValidationError(
            f"Security ID not found for {symbol} on {exchange}. "
            f"Add it with SecurityIdMapper.add_mapping() or the mapping CSV."
        )

    def get_symbol(self, security_id: str, exchange: str = DEFAULT_EXCHANGE) -> Optional[str]:
        """Reverse lookup; None when the id is unknown."""
        return self.id_map.get(f"{security_id}_{exchange.upper()}")

    def has_mapping(self, symbol: str, exchange: str = DEFAULT_EXCHANGE) -> bool:
        """Check if mapping exists for symbol."""
        return f"{symbol.upper()}_{exchange.upper()}" in self.symbol_map

    def add_mapping(self, symbol: str, exchange: str, security_id: str, persist: bool = False) -> None:
        """
        Add new symbol mapping.

        Args:
            symbol: Trading symbol
            exchange: Exchange (NSE or BSE)
            security_id: DhanHQ security ID
            persist: Also append the mapping to the CSV file
        """
        self._remember(symbol, exchange, security_id)

        if persist:
            if self.csv_path is None:
                raise ValueError("No csv_path configured to persist mappings")

            file_exists = self.csv_path.exists()
            self.csv_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.csv_path, "a", newline="") as f:
                writer = csv.writer(f)
                if not file_exists:
                    writer.writerow(["symbol", "exchange", "security_id"])
                writer.writerow([symbol.upper(), exchange.upper(), security_id])

        logger.info(f"Added mapping: {symbol} ({exchange}) -> {security_id}")

    def _remember(self, symbol: str, exchange: str, security_id: str) -> None:
        symbol, exchange, security_id = symbol.upper(), exchange.upper(), str(security_id)
        self.symbol_map[f"{symbol}_{exchange}"] = security_id
        self.id_map[f"{security_id}_{exchange}"] = symbol

    def _load_mappings(self) -> None:
        """Load mappings from CSV file."""
        if not self.csv_path.exists():
            logger.warning(f"Mapping file not found: {self.csv_path}")
            return

        with open(self.csv_path, "r", newline="") as f:
            reader = csv.DictReader(f)
            count = 0
            for row in reader:
                self._remember(row["symbol"], row.get("exchange") or DEFAULT_EXCHANGE, row["security_id"])
                count += 1

        logger.info(f"Loaded {count} symbol mappings from {self.csv_path}")
