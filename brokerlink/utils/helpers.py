"""
Helper Utilities Module.

Configuration loading and the value-coercion helpers adapters use to turn
provider JSON into canonical values.
"""

import json
import os
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel

_ENV_REFERENCE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")
_FRACTION = re.compile(r"(\.\d{6})\d+")
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")

# Indian exchanges report naive local timestamps
IST = timezone(timedelta(hours=5, minutes=30), "IST")


def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file has unsupported format
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    suffix = config_path.suffix.lower()

    if suffix in {".yaml", ".yml"}:
        return load_yaml(config_path) or {}
    elif suffix == ".json":
        return load_json(config_path)
    else:
        raise ValueError(f"Unsupported configuration format: {suffix}")


def load_yaml(file_path: Union[str, Path]) -> Dict[str, Any]:
    """Load YAML file."""
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_json(file_path: Union[str, Path]) -> Dict[str, Any]:
    """Load JSON file."""
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def expand_env(value: Any) -> Any:
    """
    Expand a ``${VAR_NAME}`` reference to the environment variable's value.

    Values that are not a whole-string reference are returned unchanged.
    An unset variable expands to None.

    Args:
        value: Raw configuration value

    Returns:
        Expanded value
    """
    if not isinstance(value, str):
        return value

    match = _ENV_REFERENCE.match(value.strip())
    if match:
        return os.getenv(match.group(1))
    return value


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Convert a JSON number or numeric string to Decimal.

    Floats go through ``str`` so that 2749.5 becomes Decimal('2749.5')
    rather than its binary expansion.

    Args:
        value: Raw value from a provider payload
        default: Returned for None, empty strings and unparseable input

    Returns:
        Decimal value or default
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return default

    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default

    if not result.is_finite():
        return default
    return result


def parse_timestamp(
    value: Any,
    default: Optional[datetime] = None,
    assume_tz: tzinfo = timezone.utc,
) -> Optional[datetime]:
    """
    Parse a provider timestamp into a timezone-aware datetime.

    Accepts datetimes, epoch numbers (seconds, or milliseconds when larger
    than 1e11) and ISO-8601 strings, including RFC3339 with nanosecond
    fractions and a trailing 'Z'. Naive results are given ``assume_tz``.

    Args:
        value: Raw timestamp
        default: Returned for None and empty strings
        assume_tz: Zone of timestamps that carry no offset (UTC unless the
            provider reports local exchange time)

    Returns:
        Aware datetime or default

    Raises:
        ValueError: If a non-empty string cannot be parsed
    """
    if value is None or value == "":
        return default

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 1e11:
            seconds = seconds / 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.isdigit():
            return parse_timestamp(int(text), default, assume_tz)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(r"\1", text)
        if "T" in text or " " in text:
            text = _COMPACT_OFFSET.sub(r"\1:\2", text)
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=assume_tz)
    return parsed


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (naive input is taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_z(value: datetime) -> str:
    """Format a datetime as RFC3339 UTC with a trailing 'Z'."""
    return to_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ConfigModel(BaseModel):
    """
    Base configuration model with Pydantic validation.

    Provides common configuration loading functionality.
    """

    @classmethod
    def from_yaml(cls, file_path: Union[str, Path]) -> "ConfigModel":
        """
        Load configuration from YAML file.

        Args:
            file_path: Path to YAML file

        Returns:
            Configuration instance
        """
        data = load_yaml(file_path) or {}
        return cls(**data)

    @classmethod
    def from_json(cls, file_path: Union[str, Path]) -> "ConfigModel":
        """
        Load configuration from JSON file.

        Args:
            file_path: Path to JSON file

        Returns:
            Configuration instance
        """
        data = load_json(file_path)
        return cls(**data)
