"""
Utilities Module.

Common utilities and helper functions:
- Logging configuration
- Configuration loaders
- Value coercion helpers
"""

from typing import List

__all__: List[str] = [
    "get_logger",
    "load_config",
    "to_decimal",
    "parse_timestamp",
]

from brokerlink.utils.logging_config import get_logger
from brokerlink.utils.helpers import load_config, parse_timestamp, to_decimal
