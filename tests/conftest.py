"""
Pytest Configuration and Fixtures.

Provides shared fixtures and configuration for all tests: a mocked
``requests.Session``, a real ``requests.Response`` builder for recorded
provider payloads, a connection factory and a loguru record collector.
"""

import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest
import requests
from loguru import logger

from brokerlink.execution.connection import BrokerConnection


def make_response(
    status_code: int = 200,
    json_data: Any = None,
    text: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    """
    Build a real requests.Response carrying a recorded payload.

    Args:
        status_code: HTTP status
        json_data: Body to serialize as JSON
        text: Raw body (used when json_data is None)
        headers: Response headers

    Returns:
        Response object
    """
    response = requests.Response()
    response.status_code = status_code
    response.encoding = "utf-8"

    if json_data is not None:
        response._content = json.dumps(json_data).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    elif text is not None:
        response._content = text.encode("utf-8")
    else:
        response._content = b""

    response.headers.update(headers or {})
    return response


@pytest.fixture
def response_factory() -> Callable[..., requests.Response]:
    """Expose make_response as a fixture."""
    return make_response


@pytest.fixture
def fake_session() -> MagicMock:
    """
    Mocked requests.Session.

    Tests queue responses with ``fake_session.request.side_effect = [...]``
    or ``fake_session.request.return_value = ...``.
    """
    session = MagicMock(spec=requests.Session)
    session.request.return_value = make_response(200, {})
    return session


@pytest.fixture
def connection_factory() -> Callable[..., BrokerConnection]:
    """
    Build BrokerConnection objects with dummy credentials.

    Example:
        >>> connection_factory("oanda", account_id="101-001-1")
    """

    def factory(broker: str, **kwargs: Any) -> BrokerConnection:
        fields = {"api_key": "test_key", "api_secret": "test_secret", "api_token": "test_token"}
        fields.update(kwargs)
        return BrokerConnection(broker=broker, **fields)

    return factory


@pytest.fixture
def log_records() -> Generator[List[Dict[str, Any]], None, None]:
    """
    Collect loguru records emitted during a test.

    Yields:
        List of loguru record dicts
    """
    records: List[Dict[str, Any]] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create temporary directory for tests.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def recorded_call() -> Callable[..., Any]:
    """Return (method, url, kwargs) of one recorded session.request call."""

    def lookup(session: MagicMock, index: int = -1):
        call = session.request.call_args_list[index]
        return call.args[0], call.args[1], call.kwargs

    return lookup


# Markers for test categorization
def pytest_configure(config: pytest.Config) -> None:
    """
    Configure pytest with custom markers.

    Args:
        config: Pytest configuration
    """
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "live: marks tests that require real broker credentials")


# Test collection hooks
def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """
    Modify test items during collection.

    Args:
        config: Pytest configuration
        items: List of test items
    """
    # Skip live tests by default
    skip_live = pytest.mark.skip(reason="Live tests require real broker credentials and API access")

    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)
