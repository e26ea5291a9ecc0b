"""Pytest configuration and fixtures."""

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for api_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))


KENNEL_ENV_VARS = (
    "KENNEL_ROOT",
    "KENNEL_GENERATED_DIR",
    "PROJECT",
    "DATADOG_API_KEY",
    "DATADOG_APP_KEY",
    "DATADOG_SUBDOMAIN",
    "KENNEL_REQUEST_TIMEOUT",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "KENNEL_AUTO_CONFIRM",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's environment out of every test."""
    for name in KENNEL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Drop the handler installed by CLI runs once a test is done."""
    yield
    from kennel import main

    if main._handler is not None:
        logging.getLogger().removeHandler(main._handler)
        main._handler = None
