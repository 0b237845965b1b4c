"""Shared pytest configuration."""

import pytest
import structlog


@pytest.fixture(autouse=True)
def uncached_loggers() -> None:
    """Resolve loggers on every call so each test sees its own output streams."""
    structlog.configure(cache_logger_on_first_use=False)
