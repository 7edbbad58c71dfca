"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration and the fake pool
fixture. All fixtures here are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

from tests.helpers import FakePool

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_database_env(monkeypatch):
    """Ensure a clean database environment for each test.

    Clears PGSWEEP_* and DATABASE_URL so Config resolution is deterministic.
    """
    for key in list(os.environ.keys()):
        if key.startswith("PGSWEEP_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("psycopg").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)


# =============================================================================
# Test Doubles
# =============================================================================


@pytest.fixture
def pool() -> FakePool:
    """A fresh in-memory stand-in for ``AsyncConnectionPool``."""
    return FakePool()


# =============================================================================
# Pytest Hooks
# =============================================================================

DB_TESTS_REASON = "Database tests require ENABLE_DB_TESTS=1"


def _db_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_DB_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip database tests when not explicitly enabled."""
    if _db_tests_enabled():
        return
    skip_db = pytest.mark.skip(reason=DB_TESTS_REASON)
    for item in items:
        if "db" in item.keywords:
            item.add_marker(skip_db)


@pytest.fixture
def database_url():
    """Return TEST_DATABASE_URL or skip the test if unavailable."""
    url = os.getenv("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")
    return url
