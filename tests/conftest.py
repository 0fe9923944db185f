"""Global test fixtures for the nonce ledger test suite."""

from __future__ import annotations

import os
from typing import Any

import pytest

from nonce_ledger.config import clear_config_cache
from nonce_ledger.ledger import NonceLedger
from nonce_ledger.storage.base import NonceRecord
from nonce_ledger.storage.memory import MemoryNonceStore

# Timestamp of the fixture nonce (2018-07-03T14:02:31Z)
FIXTURE_NOW = 1530626551

# ============================================================================
# PostgreSQL Availability Detection
# ============================================================================


def _postgres_params() -> dict[str, Any]:
    return {
        "host": os.environ.get("NONCE_LEDGER_DB_HOST", "localhost"),
        "port": int(os.environ.get("NONCE_LEDGER_DB_PORT", "5432")),
        "dbname": os.environ.get("NONCE_LEDGER_DB_NAME", "nonce_ledger"),
        "user": os.environ.get("NONCE_LEDGER_DB_USER", "postgres"),
        "password": os.environ.get("NONCE_LEDGER_DB_PASSWORD", ""),
    }


def _check_postgres_available() -> tuple[bool, str | None]:
    """Check if PostgreSQL is available for integration tests."""
    import psycopg2

    try:
        conn = psycopg2.connect(connect_timeout=3, **_postgres_params())
        conn.close()
        return True, None
    except psycopg2.OperationalError as e:
        return False, f"PostgreSQL connection failed: {e}"


POSTGRES_AVAILABLE, POSTGRES_ERROR = _check_postgres_available()


def pytest_collection_modifyitems(config, items):
    """Skip tests that require PostgreSQL when no database is reachable."""
    if POSTGRES_AVAILABLE:
        return

    skip_postgres = pytest.mark.skip(reason=f"PostgreSQL not available: {POSTGRES_ERROR}")
    for item in items:
        if "requires_postgres" in item.keywords:
            item.add_marker(skip_postgres)


@pytest.fixture
def postgres_params() -> dict[str, Any]:
    return _postgres_params()


# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def _reset_config():
    """Reset the global settings before and after each test."""
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all NONCE_LEDGER_ environment variables."""
    for key in list(os.environ.keys()):
        if key.startswith("NONCE_LEDGER_"):
            monkeypatch.delenv(key, raising=False)


# ============================================================================
# Clock & Stores
# ============================================================================


class FrozenClock:
    """Callable clock returning a settable UNIX time."""

    def __init__(self, now: float = FIXTURE_NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SpyStore(MemoryNonceStore):
    """MemoryNonceStore that records every call made to it."""

    def __init__(self, tables: list[str] | None = None) -> None:
        super().__init__(tables)
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    async def find(self, table: str, value: str) -> list[NonceRecord]:
        self.calls.append(("find", (table, value)))
        return await super().find(table, value)

    async def insert(self, table: str, record: NonceRecord) -> None:
        self.calls.append(("insert", (table, record)))
        await super().insert(table, record)

    async def insert_if_absent(self, table: str, record: NonceRecord) -> bool:
        self.calls.append(("insert_if_absent", (table, record)))
        return await super().insert_if_absent(table, record)

    async def delete(self, table: str, value: str, timestamp: str | None = None) -> int:
        self.calls.append(("delete", (table, value, timestamp)))
        return await super().delete(table, value, timestamp)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> SpyStore:
    return SpyStore(tables=["nonce_store"])


@pytest.fixture
def store_factory() -> type[SpyStore]:
    return SpyStore


@pytest.fixture
async def ledger(store: SpyStore, clock: FrozenClock):
    ledger = NonceLedger(store, clock=clock)
    yield ledger
    await ledger.close()
