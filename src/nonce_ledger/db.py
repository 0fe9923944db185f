"""Database connection utilities for the nonce ledger.

Async (asyncpg):
    - AsyncConnectionPool backs PostgresNonceStore on the admission path

Sync (psycopg2):
    - get_connection() for migrations, seeding and the CLI

Connection parameters and pool size come from LedgerSettings:
    - NONCE_LEDGER_DB_POOL_MIN: Minimum connections (default: 1)
    - NONCE_LEDGER_DB_POOL_MAX: Maximum connections (default: 10)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
import psycopg2
from psycopg2.extras import RealDictCursor

from .config import LedgerSettings, get_config
from .exceptions import StorageError

logger = logging.getLogger(__name__)


def get_async_connection_params(config: LedgerSettings | None = None) -> dict[str, Any]:
    """Get connection parameters for asyncpg (uses 'database' not 'dbname')."""
    params = dict((config or get_config()).connection_params)
    params["database"] = params.pop("dbname")
    return params


# =============================================================================
# Asynchronous Connection Pool (asyncpg)
# =============================================================================


class AsyncConnectionPool:
    """Async connection pool manager using asyncpg.

    The pool is created lazily on the first acquire().
    """

    def __init__(self, config: LedgerSettings | None = None) -> None:
        self._config = config
        self._pool: Any | None = None
        self._pool_lock = asyncio.Lock()

    @property
    def config(self) -> LedgerSettings:
        return self._config or get_config()

    async def _ensure_pool(self) -> Any:
        """Ensure pool is initialized, creating it if necessary."""
        if self._pool is None:
            async with self._pool_lock:
                if self._pool is None:
                    pool_config = self.config.pool_config
                    try:
                        self._pool = await asyncpg.create_pool(
                            min_size=pool_config["minconn"],
                            max_size=pool_config["maxconn"],
                            **get_async_connection_params(self.config),
                        )
                    except (asyncpg.PostgresError, OSError) as e:
                        logger.error("Failed to create async connection pool: %s", e)
                        raise StorageError(f"Failed to create async connection pool: {e}") from e
                    logger.info(
                        "Async connection pool initialized: min=%d, max=%d",
                        pool_config["minconn"],
                        pool_config["maxconn"],
                    )
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Any, None]:
        """Borrow a connection for the duration of the block.

        Raises:
            StorageError: If no connection can be obtained
        """
        pool = await self._ensure_pool()
        try:
            conn = await pool.acquire()
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            logger.error("Failed to acquire connection: %s", e)
            raise StorageError(f"Failed to acquire connection: {e}") from e
        try:
            yield conn
        finally:
            await pool.release(conn)

    async def close(self) -> None:
        """Close all connections in the pool."""
        async with self._pool_lock:
            if self._pool is not None:
                await self._pool.close()
                self._pool = None
                logger.info("Async connection pool closed")


# =============================================================================
# Synchronous connections (psycopg2)
# =============================================================================


def get_connection(config: LedgerSettings | None = None) -> Any:
    """Open a new psycopg2 connection with dict rows.

    Raises:
        StorageError: If the connection cannot be established
    """
    params = (config or get_config()).connection_params
    try:
        return psycopg2.connect(cursor_factory=RealDictCursor, **params)
    except psycopg2.Error as e:
        logger.error("Failed to connect to database: %s", e)
        raise StorageError(f"Failed to connect to database: {e}") from e
