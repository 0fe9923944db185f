"""PostgreSQL nonce store backed by asyncpg.

Table layout (see migrations/001_nonce_store_table.py):

    CREATE TABLE nonce_store (
        value TEXT PRIMARY KEY,
        timestamp TEXT
    )

The primary key on ``value`` is what ultimately prevents double admission
across processes.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from ..db import AsyncConnectionPool
from ..exceptions import ConflictError, StorageError
from .base import NonceRecord, quote_table_name

logger = logging.getLogger(__name__)


class PostgresNonceStore:
    """NonceStore over an AsyncConnectionPool.

    Args:
        pool: Pool to borrow connections from. A new pool built from the
            global settings is used when omitted.
    """

    def __init__(self, pool: AsyncConnectionPool | None = None) -> None:
        self.pool = pool or AsyncConnectionPool()

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncGenerator[Any, None]:
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except StorageError:
            raise
        except asyncpg.UniqueViolationError as e:
            raise ConflictError(f"Integrity constraint violation: {e}") from e
        except asyncpg.UndefinedTableError as e:
            logger.error("Nonce table missing during %s: %s", operation, e)
            raise StorageError(f"SQL error: {e}", {"operation": operation}) from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Database error during %s: %s", operation, e)
            raise StorageError(f"Database error: {e}", {"operation": operation}) from e

    async def find(self, table: str, value: str) -> list[NonceRecord]:
        query = f"SELECT value, timestamp FROM {quote_table_name(table)} WHERE value = $1"  # noqa: S608
        async with self._connection("find") as conn:
            rows = await conn.fetch(query, value)
        return [NonceRecord.from_row(row) for row in rows]

    async def insert(self, table: str, record: NonceRecord) -> None:
        query = f"INSERT INTO {quote_table_name(table)} (value, timestamp) VALUES ($1, $2)"  # noqa: S608
        try:
            async with self._connection("insert") as conn:
                await conn.execute(query, record.value, record.timestamp)
        except ConflictError as e:
            raise ConflictError(f"Nonce '{record.value}' is already stored in {table}", value=record.value) from e

    async def insert_if_absent(self, table: str, record: NonceRecord) -> bool:
        query = (
            f"INSERT INTO {quote_table_name(table)} (value, timestamp) VALUES ($1, $2) "  # noqa: S608
            "ON CONFLICT (value) DO NOTHING RETURNING value"
        )
        async with self._connection("insert_if_absent") as conn:
            inserted = await conn.fetchval(query, record.value, record.timestamp)
        return inserted is not None

    async def delete(self, table: str, value: str, timestamp: str | None = None) -> int:
        if timestamp is None:
            query = f"DELETE FROM {quote_table_name(table)} WHERE value = $1"  # noqa: S608
            args: tuple[Any, ...] = (value,)
        else:
            query = f"DELETE FROM {quote_table_name(table)} WHERE value = $1 AND timestamp = $2"  # noqa: S608
            args = (value, timestamp)
        async with self._connection("delete") as conn:
            status = await conn.execute(query, *args)
        return _affected_rows(status)

    async def delete_older_than(self, table: str, cutoff: int) -> int:
        # Rows written by other tools may carry non-numeric timestamps; leave them alone
        query = (
            f"DELETE FROM {quote_table_name(table)} "  # noqa: S608
            "WHERE CASE WHEN timestamp ~ '^[0-9]{1,18}$' THEN timestamp::bigint < $1 ELSE false END"
        )
        async with self._connection("delete_older_than") as conn:
            status = await conn.execute(query, cutoff)
        return _affected_rows(status)

    async def create_table(self, table: str) -> None:
        query = f"CREATE TABLE IF NOT EXISTS {quote_table_name(table)} (value TEXT PRIMARY KEY, timestamp TEXT)"
        async with self._connection("create_table") as conn:
            await conn.execute(query)

    async def count(self, table: str) -> int:
        query = f"SELECT COUNT(*) FROM {quote_table_name(table)}"  # noqa: S608
        async with self._connection("count") as conn:
            total = await conn.fetchval(query)
        return total or 0

    async def close(self) -> None:
        await self.pool.close()


def _affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg command tag such as 'DELETE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0
