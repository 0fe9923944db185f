"""In-process nonce store.

Suitable for tests and single-process deployments. Tables must be created
before use; touching an unknown table raises StorageError the way a missing
relation does in PostgreSQL.
"""

from __future__ import annotations

import logging
import re

from ..exceptions import ConflictError, StorageError
from .base import NonceRecord, validate_table_name

logger = logging.getLogger(__name__)

# Same rule as the PostgreSQL sweep: only plain digit strings are compared
_SWEEPABLE = re.compile(r"[0-9]{1,18}")


class MemoryNonceStore:
    """Dict-backed NonceStore.

    Each coroutine runs without awaiting, so operations are atomic with
    respect to other tasks on the same event loop.
    """

    def __init__(self, tables: list[str] | None = None) -> None:
        self._tables: dict[str, dict[str, NonceRecord]] = {}
        for table in tables or []:
            self._tables[validate_table_name(table)] = {}

    def _table(self, table: str) -> dict[str, NonceRecord]:
        try:
            return self._tables[table]
        except KeyError:
            raise StorageError(f'relation "{table}" does not exist', {"table": table}) from None

    async def find(self, table: str, value: str) -> list[NonceRecord]:
        record = self._table(table).get(value)
        return [record] if record is not None else []

    async def insert(self, table: str, record: NonceRecord) -> None:
        rows = self._table(table)
        if record.value in rows:
            raise ConflictError(
                f'duplicate key value violates unique constraint "{table}_pkey"',
                value=record.value,
            )
        rows[record.value] = record

    async def insert_if_absent(self, table: str, record: NonceRecord) -> bool:
        rows = self._table(table)
        if record.value in rows:
            return False
        rows[record.value] = record
        return True

    async def delete(self, table: str, value: str, timestamp: str | None = None) -> int:
        rows = self._table(table)
        record = rows.get(value)
        if record is None or (timestamp is not None and record.timestamp != timestamp):
            return 0
        del rows[value]
        return 1

    async def delete_older_than(self, table: str, cutoff: int) -> int:
        rows = self._table(table)
        expired = [
            value
            for value, record in rows.items()
            if record.timestamp is not None
            and _SWEEPABLE.fullmatch(record.timestamp)
            and int(record.timestamp) < cutoff
        ]
        for value in expired:
            del rows[value]
        if expired:
            logger.debug("Removed %d expired nonces from %s", len(expired), table)
        return len(expired)

    async def create_table(self, table: str) -> None:
        self._tables.setdefault(validate_table_name(table), {})

    async def count(self, table: str) -> int:
        return len(self._table(table))

    def clear(self) -> None:
        """Remove all records from every table."""
        for rows in self._tables.values():
            rows.clear()
