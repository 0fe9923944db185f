"""Storage contract for consumed nonces.

A store persists NonceRecord rows in a named table whose ``value`` column is
unique. The ledger is the only caller; it never caches rows, so a store
shared between processes gives consistent admission decisions.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..exceptions import InvalidArgumentError

# Postgres truncates identifiers longer than this
MAX_IDENTIFIER_LENGTH = 63

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class NonceRecord:
    """One consumed nonce.

    Attributes:
        value: The nonce itself; primary key of the table.
        timestamp: Decimal string of the timestamp presented with the nonce.
    """

    value: str
    timestamp: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> NonceRecord:
        """Build a record from a mapping-like database row."""
        timestamp = row["timestamp"]
        return cls(value=row["value"], timestamp=None if timestamp is None else str(timestamp))

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "timestamp": self.timestamp}


@runtime_checkable
class NonceStore(Protocol):
    """Protocol for nonce persistence backends.

    Every method raises StorageError (or a subclass) on failure, with the
    driver exception chained as ``__cause__``.
    """

    async def find(self, table: str, value: str) -> list[NonceRecord]:
        """Return records whose value equals ``value`` (0 or 1 expected)."""
        ...

    async def insert(self, table: str, record: NonceRecord) -> None:
        """Insert ``record``; raise ConflictError if its value already exists."""
        ...

    async def insert_if_absent(self, table: str, record: NonceRecord) -> bool:
        """Insert ``record`` unless its value exists. Returns True if inserted."""
        ...

    async def delete(self, table: str, value: str, timestamp: str | None = None) -> int:
        """Delete matching records and return how many were removed."""
        ...

    async def delete_older_than(self, table: str, cutoff: int) -> int:
        """Delete records whose timestamp is strictly below ``cutoff``."""
        ...

    async def create_table(self, table: str) -> None:
        """Create the table if it does not exist."""
        ...

    async def count(self, table: str) -> int:
        """Return the number of stored records."""
        ...


def validate_table_name(name: Any) -> str:
    """Check that ``name`` is safe to interpolate as a (schema-qualified) table.

    Raises:
        InvalidArgumentError: If name is not a string or not a plain identifier.
    """
    if not isinstance(name, str):
        raise InvalidArgumentError(
            f"The table name must be a string ; {type(name).__name__} given.",
            field="table_name",
            value=name,
        )
    parts = name.split(".")
    if len(parts) > 2 or not all(_IDENTIFIER_RE.match(p) and len(p) <= MAX_IDENTIFIER_LENGTH for p in parts):
        raise InvalidArgumentError(f"Invalid table name: {name!r}", field="table_name", value=name)
    return name


def quote_table_name(name: str) -> str:
    """Quote a validated table name for SQL, keeping any schema prefix."""
    return ".".join(f'"{part}"' for part in validate_table_name(name).split("."))
