"""Nonce persistence backends."""

from .base import NonceRecord, NonceStore, quote_table_name, validate_table_name
from .memory import MemoryNonceStore
from .postgres import PostgresNonceStore

__all__ = [
    "NonceRecord",
    "NonceStore",
    "MemoryNonceStore",
    "PostgresNonceStore",
    "quote_table_name",
    "validate_table_name",
]
