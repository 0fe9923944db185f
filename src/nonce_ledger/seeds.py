"""Fixture data for demo and test databases.

The fixture nonce carries a 2018 timestamp, so admitting it again is
rejected as expired long before the duplicate check runs.
"""

from __future__ import annotations

import logging
from typing import Any

from psycopg2 import sql

from .storage.base import NonceRecord, NonceStore, validate_table_name

logger = logging.getLogger(__name__)

FIXTURE_RECORDS: tuple[NonceRecord, ...] = (
    NonceRecord(value="72eb4648a1ea65ae644dc415bf7318cf", timestamp="1530626551"),
)


def seed(conn: Any, table_name: str = "nonce_store") -> int:
    """Replace the contents of ``table_name`` with the fixture records.

    Args:
        conn: psycopg2 connection. Committed on success.
        table_name: Table to seed.

    Returns:
        Number of records inserted.
    """
    table = sql.Identifier(*validate_table_name(table_name).split("."))
    with conn.cursor() as cur:
        cur.execute(sql.SQL("DELETE FROM {}").format(table))
        for record in FIXTURE_RECORDS:
            cur.execute(
                sql.SQL("INSERT INTO {} (value, timestamp) VALUES (%s, %s)").format(table),
                (record.value, record.timestamp),
            )
    conn.commit()
    logger.info("Seeded %d fixture nonce(s) into %s", len(FIXTURE_RECORDS), table_name)
    return len(FIXTURE_RECORDS)


async def seed_store(store: NonceStore, table_name: str = "nonce_store") -> int:
    """Insert the fixture records into an async store, skipping existing ones.

    Returns:
        Number of records inserted.
    """
    inserted = 0
    for record in FIXTURE_RECORDS:
        if await store.insert_if_absent(table_name, record):
            inserted += 1
    return inserted
