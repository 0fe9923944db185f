"""Migration 001: Create the nonce table.

One row per consumed nonce. ``value`` is the primary key, which is what
rejects a second insert of the same nonce from any process. ``timestamp``
keeps the presented oauth_timestamp as text for exact-match eviction and
age-based sweeps.

The table is named by NONCE_LEDGER_TABLE_NAME (default ``nonce_store``).
"""

from psycopg2 import sql

from nonce_ledger.config import get_config
from nonce_ledger.storage.base import validate_table_name

version = "001"
description = "nonce_store_table"


def _table() -> sql.Identifier:
    return sql.Identifier(*validate_table_name(get_config().table_name).split("."))


def up(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(
            sql.SQL("""
                CREATE TABLE IF NOT EXISTS {} (
                    value TEXT PRIMARY KEY,
                    timestamp TEXT
                )
            """).format(_table())
        )


def down(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(sql.SQL("DROP TABLE IF EXISTS {}").format(_table()))
