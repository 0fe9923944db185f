"""Versioned schema migrations for the nonce table.

Each migration file in the migrations directory is named
``NNN_description.py`` and defines:
    version: str  # e.g. "001"
    description: str  # human-readable name
    def up(conn) -> None:  # apply (receives a psycopg2 connection)
    def down(conn) -> None:  # roll back

Applied migrations are tracked in the ``_migrations`` table together with a
checksum of the file, so edits to an applied migration show up in status().

Usage:
    runner = MigrationRunner()
    runner.up()              # apply all pending
    runner.down(target="001")  # roll back everything after 001
    runner.status()
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from types import ModuleType
from typing import Any

from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "_migrations"

# <repo_root>/migrations
DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parent.parent.parent / "migrations"


@dataclass
class MigrationInfo:
    """A migration file found on disk."""

    version: str
    description: str
    checksum: str
    file_path: Path
    module: ModuleType

    def __lt__(self, other: MigrationInfo) -> bool:
        return self.version < other.version


@dataclass
class AppliedMigration:
    """A row of the tracking table."""

    version: str
    description: str
    checksum: str
    applied_at: datetime


@dataclass
class MigrationStatus:
    """State of one migration: applied, pending, or checksum_mismatch."""

    version: str
    description: str
    state: str
    applied_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "state": self.state,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
        }


class MigrationRunner:
    """Discovers, tracks, and applies migrations.

    Args:
        migrations_dir: Directory of NNN_description.py files.
        connection_factory: Callable returning a psycopg2 connection. The
            runner closes connections it obtains. Defaults to db.get_connection.
    """

    def __init__(
        self,
        migrations_dir: str | Path | None = None,
        connection_factory: Callable[[], Any] | None = None,
    ):
        self.migrations_dir = Path(migrations_dir) if migrations_dir is not None else DEFAULT_MIGRATIONS_DIR
        self._connection_factory = connection_factory
        self._migrations: list[MigrationInfo] | None = None

    def _connect(self) -> Any:
        if self._connection_factory:
            return self._connection_factory()
        from .db import get_connection

        return get_connection()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @staticmethod
    def _checksum(file_path: Path) -> str:
        return hashlib.sha256(file_path.read_bytes()).hexdigest()[:16]

    @staticmethod
    def _load_module(file_path: Path) -> ModuleType:
        spec = importlib.util.spec_from_file_location(f"nonce_ledger_migration_{file_path.stem}", file_path)
        if spec is None or spec.loader is None:
            raise ValueError(f"Cannot load migration: {file_path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def discover(self) -> list[MigrationInfo]:
        """Return migrations found in migrations_dir, sorted by version."""
        if self._migrations is not None:
            return self._migrations

        if not self.migrations_dir.is_dir():
            logger.warning("Migrations directory not found: %s", self.migrations_dir)
            self._migrations = []
            return []

        migrations: list[MigrationInfo] = []
        for path in sorted(self.migrations_dir.glob("*.py")):
            prefix = path.stem.split("_", 1)[0]
            if path.name.startswith("__") or not prefix.isdigit() or "_" not in path.stem:
                continue

            module = self._load_module(path)
            for attr in ("version", "description", "up", "down"):
                if not hasattr(module, attr):
                    raise ValueError(f"Migration {path.name} missing required attribute: {attr}")

            migrations.append(
                MigrationInfo(
                    version=module.version,
                    description=module.description,
                    checksum=self._checksum(path),
                    file_path=path,
                    module=module,
                )
            )

        migrations.sort()
        self._migrations = migrations
        return migrations

    def invalidate_cache(self) -> None:
        """Forget the discovered migrations."""
        self._migrations = None

    # ------------------------------------------------------------------
    # Tracking table
    # ------------------------------------------------------------------

    def _applied(self, conn: Any) -> list[AppliedMigration]:
        with conn.cursor() as cur:
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                    version TEXT PRIMARY KEY,
                    description TEXT NOT NULL,
                    checksum TEXT NOT NULL,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
        conn.commit()
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT version, description, checksum, applied_at FROM {MIGRATIONS_TABLE} ORDER BY version")
            rows = cur.fetchall()
        return [
            AppliedMigration(
                version=row["version"],
                description=row["description"],
                checksum=row["checksum"],
                applied_at=row["applied_at"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def status(self) -> list[MigrationStatus]:
        """Return the state of every discovered migration."""
        migrations = self.discover()
        conn = self._connect()
        try:
            applied = {m.version: m for m in self._applied(conn)}
        finally:
            conn.close()

        result: list[MigrationStatus] = []
        for m in migrations:
            record = applied.get(m.version)
            if record is None:
                result.append(MigrationStatus(m.version, m.description, "pending"))
            else:
                state = "applied" if record.checksum == m.checksum else "checksum_mismatch"
                result.append(MigrationStatus(m.version, m.description, state, record.applied_at))
        return result

    def pending(self) -> list[MigrationInfo]:
        """Return migrations not yet applied."""
        pending_versions = {s.version for s in self.status() if s.state == "pending"}
        return [m for m in self.discover() if m.version in pending_versions]

    def up(self, *, target: str | None = None, dry_run: bool = False) -> list[str]:
        """Apply pending migrations, optionally only up to ``target`` (inclusive).

        Returns:
            Versions applied (or that would be applied, for a dry run).
        """
        migrations = self.discover()
        conn = self._connect()
        done: list[str] = []
        try:
            applied = {m.version for m in self._applied(conn)}
            to_apply = [m for m in migrations if m.version not in applied and (not target or m.version <= target)]
            if not to_apply:
                logger.info("No pending migrations to apply.")
                return []

            for migration in to_apply:
                if dry_run:
                    logger.info("[DRY RUN] Would apply %s: %s", migration.version, migration.description)
                    done.append(migration.version)
                    continue

                logger.info("Applying migration %s: %s", migration.version, migration.description)
                try:
                    migration.module.up(conn)
                    with conn.cursor() as cur:
                        cur.execute(
                            f"INSERT INTO {MIGRATIONS_TABLE} (version, description, checksum) VALUES (%s, %s, %s)",
                            (migration.version, migration.description, migration.checksum),
                        )
                    conn.commit()
                except Exception as e:
                    conn.rollback()
                    logger.error("Migration %s failed: %s", migration.version, e)
                    raise
                done.append(migration.version)
            return done
        finally:
            conn.close()

    def down(self, *, target: str | None = None, dry_run: bool = False) -> list[str]:
        """Roll back migrations.

        Args:
            target: Roll back every version above this one (it stays applied).
                None rolls back only the latest migration.
            dry_run: Only report what would be rolled back.

        Returns:
            Versions rolled back.
        """
        by_version = {m.version: m for m in self.discover()}
        conn = self._connect()
        done: list[str] = []
        try:
            applied = sorted((m.version for m in self._applied(conn)), reverse=True)
            to_rollback = [v for v in applied if v > target] if target else applied[:1]
            if not to_rollback:
                logger.info("No migrations to roll back.")
                return []

            for version in to_rollback:
                migration = by_version.get(version)
                if migration is None:
                    logger.warning("Migration file for version %s not found, skipping rollback", version)
                    continue
                if dry_run:
                    logger.info("[DRY RUN] Would roll back %s: %s", version, migration.description)
                    done.append(version)
                    continue

                logger.info("Rolling back migration %s: %s", version, migration.description)
                try:
                    migration.module.down(conn)
                    with conn.cursor() as cur:
                        cur.execute(f"DELETE FROM {MIGRATIONS_TABLE} WHERE version = %s", (version,))
                    conn.commit()
                except Exception as e:
                    conn.rollback()
                    logger.error("Rollback of %s failed: %s", version, e)
                    raise
                done.append(version)
            return done
        finally:
            conn.close()
