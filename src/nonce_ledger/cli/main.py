#!/usr/bin/env python3
"""
nonce-ledger CLI - manage the consumed-nonce table.

Commands:
  nonce-ledger migrate up|down|status     Manage the schema
  nonce-ledger seed                       Load fixture nonces
  nonce-ledger admit NONCE TIMESTAMP      Run one admission against the database
  nonce-ledger check-timestamp TIMESTAMP  Validate a timestamp without storage
  nonce-ledger sweep [--watch]            Delete records past the retention window
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any

from ..config import get_config
from ..eviction import Sweeper
from ..exceptions import ConfigError, InvalidArgumentError, NonceLedgerError
from ..ledger import NonceLedger
from ..logging import configure_logging, correlation_context
from ..results import AdmissionResult
from ..storage.base import NonceStore
from ..timestamps import DEFAULT_FRESHNESS_WINDOW, is_fresh, is_timestamp
from .output import output_error, output_result

logger = logging.getLogger(__name__)

# Exit code for a well-formed request that the ledger refused
EXIT_REJECTED = 2


def _open_store() -> NonceStore:
    """Build the PostgreSQL store from settings."""
    from ..storage.postgres import PostgresNonceStore

    return PostgresNonceStore()


async def _close_store(store: NonceStore) -> None:
    close = getattr(store, "close", None)
    if close is not None:
        await close()


def _make_runner():
    from ..db import get_connection
    from ..migrations import MigrationRunner

    return MigrationRunner(connection_factory=get_connection)


# ============================================================================
# Commands
# ============================================================================


def cmd_migrate(args: argparse.Namespace) -> int:
    """Dispatch migrate subcommands."""
    runner = _make_runner()
    try:
        if args.migrate_command == "status":
            statuses = runner.status()
            output_result({"migrations": [s.to_dict() for s in statuses]}, as_json=True)
            return 0
        if args.migrate_command == "up":
            versions = runner.up(target=args.to, dry_run=args.dry_run)
        else:
            versions = runner.down(target=args.to, dry_run=args.dry_run)
    except Exception as e:
        output_error(f"Migration failed: {e}")
        return 1
    output_result({"command": args.migrate_command, "dry_run": args.dry_run, "versions": versions}, as_json=args.json)
    return 0


def cmd_seed(args: argparse.Namespace) -> int:
    """Replace the table contents with fixture nonces."""
    from ..db import get_connection
    from ..seeds import seed

    table = args.table or get_config().table_name
    try:
        conn = get_connection()
        try:
            inserted = seed(conn, table)
        finally:
            conn.close()
    except Exception as e:
        output_error(f"Seeding failed: {e}")
        return 1
    output_result({"table": table, "inserted": inserted}, as_json=args.json)
    return 0


async def _run_admission(nonce: str, timestamp: str, record_only: bool) -> AdmissionResult:
    store = _open_store()
    try:
        # Pending evictions die with this process; run `sweep` to reclaim rows
        async with NonceLedger.from_config(store) as ledger:
            if record_only:
                return await ledger.record(nonce, timestamp)
            return await ledger.admit(nonce, timestamp)
    finally:
        await _close_store(store)


def cmd_admit(args: argparse.Namespace) -> int:
    """Admit (or just record) one nonce."""
    with correlation_context():
        try:
            result = asyncio.run(_run_admission(args.nonce, args.timestamp, args.record_only))
        except NonceLedgerError as e:
            output_error(e.message)
            return 1
    output_result(result.to_dict(), as_json=args.json)
    if result.accepted:
        return 0
    return EXIT_REJECTED if result.rejected else 1


def cmd_check_timestamp(args: argparse.Namespace) -> int:
    """Report whether a timestamp is valid and fresh."""
    valid = is_timestamp(args.timestamp)
    data: dict[str, Any] = {"timestamp": args.timestamp, "valid": valid, "fresh": False}
    if valid:
        try:
            data["fresh"] = is_fresh(args.timestamp, args.window)
        except InvalidArgumentError as e:
            output_error(e.message)
            return 1
    output_result(data, as_json=args.json)
    return 0 if data["fresh"] else EXIT_REJECTED


async def _run_sweep() -> int:
    store = _open_store()
    try:
        async with NonceLedger.from_config(store) as ledger:
            return await ledger.sweep()
    finally:
        await _close_store(store)


async def _watch_sweeps(interval: float) -> None:
    store = _open_store()
    try:
        async with NonceLedger.from_config(store) as ledger:
            sweeper = Sweeper(ledger, interval)
            await sweeper.start()
            try:
                # Runs until the process is interrupted
                await asyncio.Event().wait()
            finally:
                await sweeper.stop()
    finally:
        await _close_store(store)


def cmd_sweep(args: argparse.Namespace) -> int:
    """Delete records older than the retention window, once or periodically."""
    if args.watch:
        interval = args.interval or get_config().sweep_interval
        if not interval:
            output_error("--watch needs an interval: pass --interval or set NONCE_LEDGER_SWEEP_INTERVAL")
            return 1
        logger.info("Sweeping every %s seconds", interval)
        try:
            asyncio.run(_watch_sweeps(interval))
        except KeyboardInterrupt:
            return 0
        except NonceLedgerError as e:
            output_error(e.message)
            return 1
        return 0

    try:
        removed = asyncio.run(_run_sweep())
    except NonceLedgerError as e:
        output_error(e.message)
        return 1
    output_result({"removed": removed}, as_json=args.json)
    return 0


# ============================================================================
# Main Entry Point
# ============================================================================


def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="nonce-ledger",
        description="Replay protection ledger for LTI launches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  nonce-ledger migrate up                          Create the nonce table
  nonce-ledger seed                                Load fixture nonces
  nonce-ledger admit 72eb4648a1ea65ae 1530626551   Try one admission
  nonce-ledger check-timestamp 1530626551          Is this timestamp fresh?
        """,
    )
    parser.add_argument("--json", action="store_true", help="Emit JSON output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Database migration management")
    migrate_subparsers = migrate_parser.add_subparsers(dest="migrate_command", required=True)
    for name, help_text, to_help in (
        ("up", "Apply pending migrations", "Apply up to this version (inclusive)"),
        ("down", "Roll back migrations", "Roll back to this version (it stays applied)"),
    ):
        sub = migrate_subparsers.add_parser(name, help=help_text)
        sub.add_argument("--to", help=to_help)
        sub.add_argument("--dry-run", action="store_true", help="Only show what would change")
    migrate_subparsers.add_parser("status", help="Show migration status")
    migrate_parser.set_defaults(func=cmd_migrate)

    # seed
    seed_parser = subparsers.add_parser("seed", help="Replace table contents with fixture nonces")
    seed_parser.add_argument("--table", help="Table to seed (default: configured table)")
    seed_parser.set_defaults(func=cmd_seed)

    # admit
    admit_parser = subparsers.add_parser("admit", help="Admit a nonce/timestamp pair")
    admit_parser.add_argument("nonce", help="oauth_nonce value")
    admit_parser.add_argument("timestamp", help="oauth_timestamp value")
    admit_parser.add_argument(
        "--record-only",
        action="store_true",
        help="Mark the nonce as used without freshness or duplicate checks",
    )
    admit_parser.set_defaults(func=cmd_admit)

    # check-timestamp
    check_parser = subparsers.add_parser("check-timestamp", help="Validate a timestamp")
    check_parser.add_argument("timestamp", help="UNIX timestamp")
    check_parser.add_argument(
        "--window",
        type=int,
        default=DEFAULT_FRESHNESS_WINDOW,
        help=f"Freshness window in seconds (default: {DEFAULT_FRESHNESS_WINDOW})",
    )
    check_parser.set_defaults(func=cmd_check_timestamp)

    # sweep
    sweep_parser = subparsers.add_parser("sweep", help="Delete records past the retention window")
    sweep_parser.add_argument("--watch", action="store_true", help="Keep sweeping until interrupted")
    sweep_parser.add_argument(
        "--interval",
        type=int,
        help="Seconds between sweeps with --watch (default: NONCE_LEDGER_SWEEP_INTERVAL)",
    )
    sweep_parser.set_defaults(func=cmd_sweep)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)
    try:
        configure_logging(level="DEBUG" if args.verbose else None)
    except ConfigError as e:
        output_error(e.message)
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
