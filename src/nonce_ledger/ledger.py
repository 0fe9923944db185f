# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Nonce admission for signed launch requests.

Usage:
    store = PostgresNonceStore()
    async with NonceLedger(store) as ledger:
        result = await ledger.admit(params["oauth_nonce"], params["oauth_timestamp"])
        if not result.accepted:
            reject_launch(result.to_error())

Admission checks freshness first and never touches storage for a stale
timestamp. Fresh requests cost a lookup followed by a conditional insert;
the table's primary key is the only mutual exclusion, so any number of
processes may share one table.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol, runtime_checkable

from .config import LedgerSettings, get_config
from .eviction import EvictionScheduler
from .exceptions import InvalidArgumentError, StorageError
from .results import AdmissionResult, RejectionReason
from .storage.base import NonceRecord, NonceStore, validate_table_name
from .timestamps import DEFAULT_FRESHNESS_WINDOW, Clock, current_timestamp, is_fresh, to_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "nonce_store"

# Matches the recommended LTI replay window
DEFAULT_RETENTION_WINDOW = 5400


@runtime_checkable
class AdmissionGate(Protocol):
    """Anything that can admit and record nonces."""

    async def admit(self, nonce: str, timestamp: str | int) -> AdmissionResult: ...

    async def record(self, nonce: str, timestamp: str | int) -> AdmissionResult: ...


def _check_nonce(nonce: Any) -> str:
    if not isinstance(nonce, str):
        raise InvalidArgumentError(
            f"The nonce argument must be a string ; {type(nonce).__name__} given.",
            field="nonce",
            value=nonce,
        )
    if not nonce:
        raise InvalidArgumentError("The nonce argument must not be empty.", field="nonce")
    return nonce


def _as_storage_error(error: Exception) -> StorageError:
    if isinstance(error, StorageError):
        return error
    wrapped = StorageError(f"Storage failure: {error}", {"cause": type(error).__name__})
    wrapped.__cause__ = error
    return wrapped


class NonceLedger:
    """Records consumed nonces and rejects replays.

    Args:
        store: Persistence backend implementing NonceStore.
        table_name: Table holding consumed nonces.
        retention_window: Seconds a consumed nonce stays blocked before its
            record is evicted. May be fractional; 0 evicts on the next loop turn.
        freshness_window: Seconds a timestamp may lag the current time.
        clock: Source of the current UNIX time, injectable for tests.

    Raises:
        InvalidArgumentError: If any argument does not match the requirements.
    """

    def __init__(
        self,
        store: NonceStore,
        table_name: str = DEFAULT_TABLE_NAME,
        retention_window: float = DEFAULT_RETENTION_WINDOW,
        freshness_window: int = DEFAULT_FRESHNESS_WINDOW,
        *,
        clock: Clock = time.time,
    ) -> None:
        if store is None or not isinstance(store, NonceStore):
            raise InvalidArgumentError(
                f"The store argument must implement NonceStore ; {type(store).__name__} given.",
                field="store",
            )
        validate_table_name(table_name)
        if isinstance(retention_window, bool) or not isinstance(retention_window, int | float) or retention_window < 0:
            raise InvalidArgumentError(
                f"The retention window must be a non-negative number ; {retention_window!r} "
                f"({type(retention_window).__name__}) given.",
                field="retention_window",
                value=retention_window,
            )
        if isinstance(freshness_window, bool) or not isinstance(freshness_window, int) or freshness_window <= 0:
            raise InvalidArgumentError(
                f"The freshness window must be a positive integer ; {freshness_window!r} "
                f"({type(freshness_window).__name__}) given.",
                field="freshness_window",
                value=freshness_window,
            )

        self._store = store
        self._table_name = table_name
        self._retention_window = retention_window
        self._freshness_window = freshness_window
        self._clock = clock
        self._evictions = EvictionScheduler(store, table_name)

    @classmethod
    def from_config(cls, store: NonceStore, config: LedgerSettings | None = None) -> NonceLedger:
        """Build a ledger from settings (the global config when omitted)."""
        config = config or get_config()
        return cls(
            store,
            table_name=config.table_name,
            retention_window=config.retention_window,
            freshness_window=config.freshness_window,
        )

    @property
    def store(self) -> NonceStore:
        return self._store

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def retention_window(self) -> float:
        return self._retention_window

    @property
    def freshness_window(self) -> int:
        return self._freshness_window

    @property
    def pending_evictions(self) -> int:
        """Number of records with a deletion still scheduled."""
        return len(self._evictions)

    async def __aenter__(self) -> NonceLedger:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def admit(self, nonce: str, timestamp: str | int) -> AdmissionResult:
        """Admit a request if its timestamp is fresh and its nonce unused.

        On acceptance the nonce is recorded and its eviction scheduled.
        Rejections and storage failures are returned, not raised; retrying
        an accepted nonce yields a NONCE_REPLAYED rejection.

        Raises:
            InvalidArgumentError: If nonce is not a non-empty string or
                timestamp is not a valid timestamp. Raised before any I/O.
        """
        nonce = _check_nonce(nonce)
        stamp = str(to_timestamp(timestamp))

        if not is_fresh(stamp, self._freshness_window, clock=self._clock):
            return self._log(AdmissionResult.reject(nonce, stamp, RejectionReason.TIMESTAMP_EXPIRED))

        record = NonceRecord(value=nonce, timestamp=stamp)
        try:
            if await self._store.find(self._table_name, nonce):
                return self._log(AdmissionResult.reject(nonce, stamp, RejectionReason.NONCE_REPLAYED))
            inserted = await self._store.insert_if_absent(self._table_name, record)
        except Exception as e:  # noqa: BLE001 - every storage failure becomes a result
            return self._log(AdmissionResult.fail(nonce, stamp, _as_storage_error(e)))

        if not inserted:
            # Another admission claimed the nonce between our lookup and insert
            return self._log(AdmissionResult.reject(nonce, stamp, RejectionReason.NONCE_REPLAYED))

        self._evictions.schedule(record, self._retention_window)
        return self._log(AdmissionResult.accept(nonce, stamp))

    async def record(self, nonce: str, timestamp: str | int) -> AdmissionResult:
        """Mark a nonce as consumed without freshness or duplicate checks.

        Useful to pre-seed nonces. Inserting a value that is already stored
        fails with a ConflictError in the result.

        Raises:
            InvalidArgumentError: Same conditions as admit().
        """
        nonce = _check_nonce(nonce)
        stamp = str(to_timestamp(timestamp))

        record = NonceRecord(value=nonce, timestamp=stamp)
        try:
            await self._store.insert(self._table_name, record)
        except Exception as e:  # noqa: BLE001 - every storage failure becomes a result
            return self._log(AdmissionResult.fail(nonce, stamp, _as_storage_error(e)))

        self._evictions.schedule(record, self._retention_window)
        return self._log(AdmissionResult.accept(nonce, stamp))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def sweep(self) -> int:
        """Delete every record whose timestamp is older than the retention window.

        Age is measured from the presented timestamp, not from when the
        record was written. A nonce admitted with an age of ``a`` seconds is
        therefore swept up to ``a`` seconds before its per-record eviction
        would fire. Records with non-numeric timestamps are left alone.

        Returns:
            Number of records removed.

        Raises:
            StorageError: If the store fails.
        """
        cutoff = int(current_timestamp(self._clock) - self._retention_window)
        try:
            removed = await self._store.delete_older_than(self._table_name, cutoff)
        except StorageError:
            raise
        except Exception as e:
            raise _as_storage_error(e) from e
        if removed:
            logger.info("Swept %d expired nonces from %s", removed, self._table_name)
        return removed

    async def close(self) -> None:
        """Cancel pending evictions. Stored records are left in place."""
        await self._evictions.shutdown()

    def _log(self, result: AdmissionResult) -> AdmissionResult:
        extra = {"extra_data": result.to_dict()}
        if result.accepted:
            logger.debug("Nonce %s accepted", result.nonce, extra=extra)
        elif result.rejected:
            logger.info("Nonce %s rejected: %s", result.nonce, result.reason, extra=extra)
        else:
            logger.error("Nonce %s admission failed: %s", result.nonce, result.error, extra=extra)
        return result
