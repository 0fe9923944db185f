"""Tests for nonce_ledger.ledger.

asyncio_mode = auto (pyproject.toml), so no @pytest.mark.asyncio needed.
"""

from __future__ import annotations

import asyncio

import pytest

from nonce_ledger.config import LedgerSettings
from nonce_ledger.exceptions import ConflictError, InvalidArgumentError, StorageError
from nonce_ledger.ledger import AdmissionGate, NonceLedger
from nonce_ledger.results import AdmissionStatus, RejectionReason
from nonce_ledger.storage.base import NonceRecord
from nonce_ledger.storage.memory import MemoryNonceStore

NONCE = "72eb4648a1ea65ae644dc415bf7318cf"
FIXTURE_TIMESTAMP = "1530626551"
OLD_TIMESTAMP = "1430626551"

# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    @pytest.mark.parametrize("value", [None, "text", 0, True, False, [], {}, object()])
    def test_rejects_invalid_store(self, value):
        with pytest.raises(InvalidArgumentError, match="The store argument must implement NonceStore"):
            NonceLedger(value)

    @pytest.mark.parametrize("value", [0, [], {}, lambda: None, None])
    def test_rejects_non_string_table_name(self, store, value):
        with pytest.raises(InvalidArgumentError, match="The table name must be a string"):
            NonceLedger(store, value)

    @pytest.mark.parametrize("value", ["", "nonce store", "nonces; DROP TABLE x", "a.b.c", "1table"])
    def test_rejects_unsafe_table_name(self, store, value):
        with pytest.raises(InvalidArgumentError, match="Invalid table name"):
            NonceLedger(store, value)

    @pytest.mark.parametrize("value", [lambda: None, [], {}, "value", -150, True, None])
    def test_rejects_invalid_retention_window(self, store, value):
        with pytest.raises(InvalidArgumentError, match="The retention window must be a non-negative number"):
            NonceLedger(store, "nonce_store", value)

    @pytest.mark.parametrize("value", [lambda: None, [], "value", -150, 0, 2.5, True])
    def test_rejects_invalid_freshness_window(self, store, value):
        with pytest.raises(InvalidArgumentError, match="The freshness window must be a positive integer"):
            NonceLedger(store, "nonce_store", 300, value)

    def test_defaults(self, store):
        ledger = NonceLedger(store)
        assert ledger.store is store
        assert ledger.table_name == "nonce_store"
        assert ledger.retention_window == 5400
        assert ledger.freshness_window == 5400
        assert ledger.pending_evictions == 0

    def test_custom_values(self, store):
        ledger = NonceLedger(store, "custom_table_name", 15 * 60, 2 * 60)
        assert ledger.table_name == "custom_table_name"
        assert ledger.retention_window == 900
        assert ledger.freshness_window == 120

    def test_fractional_and_zero_retention_allowed(self, store):
        assert NonceLedger(store, retention_window=0.01).retention_window == 0.01
        assert NonceLedger(store, retention_window=0).retention_window == 0

    def test_schema_qualified_table_name(self, store):
        assert NonceLedger(store, "lti.nonce_store").table_name == "lti.nonce_store"

    def test_state_is_read_only(self, store):
        ledger = NonceLedger(store)
        with pytest.raises(AttributeError):
            ledger.table_name = "other"  # type: ignore[misc]
        with pytest.raises(AttributeError):
            ledger.retention_window = 1  # type: ignore[misc]

    def test_from_config(self, store):
        config = LedgerSettings(table_name="launch_nonces", retention_window=600, freshness_window=300)
        ledger = NonceLedger.from_config(store, config)
        assert ledger.table_name == "launch_nonces"
        assert ledger.retention_window == 600
        assert ledger.freshness_window == 300

    def test_satisfies_admission_gate(self, store):
        assert isinstance(NonceLedger(store), AdmissionGate)


# ============================================================================
# admit()
# ============================================================================


class TestAdmitArguments:
    @pytest.mark.parametrize("value", [None, [], {}, 42, lambda: None, b"bytes"])
    async def test_rejects_non_string_nonce_before_io(self, ledger, store, value):
        with pytest.raises(InvalidArgumentError, match="The nonce argument must be a string"):
            await ledger.admit(value, FIXTURE_TIMESTAMP)
        assert store.calls == []

    async def test_rejects_empty_nonce(self, ledger, store):
        with pytest.raises(InvalidArgumentError, match="must not be empty"):
            await ledger.admit("", FIXTURE_TIMESTAMP)
        assert store.calls == []

    @pytest.mark.parametrize("value", ["not_a_timestamp", None, -1, 0, 12.5, True])
    async def test_rejects_invalid_timestamp_before_io(self, ledger, store, value):
        with pytest.raises(InvalidArgumentError, match="The timestamp argument must be a valid timestamp"):
            await ledger.admit(NONCE, value)
        assert store.calls == []


class TestAdmit:
    async def test_accepts_new_nonce(self, ledger, store):
        result = await ledger.admit(NONCE, FIXTURE_TIMESTAMP)

        assert result.status is AdmissionStatus.ACCEPTED
        assert result.as_completion() == (None, True)
        assert await store.find("nonce_store", NONCE) == [NonceRecord(NONCE, FIXTURE_TIMESTAMP)]
        assert ledger.pending_evictions == 1

    async def test_stores_timestamp_as_decimal_string(self, ledger, store):
        await ledger.admit(NONCE, int(FIXTURE_TIMESTAMP))
        [record] = await store.find("nonce_store", NONCE)
        assert record.timestamp == FIXTURE_TIMESTAMP

    async def test_rejects_expired_timestamp_without_touching_store(self, ledger, store):
        result = await ledger.admit(NONCE, OLD_TIMESTAMP)

        assert result.status is AdmissionStatus.REJECTED
        assert result.reason is RejectionReason.TIMESTAMP_EXPIRED
        assert str(result.to_error()) == "Timestamp '1430626551' is too old."
        assert store.calls == []
        assert await store.count("nonce_store") == 0

    async def test_rejects_replayed_nonce(self, ledger, clock):
        first = await ledger.admit(NONCE, FIXTURE_TIMESTAMP)
        clock.advance(30)
        second = await ledger.admit(NONCE, str(int(FIXTURE_TIMESTAMP) + 30))

        assert first.accepted
        assert second.reason is RejectionReason.NONCE_REPLAYED
        assert str(second.to_error()) == f"Nonce '{NONCE}' already used."
        assert ledger.pending_evictions == 1

    async def test_rejects_nonce_already_in_store(self, ledger, store):
        await store.insert("nonce_store", NonceRecord(NONCE, FIXTURE_TIMESTAMP))
        result = await ledger.admit(NONCE, FIXTURE_TIMESTAMP)

        assert result.reason is RejectionReason.NONCE_REPLAYED
        assert [name for name, _ in store.calls] == ["insert", "find"]

    async def test_retry_never_double_accepts(self, ledger):
        results = [await ledger.admit(NONCE, FIXTURE_TIMESTAMP) for _ in range(3)]
        assert [r.accepted for r in results] == [True, False, False]

    async def test_concurrent_admissions_accept_once(self, ledger):
        results = await asyncio.gather(*(ledger.admit(NONCE, FIXTURE_TIMESTAMP) for _ in range(5)))
        assert sum(r.accepted for r in results) == 1
        assert all(r.reason is RejectionReason.NONCE_REPLAYED for r in results if not r.accepted)

    async def test_different_nonces_are_independent(self, ledger):
        assert (await ledger.admit("nonce-a", FIXTURE_TIMESTAMP)).accepted
        assert (await ledger.admit("nonce-b", FIXTURE_TIMESTAMP)).accepted

    async def test_future_timestamp_accepted(self, ledger):
        result = await ledger.admit(NONCE, str(int(FIXTURE_TIMESTAMP) + 86400))
        assert result.accepted

    async def test_missing_table_yields_failure(self, store_factory, clock):
        store = store_factory(tables=["nonce_store"])
        ledger = NonceLedger(store, "table_not_exist", clock=clock)

        result = await ledger.admit(NONCE, FIXTURE_TIMESTAMP)

        assert result.status is AdmissionStatus.FAILED
        assert isinstance(result.error, StorageError)
        assert result.as_completion() == (result.error, False)
        assert ledger.pending_evictions == 0

    async def test_lost_race_is_reported_as_replay(self, clock):
        class RacingStore(MemoryNonceStore):
            async def insert_if_absent(self, table, record):
                # Another process inserted between find() and this call
                await super().insert_if_absent(table, record)
                return False

        ledger = NonceLedger(RacingStore(tables=["nonce_store"]), clock=clock)
        result = await ledger.admit(NONCE, FIXTURE_TIMESTAMP)

        assert result.reason is RejectionReason.NONCE_REPLAYED
        assert ledger.pending_evictions == 0

    async def test_foreign_exception_wrapped_as_storage_error(self, clock):
        class BrokenStore(MemoryNonceStore):
            async def find(self, table, value):
                raise ConnectionResetError("connection reset by peer")

        ledger = NonceLedger(BrokenStore(tables=["nonce_store"]), clock=clock)
        result = await ledger.admit(NONCE, FIXTURE_TIMESTAMP)

        assert result.failed
        assert isinstance(result.error, StorageError)
        assert isinstance(result.error.__cause__, ConnectionResetError)

    async def test_fixture_nonce_accepted_near_its_timestamp(self, store):
        ledger = NonceLedger(store, freshness_window=5400, clock=lambda: 1530626551 + 60)
        try:
            assert (await ledger.admit(NONCE, 1530626551)).accepted
        finally:
            await ledger.close()

    async def test_fixture_nonce_expired_today(self, store):
        ledger = NonceLedger(store, freshness_window=5400)
        result = await ledger.admit(NONCE, 1530626551)
        assert result.reason is RejectionReason.TIMESTAMP_EXPIRED


# ============================================================================
# record()
# ============================================================================


class TestRecord:
    @pytest.mark.parametrize("value", [None, [], {}, 42, lambda: None])
    async def test_rejects_invalid_nonce(self, ledger, store, value):
        with pytest.raises(InvalidArgumentError, match="The nonce argument must be a string"):
            await ledger.record(value, FIXTURE_TIMESTAMP)
        assert store.calls == []

    async def test_rejects_invalid_timestamp(self, ledger, store):
        with pytest.raises(InvalidArgumentError, match="'not_a_timestamp' \\(str\\) given"):
            await ledger.record(NONCE, "not_a_timestamp")
        assert store.calls == []

    async def test_stores_nonce(self, ledger, store):
        result = await ledger.record(NONCE, FIXTURE_TIMESTAMP)

        assert result.as_completion() == (None, True)
        assert await store.find("nonce_store", NONCE) == [NonceRecord(NONCE, FIXTURE_TIMESTAMP)]
        assert ledger.pending_evictions == 1

    async def test_skips_freshness_and_lookup(self, ledger, store):
        result = await ledger.record(NONCE, OLD_TIMESTAMP)

        assert result.accepted
        assert [name for name, _ in store.calls] == ["insert"]

    async def test_duplicate_is_a_storage_failure(self, ledger):
        await ledger.record(NONCE, FIXTURE_TIMESTAMP)
        result = await ledger.record(NONCE, FIXTURE_TIMESTAMP)

        assert result.failed
        assert isinstance(result.error, ConflictError)

    async def test_missing_table_yields_failure(self, store_factory):
        ledger = NonceLedger(store_factory(), "table_not_exist")
        result = await ledger.record(NONCE, FIXTURE_TIMESTAMP)
        error, accepted = result.as_completion()
        assert accepted is False
        assert isinstance(error, StorageError)


# ============================================================================
# sweep() / close()
# ============================================================================


class TestMaintenance:
    async def test_sweep_removes_records_past_retention(self, store, clock):
        ledger = NonceLedger(store, retention_window=600, clock=clock)
        now = int(clock())
        await store.insert("nonce_store", NonceRecord("old", str(now - 601)))
        await store.insert("nonce_store", NonceRecord("edge", str(now - 600)))
        await store.insert("nonce_store", NonceRecord("new", str(now)))

        assert await ledger.sweep() == 1
        assert await store.find("nonce_store", "old") == []
        assert await store.count("nonce_store") == 2

    async def test_sweep_raises_storage_errors(self, store_factory):
        ledger = NonceLedger(store_factory(), "table_not_exist")
        with pytest.raises(StorageError):
            await ledger.sweep()

    async def test_sweep_measures_age_from_presented_timestamp(self, store, clock):
        ledger = NonceLedger(store, retention_window=600, freshness_window=5400, clock=clock)
        presented = str(int(clock()) - 500)
        assert (await ledger.admit(NONCE, presented)).accepted

        # Written 101 s ago, but presented 601 s ago
        clock.advance(101)

        assert await ledger.sweep() == 1
        assert await store.find("nonce_store", NONCE) == []
        await ledger.close()

    async def test_sweep_leaves_non_numeric_timestamps(self, store, clock):
        ledger = NonceLedger(store, retention_window=600, clock=clock)
        await store.insert("nonce_store", NonceRecord("legacy", "not-a-timestamp"))
        await store.insert("nonce_store", NonceRecord("old", "100"))

        assert await ledger.sweep() == 1
        assert await store.find("nonce_store", "legacy") == [NonceRecord("legacy", "not-a-timestamp")]

    async def test_close_cancels_pending_evictions(self, store, clock):
        ledger = NonceLedger(store, clock=clock)
        await ledger.admit("a", FIXTURE_TIMESTAMP)
        await ledger.admit("b", FIXTURE_TIMESTAMP)
        assert ledger.pending_evictions == 2

        await ledger.close()

        assert ledger.pending_evictions == 0
        # Records stay until swept
        assert await store.count("nonce_store") == 2

    async def test_async_context_manager(self, store, clock):
        async with NonceLedger(store, clock=clock) as ledger:
            await ledger.admit(NONCE, FIXTURE_TIMESTAMP)
            assert ledger.pending_evictions == 1
        assert ledger.pending_evictions == 0
