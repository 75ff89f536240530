"""Index maintainer invariants."""

from __future__ import annotations

import random
import threading

import pytest

from conftest import make_account, make_tx
from ledger_cache.core.errors import StoreCommitAborted
from ledger_cache.db.codec import (
    account_field_path,
    hash_index_path,
    hydrated_slot,
    ledger_field_path,
    ledger_tx_root,
    tracked_path,
    tx_slot_path,
)
from ledger_cache.hydrate.readers import read_account, read_ledger, read_transaction
from ledger_cache.index.maintainer import CommitResult, IndexMaintainer
from ledger_cache.models.entities import LedgerRecord


def _ledger(sequence: int, total: int = 2) -> LedgerRecord:
    return LedgerRecord(sequence=sequence, closed_at="2024-05-01T12:00:00Z", total_tx_count=total)


def _assert_hash_index_consistent(store) -> None:
    for tx_hash in store.children(("Stellar", "tx_hash")):
        sequence = int(store.read(hash_index_path(tx_hash)))
        root = ledger_tx_root(sequence)
        held = [store.read(root + (slot, "hash")) for slot in store.children(root) if slot != "hydrated"]
        held += list(store.children(root + ("hydrated",)))
        assert tx_hash in held, f"{tx_hash} indexed to {sequence} but not held there"


def test_commit_account_writes_snapshot_and_tracked_marker(store) -> None:
    maintainer = IndexMaintainer(store)
    assert maintainer.commit_account(make_account()) is CommitResult.COMMITTED
    assert store.read(account_field_path("A", "balance")) == "500000000"
    assert store.read(account_field_path("A", "seq_num")) == "42"
    assert store.read(tracked_path("A")) == "1"
    snapshot = read_account(store, "A")
    assert snapshot.trustlines[0].asset == "USDC:GISSUER"


def test_account_is_overwritten_wholesale(store) -> None:
    maintainer = IndexMaintainer(store)
    maintainer.commit_account(make_account())
    replacement = make_account(balance="1", sequence=43)
    replacement.trustlines = []
    maintainer.commit_account(replacement)
    snapshot = read_account(store, "A")
    assert snapshot.balance == "1"
    assert snapshot.sequence_number == 43
    assert snapshot.trustlines == []


def test_account_commit_is_atomic(faulty_store) -> None:
    maintainer = IndexMaintainer(faulty_store)
    faulty_store.fail_when = lambda path: path[-1] == "seq_num"
    with pytest.raises(StoreCommitAborted):
        maintainer.commit_account(make_account())
    assert read_account(faulty_store, "A") is None
    assert not faulty_store.exists(tracked_path("A"))


def test_failed_rehydration_keeps_previous_snapshot(faulty_store) -> None:
    maintainer = IndexMaintainer(faulty_store)
    maintainer.commit_account(make_account(balance="100", sequence=1))
    faulty_store.fail_when = lambda path: path[-1] == "last_modified"
    with pytest.raises(StoreCommitAborted):
        maintainer.commit_account(make_account(balance="200", sequence=2))
    snapshot = read_account(faulty_store, "A")
    assert (snapshot.balance, snapshot.sequence_number) == ("100", 1)
    assert len(snapshot.trustlines) == 1


def test_commit_ledger_advances_latest_last(store) -> None:
    maintainer = IndexMaintainer(store)
    txs = [make_tx("t1", 100), make_tx("t2", 100)]
    assert maintainer.commit_ledger(_ledger(100), txs) is CommitResult.COMMITTED
    assert maintainer.latest() == 100
    assert store.read(tx_slot_path(100, 0) + ("hash",)) == "t1"
    assert store.read(tx_slot_path(100, 1) + ("hash",)) == "t2"
    assert store.read(ledger_field_path(100, "tx_next")) == "2"
    assert read_ledger(store, 100).filtered_tx_count == 2
    _assert_hash_index_consistent(store)


def test_commit_ledger_twice_reports_present(store) -> None:
    maintainer = IndexMaintainer(store)
    maintainer.commit_ledger(_ledger(100), [make_tx("t1", 100)])
    assert maintainer.commit_ledger(_ledger(100), [make_tx("t9", 100)]) is CommitResult.ALREADY_PRESENT
    assert not store.exists(hash_index_path("t9"))


def test_aborted_ledger_leaves_nothing_and_keeps_latest(faulty_store) -> None:
    maintainer = IndexMaintainer(faulty_store)
    maintainer.commit_ledger(_ledger(100), [make_tx("t1", 100), make_tx("t2", 100)])
    faulty_store.fail_when = lambda path: path[:3] == ("Stellar", "ledger", "101") and path[-1] == "hash"
    with pytest.raises(StoreCommitAborted):
        maintainer.commit_ledger(_ledger(101), [make_tx("t3", 101)])
    assert maintainer.latest() == 100
    assert read_ledger(faulty_store, 101) is None
    assert not faulty_store.exists(hash_index_path("t3"))


def test_ledger_rejects_foreign_transactions(store) -> None:
    maintainer = IndexMaintainer(store)
    with pytest.raises(ValueError):
        maintainer.commit_ledger(_ledger(100), [make_tx("t1", 99)])


def test_latest_pointer_is_monotonic(store) -> None:
    maintainer = IndexMaintainer(store)
    values = list(range(1, 60))
    random.Random(7).shuffle(values)

    def advance(chunk: list[int]) -> None:
        for value in chunk:
            maintainer.advance_latest(value)
            observed = maintainer.latest()
            assert observed is not None and observed >= value

    threads = [threading.Thread(target=advance, args=(values[i::4],)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert maintainer.latest() == max(values)
    maintainer.advance_latest(3)
    assert maintainer.latest() == max(values)


def test_history_uses_counter_and_skips_duplicates(store) -> None:
    maintainer = IndexMaintainer(store)
    maintainer.commit_ledger(_ledger(100), [make_tx("t1", 100)])
    maintainer.commit_history([make_tx("t1", 100), make_tx("t5", 100)])
    assert store.read(ledger_field_path(100, "tx_next")) == "2"
    assert store.read(tx_slot_path(100, 1) + ("hash",)) == "t5"
    assert list(store.children(ledger_tx_root(100))) == ["0", "1"]
    _assert_hash_index_consistent(store)


def test_history_does_not_make_a_ledger_present(store) -> None:
    maintainer = IndexMaintainer(store)
    maintainer.commit_history([make_tx("t7", 300)])
    assert read_ledger(store, 300) is None
    assert read_transaction(store, "t7").ledger_sequence == 300


def test_placed_transaction_is_skipped_when_indexed(store) -> None:
    maintainer = IndexMaintainer(store)
    maintainer.commit_ledger(_ledger(100), [make_tx("t1", 100)])
    assert maintainer.commit_transaction(make_tx("t1", 100)) is CommitResult.ALREADY_PRESENT
    assert not store.exists(tx_slot_path(100, hydrated_slot("t1")))


def test_dense_append_replaces_hydrated_copy(store) -> None:
    maintainer = IndexMaintainer(store)
    maintainer.commit_transaction(make_tx("t1", 100))
    assert read_transaction(store, "t1").slot == "hydrated/t1"
    maintainer.commit_ledger(_ledger(100), [make_tx("t1", 100)])
    assert not store.exists(tx_slot_path(100, hydrated_slot("t1")))
    assert read_transaction(store, "t1").slot == "0"
    _assert_hash_index_consistent(store)
