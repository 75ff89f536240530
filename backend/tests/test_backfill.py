"""Backfill walk termination."""

from __future__ import annotations

import threading

import pytest

from conftest import FakeLedgerSource, make_tx
from ledger_cache.core.errors import InvalidKey, NotFoundUpstream, StoreCommitAborted, TransientUpstream
from ledger_cache.hydrate.readers import read_transaction
from ledger_cache.index.maintainer import IndexMaintainer
from ledger_cache.ingest.backfill import BackfillCoordinator, BackfillState
from ledger_cache.ingest.blocklist import BlockList, TransactionFilter


def _history(count: int, account: str = "A") -> list:
    # Newest first, one transaction per ledger.
    return [make_tx(f"h{i}", 1000 - i, source=account) for i in range(count)]


@pytest.fixture
def coordinator(store, upstream: FakeLedgerSource):
    backfill = BackfillCoordinator(upstream, IndexMaintainer(store), page_limit=2, max_transactions=1000)
    yield backfill
    backfill.shutdown(wait=True)


@pytest.mark.parametrize("length", [0, 1, 4, 5])
def test_finite_history_ends_exhausted(coordinator, upstream: FakeLedgerSource, store, length: int) -> None:
    upstream.history["A"] = _history(length)
    report = coordinator.run("A")
    assert report.state is BackfillState.EXHAUSTED
    assert report.pages <= max(length, 1)
    assert report.transactions == length
    for tx in upstream.history["A"]:
        assert read_transaction(store, tx.hash) is not None


def test_overlap_stops_after_one_page(coordinator, upstream: FakeLedgerSource, store) -> None:
    upstream.history["A"] = _history(6)
    coordinator.maintainer.commit_history(upstream.history["A"][:2])
    report = coordinator.run("A")
    assert report.state is BackfillState.OVERLAP
    assert report.pages == 1
    assert upstream.calls["transactions_page"] == 1
    assert report.detail == "h0"


def test_overlap_midpage_keeps_newer_transactions(coordinator, upstream: FakeLedgerSource, store) -> None:
    upstream.history["A"] = _history(6)
    coordinator.maintainer.commit_history([upstream.history["A"][3]])
    report = coordinator.run("A")
    assert report.state is BackfillState.OVERLAP
    assert report.transactions == 3
    assert read_transaction(store, "h2") is not None
    assert read_transaction(store, "h4") is None


def test_limit_bounds_the_walk(store, upstream: FakeLedgerSource) -> None:
    upstream.history["A"] = _history(10)
    backfill = BackfillCoordinator(upstream, IndexMaintainer(store), page_limit=2, max_transactions=3)
    report = backfill.run("A")
    backfill.shutdown()
    assert report.state is BackfillState.LIMIT_REACHED
    assert report.transactions == 3
    assert read_transaction(store, "h3") is None


@pytest.mark.parametrize(
    "failure",
    [TransientUpstream("timeout"), NotFoundUpstream("gone"), InvalidKey("Horizon rejected request: bad")],
)
def test_fetch_failure_ends_failed(coordinator, upstream: FakeLedgerSource, failure) -> None:
    upstream.history["A"] = _history(3)
    upstream.failures["transactions_page"] = failure
    report = coordinator.run("A")
    assert report.state is BackfillState.FAILED
    assert report.pages == 0


def test_commit_abort_ends_failed(faulty_store, upstream: FakeLedgerSource) -> None:
    upstream.history["A"] = _history(3)
    faulty_store.fail_when = lambda path: path[-1] == "xdr"
    backfill = BackfillCoordinator(upstream, IndexMaintainer(faulty_store), page_limit=2)
    report = backfill.run("A")
    backfill.shutdown()
    assert report.state is BackfillState.FAILED
    assert "injected fault" in report.detail


def test_unindexable_hash_ends_failed(store, upstream: FakeLedgerSource) -> None:
    upstream.history["A"] = [make_tx("h0", 10), make_tx("bad hash", 9)]
    backfill = BackfillCoordinator(upstream, IndexMaintainer(store), page_limit=5)
    report = backfill.run("A")
    backfill.shutdown()
    assert report.state is BackfillState.FAILED
    assert report.pages == 1
    assert read_transaction(store, "h0") is None


def test_scheduled_walk_reports_failed_instead_of_crashing(store, upstream: FakeLedgerSource) -> None:
    upstream.history["A"] = _history(2)
    upstream.failures["transactions_page"] = InvalidKey("Horizon rejected request: bad")
    backfill = BackfillCoordinator(upstream, IndexMaintainer(store))
    future = backfill.schedule("A")
    report = future.result(timeout=5)
    backfill.shutdown(wait=True)
    assert report.state is BackfillState.FAILED
    assert not backfill.is_running("A")


def test_blocked_senders_are_not_written(store, upstream: FakeLedgerSource) -> None:
    upstream.history["A"] = [make_tx("ok", 10, source="A"), make_tx("bad", 9, source="GBLOCKED")]
    backfill = BackfillCoordinator(
        upstream,
        IndexMaintainer(store),
        tx_filter=TransactionFilter(BlockList(["GBLOCKED"])),
        page_limit=5,
    )
    report = backfill.run("A")
    backfill.shutdown()
    assert report.state is BackfillState.EXHAUSTED
    assert report.written == 1
    assert read_transaction(store, "bad") is None


def test_every_walk_starts_from_now(coordinator, upstream: FakeLedgerSource) -> None:
    upstream.history["A"] = _history(2)
    first = coordinator.run("A")
    second = coordinator.run("A")
    assert first.state is BackfillState.EXHAUSTED
    assert second.state is BackfillState.OVERLAP
    # Two pages for the first walk (the second one empty), one for the rewalk.
    assert upstream.calls["transactions_page"] == 3


def test_schedule_runs_in_background_once_per_account(coordinator, upstream: FakeLedgerSource) -> None:
    upstream.history["A"] = _history(1)
    upstream.gate = threading.Event()
    future = coordinator.schedule("A")
    assert future is not None
    assert coordinator.schedule("A") is None
    assert coordinator.run_now("A") is None
    upstream.gate.set()
    assert future.result(timeout=5).state is BackfillState.EXHAUSTED
    assert not coordinator.is_running("A")


def test_commit_abort_does_not_raise(store, upstream: FakeLedgerSource, monkeypatch) -> None:
    upstream.history["A"] = _history(1)
    maintainer = IndexMaintainer(store)

    def abort(transactions):
        raise StoreCommitAborted("busy")

    monkeypatch.setattr(maintainer, "commit_history", abort)
    backfill = BackfillCoordinator(upstream, maintainer)
    assert backfill.run("A").state is BackfillState.FAILED
    backfill.shutdown()
