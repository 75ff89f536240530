"""Test fixtures for the ledger cache."""

from __future__ import annotations

import sqlite3
import sys
import threading
from collections import Counter
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterator

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from ledger_cache.core.errors import NotFoundUpstream  # noqa: E402
from ledger_cache.db.codec import Path as KeyPath  # noqa: E402
from ledger_cache.db.tree import SQLiteTreeStore  # noqa: E402
from ledger_cache.models.entities import (  # noqa: E402
    AccountSnapshot,
    LedgerRecord,
    TransactionPage,
    TransactionRecord,
    Trustline,
)


class FakeLedgerSource:
    """Scriptable in-memory upstream with per-kind call counters and injectable failures."""

    def __init__(self) -> None:
        self.accounts: dict[str, AccountSnapshot] = {}
        self.ledgers: dict[int, LedgerRecord] = {}
        self.ledger_transactions: dict[int, list[TransactionRecord]] = {}
        self.transactions: dict[str, TransactionRecord] = {}
        self.history: dict[str, list[TransactionRecord]] = {}
        self.stream: list[LedgerRecord] = []
        self.stream_error: Exception | None = None
        self.stream_cursors: list[str] = []
        self.failures: dict[str, Exception] = {}
        self.calls: Counter[str] = Counter()
        self.gate: threading.Event | None = None

    def _enter(self, kind: str) -> None:
        self.calls[kind] += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        failure = self.failures.get(kind)
        if failure is not None:
            raise failure

    def fetch_account(self, account_id: str) -> AccountSnapshot:
        self._enter("account")
        if account_id not in self.accounts:
            raise NotFoundUpstream("account not found upstream")
        snapshot = self.accounts[account_id]
        return replace(snapshot, trustlines=[replace(t) for t in snapshot.trustlines])

    def fetch_ledger(self, sequence: int) -> LedgerRecord:
        self._enter("ledger")
        if sequence not in self.ledgers:
            raise NotFoundUpstream("ledger not found upstream")
        return replace(self.ledgers[sequence])

    def fetch_transaction(self, tx_hash: str) -> TransactionRecord:
        self._enter("transaction")
        if tx_hash not in self.transactions:
            raise NotFoundUpstream("transaction not found upstream")
        return replace(self.transactions[tx_hash])

    def fetch_ledger_transactions(self, sequence: int) -> list[TransactionRecord]:
        self._enter("ledger_transactions")
        return [replace(tx) for tx in self.ledger_transactions.get(sequence, [])]

    def fetch_transactions_page(self, account_id: str, cursor: str = "now", limit: int = 200) -> TransactionPage:
        self._enter("transactions_page")
        records = self.history.get(account_id, [])
        start = 0 if cursor in (None, "now") else int(cursor)
        page = records[start : start + limit]
        next_cursor = str(start + len(page)) if page else None
        return TransactionPage(records=[replace(tx) for tx in page], next_cursor=next_cursor)

    def stream_ledgers(self, cursor: str = "now") -> Iterator[LedgerRecord]:
        self._enter("stream")
        self.stream_cursors.append(cursor)
        for ledger in self.stream:
            yield replace(ledger)
        if self.stream_error is not None:
            raise self.stream_error

    # Scenario helpers -------------------------------------------------

    def add_ledger(self, sequence: int, transactions: list[TransactionRecord] | None = None) -> LedgerRecord:
        transactions = transactions or []
        ledger = LedgerRecord(
            sequence=sequence,
            closed_at=f"2024-05-01T12:{sequence % 60:02d}:00Z",
            total_tx_count=len(transactions),
            paging_token=str(sequence * 4096),
        )
        self.ledgers[sequence] = ledger
        self.ledger_transactions[sequence] = list(transactions)
        for tx in transactions:
            self.transactions[tx.hash] = tx
        return ledger


class FaultyStore(SQLiteTreeStore):
    """SQLite store that fails any write whose path matches ``fail_when``."""

    def __init__(self, db_path: Path, fail_when: Callable[[KeyPath], bool] | None = None) -> None:
        super().__init__(db_path)
        self.fail_when = fail_when

    def write(self, path: KeyPath, value: object) -> None:
        if self.fail_when is not None and self.fail_when(path):
            raise sqlite3.OperationalError(f"injected fault writing {'/'.join(path)}")
        super().write(path, value)


def make_tx(tx_hash: str, sequence: int, source: str = "GSENDER", envelope: str | None = None) -> TransactionRecord:
    return TransactionRecord(
        hash=tx_hash,
        ledger_sequence=sequence,
        envelope=envelope or f"AAAA{tx_hash}",
        source_account=source,
        paging_token=f"{sequence}-{tx_hash}",
    )


def make_account(account_id: str = "A", balance: str = "500000000", sequence: int = 42) -> AccountSnapshot:
    return AccountSnapshot(
        account_id=account_id,
        balance=balance,
        sequence_number=sequence,
        last_modified=1714564800,
        trustlines=[Trustline(asset_code="USDC", issuer="GISSUER", balance="12.5000000", limit="1000.0000000")],
    )


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep configuration from leaking between tests."""
    monkeypatch.setenv("LDGC_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.delenv("LDGC_CONFIG", raising=False)
    monkeypatch.delenv("LDGC_API_KEY", raising=False)

    from ledger_cache.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SQLiteTreeStore]:
    tree = SQLiteTreeStore(tmp_path / "ledger.db")
    tree.ensure_schema()
    yield tree
    tree.close()


@pytest.fixture
def faulty_store(tmp_path: Path) -> Iterator[FaultyStore]:
    tree = FaultyStore(tmp_path / "faulty.db")
    tree.ensure_schema()
    yield tree
    tree.close()


@pytest.fixture
def upstream() -> FakeLedgerSource:
    return FakeLedgerSource()


@pytest.fixture
def settings(tmp_path: Path):
    from ledger_cache.core.config import Settings

    return Settings(db_path=tmp_path / "ledger.db", backfill_enabled=False, log_json=False)


@pytest.fixture
def services(settings, store: SQLiteTreeStore, upstream: FakeLedgerSource):
    from ledger_cache.services import build_services

    built = build_services(settings, store=store, upstream=upstream)
    yield built
    built.close()


@pytest.fixture
def client(services):
    from fastapi.testclient import TestClient

    from ledger_cache.app import create_app

    with TestClient(create_app(services=services)) as test_client:
        yield test_client
