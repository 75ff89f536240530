"""Read-through cache over the local store.

For every key kind the engine looks locally first and only on a miss goes to
the upstream source, persists what it got through the index maintainer and
re-reads. Concurrent misses on one key share a single upstream call.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from ledger_cache.core.errors import (
    ConsistencyViolation,
    InvalidKey,
    LedgerCacheError,
    NotFound,
    NothingCommitted,
)
from ledger_cache.core.logging import get_logger
from ledger_cache.core.metrics import HYDRATIONS, SINGLEFLIGHT_JOINS
from ledger_cache.db.codec import parse_sequence, validate_account_id, validate_hash
from ledger_cache.db.tree import TreeStore
from ledger_cache.hydrate.readers import read_account, read_ledger, read_transaction
from ledger_cache.hydrate.singleflight import SingleFlight
from ledger_cache.index.maintainer import CommitResult, IndexMaintainer
from ledger_cache.ingest.backfill import BackfillCoordinator
from ledger_cache.ingest.blocklist import TransactionFilter
from ledger_cache.models.entities import AccountSnapshot, LedgerRecord, TransactionRecord
from ledger_cache.upstream.base import LedgerSource

logger = get_logger(__name__)

R = TypeVar("R")

KEY_KINDS = ("account", "ledger", "transaction")


class HydrationEngine:
    def __init__(
        self,
        store: TreeStore,
        upstream: LedgerSource,
        maintainer: IndexMaintainer,
        tx_filter: TransactionFilter | None = None,
        backfill: BackfillCoordinator | None = None,
    ) -> None:
        self.store = store
        self.upstream = upstream
        self.maintainer = maintainer
        self.tx_filter = tx_filter
        self.backfill = backfill
        self._flights: SingleFlight[object] = SingleFlight()

    def resolve(self, kind: str, key: str) -> AccountSnapshot | LedgerRecord | TransactionRecord:
        """Return the record for ``key``, hydrating it on a local miss."""
        if kind == "account":
            return self.account(key)
        if kind == "ledger":
            return self.ledger(parse_sequence(key))
        if kind == "transaction":
            return self.transaction(key)
        raise InvalidKey(f"unknown key kind {kind!r}; expected one of {', '.join(KEY_KINDS)}")

    # Accounts ---------------------------------------------------------

    def account(self, account_id: str) -> AccountSnapshot:
        validate_account_id(account_id)
        return self._resolve(
            "account",
            account_id,
            lambda: read_account(self.store, account_id),
            lambda: self._hydrate_account(account_id),
        )

    def refresh_account(self, account_id: str) -> AccountSnapshot:
        """Hydrate an account even when it is already present, replacing the stored snapshot."""
        validate_account_id(account_id)

        def reread() -> AccountSnapshot | None:
            return read_account(self.store, account_id)

        # A refresh always fetches, so it never joins a read-through flight for the same account.
        snapshot, shared = self._flights.do(
            ("account_refresh", account_id),
            lambda: self._miss("account", account_id, reread, lambda: self._hydrate_account(account_id)),
        )
        if shared:
            SINGLEFLIGHT_JOINS.labels(kind="account").inc()
        return snapshot

    def _hydrate_account(self, account_id: str) -> CommitResult:
        snapshot = self.upstream.fetch_account(account_id)
        if snapshot.account_id != account_id:
            raise ConsistencyViolation(f"upstream returned account {snapshot.account_id} for {account_id}")
        result = self.maintainer.commit_account(snapshot)
        self._schedule_backfill(account_id)
        return result

    def _schedule_backfill(self, account_id: str) -> None:
        if self.backfill is None:
            return
        try:
            self.backfill.schedule(account_id)
        except RuntimeError as exc:
            logger.warning("Could not schedule backfill for %s: %s", account_id, exc)

    # Ledgers ----------------------------------------------------------

    def ledger(self, sequence: int) -> LedgerRecord:
        return self._resolve(
            "ledger",
            sequence,
            lambda: read_ledger(self.store, sequence),
            lambda: self._hydrate_ledger(sequence),
        )

    def _hydrate_ledger(self, sequence: int) -> CommitResult:
        ledger = self.upstream.fetch_ledger(sequence)
        if ledger.sequence != sequence:
            raise ConsistencyViolation(f"upstream returned ledger {ledger.sequence} for {sequence}")
        transactions = self.upstream.fetch_ledger_transactions(sequence)
        if self.tx_filter is not None:
            transactions = self.tx_filter.apply(transactions)
        return self.maintainer.commit_ledger(ledger, transactions, advance_latest=True)

    def latest_ledger(self) -> LedgerRecord:
        """The ledger named by the latest pointer. Never hydrates."""
        sequence = self.maintainer.latest()
        if sequence is None:
            raise NothingCommitted("no ledger has been committed yet")
        ledger = read_ledger(self.store, sequence)
        if ledger is None:
            logger.critical("Latest pointer names ledger %s, which is not present", sequence)
            raise ConsistencyViolation(f"latest pointer names missing ledger {sequence}")
        return ledger

    # Transactions -----------------------------------------------------

    def transaction(self, tx_hash: str) -> TransactionRecord:
        validate_hash(tx_hash)
        return self._resolve(
            "transaction",
            tx_hash,
            lambda: read_transaction(self.store, tx_hash),
            lambda: self._hydrate_transaction(tx_hash),
        )

    def _hydrate_transaction(self, tx_hash: str) -> CommitResult:
        tx = self.upstream.fetch_transaction(tx_hash)
        if tx.hash != tx_hash:
            raise ConsistencyViolation(f"upstream returned transaction {tx.hash} for {tx_hash}")
        if self.tx_filter is not None and self.tx_filter.blocklist.is_blocked(tx.source_account):
            raise NotFound(f"transaction {tx_hash} not found")
        return self.maintainer.commit_transaction(tx)

    # Internal helpers -------------------------------------------------

    def _resolve(
        self,
        kind: str,
        key: object,
        read_local: Callable[[], R | None],
        fetch_and_commit: Callable[[], CommitResult],
    ) -> R:
        record = read_local()
        if record is not None:
            HYDRATIONS.labels(kind=kind, outcome="hit").inc()
            return record

        def leader() -> R:
            # Another caller may have committed between our miss and taking the flight.
            existing = read_local()
            if existing is not None:
                HYDRATIONS.labels(kind=kind, outcome="hit").inc()
                return existing
            return self._miss(kind, key, read_local, fetch_and_commit)

        record, shared = self._flights.do((kind, key), leader)
        if shared:
            SINGLEFLIGHT_JOINS.labels(kind=kind).inc()
        return record

    def _miss(
        self,
        kind: str,
        key: object,
        read_local: Callable[[], R | None],
        fetch_and_commit: Callable[[], CommitResult],
    ) -> R:
        try:
            result = fetch_and_commit()
        except NotFound:
            HYDRATIONS.labels(kind=kind, outcome="not_found").inc()
            raise
        except LedgerCacheError:
            HYDRATIONS.labels(kind=kind, outcome="error").inc()
            raise
        HYDRATIONS.labels(kind=kind, outcome=result.value).inc()
        logger.info(
            "Hydrated %s %s (%s)",
            kind,
            key,
            result.value,
            extra={"ctx_kind": kind, "ctx_key": key, "ctx_outcome": result.value},
        )
        return self._reread(kind, key, read_local)

    @staticmethod
    def _reread(kind: str, key: object, read_local: Callable[[], R | None]) -> R:
        record = read_local()
        if record is None:
            logger.critical(
                "Re-read of %s %s missed after a successful commit",
                kind,
                key,
                extra={"ctx_kind": kind, "ctx_key": key},
            )
            raise ConsistencyViolation(f"{kind} {key} missing after commit")
        return record


__all__ = ["HydrationEngine", "KEY_KINDS"]
