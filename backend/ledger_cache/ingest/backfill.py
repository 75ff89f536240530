"""Best-effort walk of an account's upstream history, newest first.

A walk starts at "now" and pages backwards until one of four terminal
states fires:

* ``OVERLAP`` - a transaction on the page is already in the hash index, so
  local and upstream history have converged.
* ``EXHAUSTED`` - upstream has no older transactions.
* ``FAILED`` - a fetch or commit failed; the run is abandoned.
* ``LIMIT_REACHED`` - the per-run transaction ceiling was hit.

No cursor survives a run; the next trigger starts again from "now".
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum

from ledger_cache.core.errors import LedgerCacheError
from ledger_cache.core.logging import get_logger
from ledger_cache.core.metrics import BACKFILL_RUNS
from ledger_cache.index.maintainer import IndexMaintainer
from ledger_cache.ingest.blocklist import TransactionFilter
from ledger_cache.models.entities import TransactionRecord
from ledger_cache.upstream.base import LedgerSource

logger = get_logger(__name__)


class BackfillState(str, Enum):
    WALKING = "walking"
    OVERLAP = "overlap"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    LIMIT_REACHED = "limit_reached"


@dataclass(slots=True)
class BackfillReport:
    account_id: str
    state: BackfillState = BackfillState.WALKING
    pages: int = 0
    transactions: int = 0
    written: int = 0
    detail: str | None = None


class BackfillCoordinator:
    """Run history walks inline or as fire-and-forget background tasks."""

    def __init__(
        self,
        upstream: LedgerSource,
        maintainer: IndexMaintainer,
        tx_filter: TransactionFilter | None = None,
        max_transactions: int = 1000,
        page_limit: int = 200,
        workers: int = 2,
    ) -> None:
        self.upstream = upstream
        self.maintainer = maintainer
        self.tx_filter = tx_filter
        self.max_transactions = max_transactions
        self.page_limit = page_limit
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="backfill")
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def schedule(self, account_id: str) -> Future[BackfillReport] | None:
        """Start a background walk unless one is already running for the account."""
        if not self._claim(account_id):
            return None
        try:
            return self._executor.submit(self._run_scheduled, account_id)
        except RuntimeError:
            self._release(account_id)
            raise

    def run_now(self, account_id: str) -> BackfillReport | None:
        """Walk in the calling thread; ``None`` when a walk for the account is already running."""
        if not self._claim(account_id):
            return None
        try:
            return self.run(account_id)
        finally:
            self._release(account_id)

    def is_running(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._active

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def _run_scheduled(self, account_id: str) -> BackfillReport:
        try:
            return self.run(account_id)
        except Exception:
            logger.exception("Backfill for %s crashed", account_id)
            raise
        finally:
            self._release(account_id)

    def _claim(self, account_id: str) -> bool:
        with self._lock:
            if account_id in self._active:
                logger.debug("Backfill already running for %s", account_id)
                return False
            self._active.add(account_id)
            return True

    def _release(self, account_id: str) -> None:
        with self._lock:
            self._active.discard(account_id)

    def run(self, account_id: str) -> BackfillReport:
        """Walk backwards from "now" until a terminal state; fetch and commit errors end it as FAILED."""
        report = BackfillReport(account_id=account_id)
        cursor: str | None = "now"
        logger.info("Starting history backfill for %s", account_id)

        while report.state is BackfillState.WALKING:
            if report.transactions >= self.max_transactions:
                report.state = BackfillState.LIMIT_REACHED
                break
            try:
                page = self.upstream.fetch_transactions_page(account_id, cursor=cursor, limit=self.page_limit)
            except LedgerCacheError as exc:
                report.state = BackfillState.FAILED
                report.detail = str(exc)
                break
            if not page.records:
                report.state = BackfillState.EXHAUSTED
                break

            report.pages += 1
            try:
                kept = self._commit_page(page.records, report)
            except LedgerCacheError as exc:
                report.state = BackfillState.FAILED
                report.detail = str(exc)
                break
            report.written += kept

            if report.state is not BackfillState.WALKING:
                break
            cursor = page.next_cursor or page.records[-1].paging_token
            if cursor is None or len(page.records) < self.page_limit:
                report.state = BackfillState.EXHAUSTED

        self._log_outcome(report)
        BACKFILL_RUNS.labels(state=report.state.value).inc()
        return report

    def _commit_page(self, records: list[TransactionRecord], report: BackfillReport) -> int:
        batch = self._take_new(records, report)
        kept = self.tx_filter.apply(batch) if self.tx_filter is not None else batch
        if kept:
            self.maintainer.commit_history(kept)
        return len(kept)

    def _take_new(self, records: list[TransactionRecord], report: BackfillReport) -> list[TransactionRecord]:
        """Collect page records up to the first already-indexed hash or the ceiling."""
        batch: list[TransactionRecord] = []
        for tx in records:
            if report.transactions >= self.max_transactions:
                report.state = BackfillState.LIMIT_REACHED
                break
            if self.maintainer.is_indexed(tx.hash):
                report.state = BackfillState.OVERLAP
                report.detail = tx.hash
                break
            batch.append(tx)
            report.transactions += 1
        return batch

    @staticmethod
    def _log_outcome(report: BackfillReport) -> None:
        account_id = report.account_id
        if report.state is BackfillState.OVERLAP:
            logger.info("Backfill overlap found at tx %s for %s. Stopping.", report.detail, account_id)
        elif report.state is BackfillState.EXHAUSTED:
            logger.info("Backfill complete for %s (end of history, %s txs)", account_id, report.written)
        elif report.state is BackfillState.LIMIT_REACHED:
            logger.info("Backfill limit reached (%s txs) for %s", report.transactions, account_id)
        else:
            logger.warning("Error backfilling history for %s: %s", account_id, report.detail)


__all__ = ["BackfillState", "BackfillReport", "BackfillCoordinator"]
