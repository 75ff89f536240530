"""Drive the index forward from the live ledger stream."""

from __future__ import annotations

import threading

from ledger_cache.core.errors import LedgerCacheError
from ledger_cache.core.logging import get_logger
from ledger_cache.core.metrics import LEDGER_COMMITS
from ledger_cache.index.maintainer import CommitResult, IndexMaintainer
from ledger_cache.ingest.blocklist import TransactionFilter
from ledger_cache.models.entities import LedgerRecord
from ledger_cache.upstream.base import LedgerSource

logger = get_logger(__name__)


class LedgerStreamAdapter:
    """Commit each streamed ledger with its filtered transactions as one unit.

    A ledger whose transactions cannot be fetched, or whose commit fails for
    any reason, is logged and skipped; the adapter never goes back for it. When the stream
    connection drops it reconnects from the last paging token it saw.
    """

    def __init__(
        self,
        upstream: LedgerSource,
        maintainer: IndexMaintainer,
        tx_filter: TransactionFilter | None = None,
        cursor: str = "now",
        reconnect_delay: float = 5.0,
    ) -> None:
        self.upstream = upstream
        self.maintainer = maintainer
        self.tx_filter = tx_filter
        self.cursor = cursor
        self.reconnect_delay = reconnect_delay
        self.last_sequence: int | None = None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def handle(self, ledger: LedgerRecord) -> CommitResult | None:
        """Ingest one ledger; returns ``None`` when it was skipped or failed."""
        if self.last_sequence is not None and ledger.sequence <= self.last_sequence:
            logger.debug("Skipping ledger %s, already handled up to %s", ledger.sequence, self.last_sequence)
            return None

        try:
            # Fetched before the atomic unit opens so network latency never holds the store.
            transactions = self.upstream.fetch_ledger_transactions(ledger.sequence)
        except LedgerCacheError as exc:
            LEDGER_COMMITS.labels(outcome="fetch_failed").inc()
            logger.error(
                "Failed to fetch transactions for ledger %s: %s",
                ledger.sequence,
                exc,
                extra={"ctx_kind": "ledger", "ctx_key": ledger.sequence},
            )
            self._mark_handled(ledger)
            return None

        if self.tx_filter is not None:
            transactions = self.tx_filter.apply(transactions)

        try:
            result = self.maintainer.commit_ledger(ledger, transactions)
        except (LedgerCacheError, ValueError) as exc:
            LEDGER_COMMITS.labels(outcome="aborted").inc()
            logger.error(
                "Commit for ledger %s aborted: %s",
                ledger.sequence,
                exc,
                extra={"ctx_kind": "ledger", "ctx_key": ledger.sequence},
            )
            self._mark_handled(ledger)
            return None

        LEDGER_COMMITS.labels(outcome=result.value).inc()
        logger.info(
            "Ledger %s committed with %s/%s transactions",
            ledger.sequence,
            len(transactions),
            ledger.total_tx_count,
            extra={"ctx_kind": "ledger", "ctx_key": ledger.sequence, "ctx_outcome": result.value},
        )
        self._mark_handled(ledger)
        return result

    def run(self, stop_event: threading.Event | None = None, max_connections: int | None = None) -> None:
        """Consume the stream until ``stop_event`` is set.

        ``max_connections`` bounds the number of stream connections opened,
        which lets callers run a finite number of passes.
        """
        stop = stop_event or self._stop
        connections = 0
        while not stop.is_set():
            connections += 1
            logger.info("Connecting to ledger stream at cursor %s", self.cursor)
            try:
                for ledger in self.upstream.stream_ledgers(self.cursor):
                    try:
                        self.handle(ledger)
                    except Exception:
                        logger.exception("Unexpected error handling ledger %s", ledger.sequence)
                        self._mark_handled(ledger)
                    if stop.is_set():
                        return
            except LedgerCacheError as exc:
                logger.warning("Ledger stream interrupted: %s", exc)
            if max_connections is not None and connections >= max_connections:
                return
            stop.wait(self.reconnect_delay)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="ledger-stream", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _mark_handled(self, ledger: LedgerRecord) -> None:
        self.last_sequence = ledger.sequence
        if ledger.paging_token:
            self.cursor = ledger.paging_token


__all__ = ["LedgerStreamAdapter"]
