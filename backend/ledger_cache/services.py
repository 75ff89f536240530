"""Explicit construction of the long-lived service objects."""

from __future__ import annotations

from dataclasses import dataclass, field

from ledger_cache.core.config import Settings
from ledger_cache.core.logging import get_logger
from ledger_cache.db.tree import SQLiteTreeStore, TreeStore
from ledger_cache.hydrate.engine import HydrationEngine
from ledger_cache.index.maintainer import IndexMaintainer
from ledger_cache.ingest.backfill import BackfillCoordinator
from ledger_cache.ingest.blocklist import BlockList, TransactionFilter
from ledger_cache.ingest.stream import LedgerStreamAdapter
from ledger_cache.ingest.watcher import Watcher
from ledger_cache.upstream.base import LedgerSource
from ledger_cache.upstream.horizon import HorizonClient

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    store: TreeStore
    upstream: LedgerSource
    blocklist: BlockList
    maintainer: IndexMaintainer
    engine: HydrationEngine
    stream: LedgerStreamAdapter
    backfill: BackfillCoordinator | None = None
    watcher: Watcher | None = None
    _started: bool = field(default=False, repr=False)

    def start(self) -> None:
        """Start background workers: the block list watcher and, if enabled, the ledger stream."""
        if self._started:
            return
        if self.watcher is not None:
            self.watcher.start()
        if self.settings.stream_enabled:
            self.stream.start()
        self._started = True

    def close(self) -> None:
        self.stream.stop()
        if self.watcher is not None:
            self.watcher.close()
        if self.backfill is not None:
            self.backfill.shutdown(wait=True)
        close_upstream = getattr(self.upstream, "close", None)
        if callable(close_upstream):
            close_upstream()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            close_store()
        self._started = False


def build_services(
    settings: Settings,
    store: TreeStore | None = None,
    upstream: LedgerSource | None = None,
) -> Services:
    """Wire every component from ``settings``; ``store`` and ``upstream`` may be supplied by callers."""
    if store is None:
        sqlite_store = SQLiteTreeStore(settings.db_path)
        sqlite_store.ensure_schema()
        store = sqlite_store
    if upstream is None:
        upstream = HorizonClient(
            settings.horizon_url,
            timeout=settings.http_timeout,
            page_limit=settings.transactions_page_limit,
        )

    blocklist = BlockList(settings.block_list, path=settings.block_list_path)
    watcher: Watcher | None = None
    if settings.block_list_path is not None:
        watcher = Watcher()
        watcher.add_file("block_list", settings.block_list_path, lambda _path: blocklist.reload())

    # Backfill only drops blocked senders; sparse history applies to ledger bodies.
    history_filter = TransactionFilter(blocklist)
    ledger_filter = TransactionFilter(blocklist, store=store, sparse_history=settings.sparse_history)

    maintainer = IndexMaintainer(store)
    backfill: BackfillCoordinator | None = None
    if settings.backfill_enabled:
        backfill = BackfillCoordinator(
            upstream,
            maintainer,
            tx_filter=history_filter,
            max_transactions=settings.backfill_max_transactions,
            page_limit=settings.backfill_page_limit,
            workers=settings.backfill_workers,
        )
    engine = HydrationEngine(store, upstream, maintainer, tx_filter=ledger_filter, backfill=backfill)
    stream = LedgerStreamAdapter(
        upstream,
        maintainer,
        tx_filter=ledger_filter,
        cursor=settings.stream_cursor,
        reconnect_delay=settings.stream_reconnect_delay,
    )
    logger.info("Services ready (store=%s, upstream=%s)", settings.db_path, settings.horizon_url)
    return Services(
        settings=settings,
        store=store,
        upstream=upstream,
        blocklist=blocklist,
        maintainer=maintainer,
        engine=engine,
        stream=stream,
        backfill=backfill,
        watcher=watcher,
    )


__all__ = ["Services", "build_services"]
