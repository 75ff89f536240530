"""Sender filters applied to transactions before they are written."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Iterable, Sequence

from ledger_cache.core.logging import get_logger
from ledger_cache.db.codec import tracked_path
from ledger_cache.db.tree import TreeStore
from ledger_cache.models.entities import TransactionRecord

logger = get_logger(__name__)


class BlockList:
    """Set of blocked account ids from configuration plus an optional file.

    The file holds one account id per line; blank lines and ``#`` comments
    are ignored. :meth:`reload` swaps the file-backed set atomically so the
    predicate never observes a half-read file.
    """

    def __init__(self, accounts: Iterable[str] = (), path: Path | None = None) -> None:
        self._configured = frozenset(account.strip() for account in accounts if account.strip())
        self._from_file: frozenset[str] = frozenset()
        self._lock = threading.Lock()
        self.path = path.expanduser() if path is not None else None
        for account in sorted(self._configured):
            logger.info("Blocked configuration loaded for account: %s", account)
        if self.path is not None:
            self.reload()

    def reload(self) -> int:
        if self.path is None:
            return 0
        loaded: set[str] = set()
        if self.path.exists():
            for line in self.path.read_text(encoding="utf-8").splitlines():
                entry = line.split("#", 1)[0].strip()
                if entry:
                    loaded.add(entry)
        else:
            logger.warning("Block list file %s does not exist", self.path)
        with self._lock:
            self._from_file = frozenset(loaded)
        logger.info("Loaded %s blocked accounts from %s", len(loaded), self.path)
        return len(loaded)

    def is_blocked(self, account_id: str | None) -> bool:
        if not account_id:
            return False
        with self._lock:
            return account_id in self._configured or account_id in self._from_file

    def __len__(self) -> int:
        with self._lock:
            return len(self._configured | self._from_file)


class TransactionFilter:
    """Decide which upstream transactions get persisted.

    Blocked senders are always dropped, silently. With ``sparse_history``
    only transactions sent by tracked accounts are kept.
    """

    def __init__(self, blocklist: BlockList, store: TreeStore | None = None, sparse_history: bool = False) -> None:
        if sparse_history and store is None:
            raise ValueError("sparse history filtering needs a store to read tracked accounts")
        self.blocklist = blocklist
        self.store = store
        self.sparse_history = sparse_history

    def keep(self, tx: TransactionRecord) -> bool:
        if self.blocklist.is_blocked(tx.source_account):
            logger.debug("Dropping tx %s from blocked sender", tx.hash)
            return False
        if self.sparse_history:
            return bool(tx.source_account) and self.store.exists(tracked_path(tx.source_account))
        return True

    def apply(self, transactions: Sequence[TransactionRecord]) -> list[TransactionRecord]:
        return [tx for tx in transactions if self.keep(tx)]


__all__ = ["BlockList", "TransactionFilter"]
