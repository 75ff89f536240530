"""Keeps the account tree, ledger tree and hash index consistent.

Each logical update is submitted as one list of mutations and applied inside
a single atomic unit of the store. Ledger updates advance the latest pointer
as their last mutation, so a reader that sees ``latest == N`` can trust that
ledger N's header, transactions and hash entries are all visible.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from ledger_cache.core.errors import LedgerCacheError, StoreCommitAborted
from ledger_cache.core.logging import get_logger
from ledger_cache.core.metrics import LATEST_LEDGER
from ledger_cache.db.codec import (
    Path,
    account_field_path,
    account_path,
    hash_index_path,
    latest_path,
    ledger_field_path,
    tracked_path,
    trustline_path,
)
from ledger_cache.db.tree import TreeStore
from ledger_cache.index.mutations import (
    Mutation,
    PathWrite,
    PointerAdvance,
    SubtreeClear,
    TransactionAppend,
    TransactionPlace,
)
from ledger_cache.models.entities import AccountSnapshot, LedgerRecord, TransactionRecord

logger = get_logger(__name__)


class CommitResult(str, Enum):
    COMMITTED = "committed"
    ALREADY_PRESENT = "present"


class IndexMaintainer:
    """Apply multi-part updates to the store as single units of work."""

    def __init__(self, store: TreeStore) -> None:
        self.store = store

    def commit(self, mutations: Sequence[Mutation], unless_present: Path | None = None) -> CommitResult:
        """Apply ``mutations`` atomically.

        When ``unless_present`` names a node that already exists, nothing is
        written and ``ALREADY_PRESENT`` is returned; a concurrent writer got
        there first with the same data. Any failure rolls the whole unit back
        and surfaces as :class:`StoreCommitAborted`.
        """
        try:
            with self.store.atomic() as txn:
                if unless_present is not None and txn.exists(unless_present):
                    return CommitResult.ALREADY_PRESENT
                for mutation in mutations:
                    mutation.apply(txn)
        except LedgerCacheError:
            raise
        except Exception as exc:
            raise StoreCommitAborted(f"atomic update aborted: {exc}") from exc
        return CommitResult.COMMITTED

    # Logical updates --------------------------------------------------

    def commit_account(self, snapshot: AccountSnapshot) -> CommitResult:
        """Replace an account snapshot wholesale and mark it tracked."""
        result = self.commit(account_mutations(snapshot))
        logger.info("Committed account %s (seq %s)", snapshot.account_id, snapshot.sequence_number)
        return result

    def commit_ledger(
        self,
        ledger: LedgerRecord,
        transactions: Sequence[TransactionRecord],
        advance_latest: bool = True,
    ) -> CommitResult:
        """Write a ledger header with its transactions and hash entries."""
        result = self.commit(
            ledger_mutations(ledger, transactions, advance_latest=advance_latest),
            unless_present=ledger_field_path(ledger.sequence, "closed_at"),
        )
        if result is CommitResult.COMMITTED:
            self._observe_latest()
        return result

    def commit_transaction(self, tx: TransactionRecord) -> CommitResult:
        """Place an out-of-band transaction in its reserved slot."""
        return self.commit([TransactionPlace(tx)], unless_present=hash_index_path(tx.hash))

    def commit_history(self, transactions: Sequence[TransactionRecord]) -> CommitResult:
        """Append historical transactions to their ledgers' dense slots."""
        return self.commit([TransactionAppend(tx) for tx in transactions])

    def advance_latest(self, sequence: int) -> int | None:
        self.commit([PointerAdvance(latest_path(), sequence)])
        return self._observe_latest()

    def is_indexed(self, tx_hash: str) -> bool:
        return self.store.has_value(hash_index_path(tx_hash))

    def latest(self) -> int | None:
        value = self.store.read(latest_path())
        return None if value is None else int(value)

    def _observe_latest(self) -> int | None:
        latest = self.latest()
        if latest is not None:
            LATEST_LEDGER.set(latest)
        return latest


def account_mutations(snapshot: AccountSnapshot) -> list[Mutation]:
    account_id = snapshot.account_id
    mutations: list[Mutation] = [
        SubtreeClear(account_path(account_id)),
        PathWrite(account_field_path(account_id, "balance"), snapshot.balance),
    ]
    for trustline in snapshot.trustlines:
        base = trustline_path(account_id, trustline.asset_code, trustline.issuer)
        mutations.append(PathWrite(base + ("balance",), trustline.balance))
        mutations.append(PathWrite(base + ("limit",), trustline.limit))
    mutations.extend(
        [
            PathWrite(account_field_path(account_id, "seq_num"), snapshot.sequence_number),
            PathWrite(account_field_path(account_id, "last_modified"), snapshot.last_modified),
            PathWrite(tracked_path(account_id), "1"),
        ]
    )
    return mutations


def ledger_mutations(
    ledger: LedgerRecord,
    transactions: Sequence[TransactionRecord],
    advance_latest: bool = True,
) -> list[Mutation]:
    sequence = ledger.sequence
    mutations: list[Mutation] = [
        PathWrite(ledger_field_path(sequence, "closed_at"), ledger.closed_at),
        PathWrite(ledger_field_path(sequence, "total_tx_count"), ledger.total_tx_count),
    ]
    for tx in transactions:
        if tx.ledger_sequence != sequence:
            raise ValueError(f"transaction {tx.hash} belongs to ledger {tx.ledger_sequence}, not {sequence}")
        mutations.append(TransactionAppend(tx))
    mutations.append(PathWrite(ledger_field_path(sequence, "filtered_tx_count"), len(transactions)))
    if advance_latest:
        mutations.append(PointerAdvance(latest_path(), sequence))
    return mutations


__all__ = ["CommitResult", "IndexMaintainer", "account_mutations", "ledger_mutations"]
