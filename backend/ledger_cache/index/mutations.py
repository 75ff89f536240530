"""Mutations applied by the index maintainer inside one atomic unit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ledger_cache.db.codec import (
    Path,
    hash_index_path,
    hydrated_slot,
    is_dense_slot,
    ledger_tx_root,
    tx_counter_path,
    tx_slot_path,
)
from ledger_cache.db.tree import TreeStore
from ledger_cache.models.entities import TransactionRecord


class Mutation(Protocol):
    def apply(self, txn: TreeStore) -> None: ...


@dataclass(frozen=True, slots=True)
class PathWrite:
    path: Path
    value: object

    def apply(self, txn: TreeStore) -> None:
        txn.write(self.path, self.value)


@dataclass(frozen=True, slots=True)
class SubtreeClear:
    path: Path

    def apply(self, txn: TreeStore) -> None:
        if txn.exists(self.path):
            txn.erase(self.path)


@dataclass(frozen=True, slots=True)
class PointerAdvance:
    """Move a sequence pointer forward; lower or equal candidates are a no-op."""

    path: Path
    value: int

    def apply(self, txn: TreeStore) -> None:
        current = txn.read(self.path)
        if current is not None and int(current) >= self.value:
            return
        txn.write(self.path, self.value)


@dataclass(frozen=True, slots=True)
class TransactionAppend:
    """Store a transaction in the next dense slot of its ledger.

    The slot comes from the ledger's ``tx_next`` counter, read and bumped in
    the same unit. A transaction already held densely by that ledger is
    skipped, and a ``hydrated/<hash>`` copy of it is dropped.
    """

    tx: TransactionRecord

    def apply(self, txn: TreeStore) -> None:
        sequence = self.tx.ledger_sequence
        if find_dense_slot(txn, sequence, self.tx.hash) is not None:
            return
        counter = tx_counter_path(sequence)
        slot = int(txn.read(counter) or 0)
        base = tx_slot_path(sequence, slot)
        txn.write(base + ("xdr",), self.tx.envelope)
        txn.write(base + ("hash",), self.tx.hash)
        txn.write(counter, slot + 1)
        hydrated = tx_slot_path(sequence, hydrated_slot(self.tx.hash))
        if txn.exists(hydrated):
            txn.erase(hydrated)
        txn.write(hash_index_path(self.tx.hash), sequence)


@dataclass(frozen=True, slots=True)
class TransactionPlace:
    """Store an out-of-band transaction in its reserved ``hydrated/<hash>`` slot.

    Skipped entirely when the hash is already indexed anywhere.
    """

    tx: TransactionRecord

    def apply(self, txn: TreeStore) -> None:
        index = hash_index_path(self.tx.hash)
        if txn.exists(index):
            return
        base = tx_slot_path(self.tx.ledger_sequence, hydrated_slot(self.tx.hash))
        txn.write(base + ("xdr",), self.tx.envelope)
        txn.write(base + ("hash",), self.tx.hash)
        txn.write(index, self.tx.ledger_sequence)


def find_dense_slot(store: TreeStore, sequence: int, tx_hash: str) -> int | None:
    """Return the dense slot of ``tx_hash`` in ledger ``sequence``, if any."""
    indexed = store.read(hash_index_path(tx_hash))
    if indexed is None or int(indexed) != sequence:
        return None
    root = ledger_tx_root(sequence)
    for name in store.children(root):
        if is_dense_slot(name) and store.read(root + (name, "hash")) == tx_hash:
            return int(name)
    return None


__all__ = [
    "Mutation",
    "PathWrite",
    "SubtreeClear",
    "PointerAdvance",
    "TransactionAppend",
    "TransactionPlace",
    "find_dense_slot",
]
