"""Local lookups with each entity's presence predicate.

A reader returns ``None`` for a miss; it never calls upstream.
"""

from __future__ import annotations

from ledger_cache.core.errors import ConsistencyViolation
from ledger_cache.db.codec import (
    account_field_path,
    account_path,
    hash_index_path,
    hydrated_slot,
    is_dense_slot,
    ledger_field_path,
    ledger_tx_root,
    trustlines_path,
    tx_slot_path,
)
from ledger_cache.db.tree import TreeStore
from ledger_cache.index.mutations import find_dense_slot
from ledger_cache.models.entities import AccountSnapshot, LedgerRecord, TransactionRecord, Trustline


def read_account(store: TreeStore, account_id: str, include_trustlines: bool = True) -> AccountSnapshot | None:
    """An account is present when its node has a value or any descendants."""
    with store.snapshot() as view:
        if not view.exists(account_path(account_id)):
            return None
        return AccountSnapshot(
            account_id=account_id,
            balance=view.read(account_field_path(account_id, "balance")) or "0",
            sequence_number=int(view.read(account_field_path(account_id, "seq_num")) or 0),
            last_modified=int(view.read(account_field_path(account_id, "last_modified")) or 0),
            trustlines=read_trustlines(view, account_id) if include_trustlines else [],
        )


def read_trustlines(store: TreeStore, account_id: str) -> list[Trustline]:
    root = trustlines_path(account_id)
    trustlines: list[Trustline] = []
    with store.snapshot() as view:
        for asset_code in view.children(root):
            for issuer in view.children(root + (asset_code,)):
                base = root + (asset_code, issuer)
                trustlines.append(
                    Trustline(
                        asset_code=asset_code,
                        issuer=issuer,
                        balance=view.read(base + ("balance",)) or "0",
                        limit=view.read(base + ("limit",)) or "",
                    )
                )
    return trustlines


def read_ledger(store: TreeStore, sequence: int) -> LedgerRecord | None:
    """A ledger is present iff ``closed_at`` is set, whatever its children."""
    with store.snapshot() as view:
        closed_at = view.read(ledger_field_path(sequence, "closed_at"))
        if closed_at is None:
            return None
        filtered = view.read(ledger_field_path(sequence, "filtered_tx_count"))
        if filtered is None:
            filtered_count = sum(1 for name in view.children(ledger_tx_root(sequence)) if is_dense_slot(name))
        else:
            filtered_count = int(filtered)
        return LedgerRecord(
            sequence=sequence,
            closed_at=closed_at,
            total_tx_count=int(view.read(ledger_field_path(sequence, "total_tx_count")) or 0),
            filtered_tx_count=filtered_count,
        )


def read_transaction(store: TreeStore, tx_hash: str) -> TransactionRecord | None:
    """Follow the hash index to the ledger, preferring the dense slot over the hydrated one."""
    with store.snapshot() as view:
        indexed = view.read(hash_index_path(tx_hash))
        if indexed is None:
            return None
        sequence = int(indexed)
        slot = find_dense_slot(view, sequence, tx_hash)
        if slot is not None:
            return TransactionRecord(
                hash=tx_hash,
                ledger_sequence=sequence,
                envelope=view.read(tx_slot_path(sequence, slot) + ("xdr",)) or "",
                slot=str(slot),
            )
        reserved = hydrated_slot(tx_hash)
        reserved_path = tx_slot_path(sequence, reserved)
        if view.exists(reserved_path):
            return TransactionRecord(
                hash=tx_hash,
                ledger_sequence=sequence,
                envelope=view.read(reserved_path + ("xdr",)) or "",
                slot=reserved,
            )
    raise ConsistencyViolation(f"hash index maps {tx_hash} to ledger {sequence}, which does not hold it")


__all__ = ["read_account", "read_trustlines", "read_ledger", "read_transaction"]
