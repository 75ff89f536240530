"""Mapping between domain records and paths in the hierarchical key space.

Every record lives under one of three roots::

    Account/<id>/balance | seq_num | last_modified
    Account/<id>/trustlines/<code>/<issuer>/balance | limit
    Tracked/<id> = "1"
    Stellar/ledger/<seq>/closed_at | total_tx_count | filtered_tx_count | tx_next
    Stellar/ledger/<seq>/tx/<slot>/xdr | hash
    Stellar/ledger/<seq>/tx/hydrated/<hash>/xdr | hash
    Stellar/tx_hash/<hash> = <seq>
    Stellar/latest = <seq>

The layout is the only durable state and is additive-only. Nothing here does I/O.
"""

from __future__ import annotations

import re
from typing import Iterable

from ledger_cache.core.errors import InvalidKey

Path = tuple[str, ...]

SEPARATOR = "\x1f"

ACCOUNT_ROOT = "Account"
TRACKED_ROOT = "Tracked"
LEDGER_ROOT = "Stellar"

HYDRATED_SLOT = "hydrated"

_KEY_RE = re.compile(r"^[A-Za-z0-9_\-]{1,128}$")
_CANONICAL_INT_RE = re.compile(r"^(0|-?[1-9][0-9]*)$")
_SEQUENCE_RE = re.compile(r"^[0-9]{1,12}$")


def validate_segment(segment: str) -> str:
    if not isinstance(segment, str) or not segment:
        raise InvalidKey("path segments must be non-empty strings")
    if any(ord(ch) < 0x20 for ch in segment):
        raise InvalidKey(f"path segment contains control characters: {segment!r}")
    return segment


def validate_account_id(account_id: str) -> str:
    if not account_id or not _KEY_RE.match(account_id):
        raise InvalidKey(f"Invalid account id: {account_id!r}")
    return account_id


def validate_hash(tx_hash: str) -> str:
    if not tx_hash or not _KEY_RE.match(tx_hash):
        raise InvalidKey(f"Invalid transaction hash: {tx_hash!r}")
    return tx_hash


def parse_sequence(raw: str | int) -> int:
    """Parse a ledger sequence from user input."""
    text = str(raw).strip()
    if not _SEQUENCE_RE.match(text):
        raise InvalidKey("Invalid ledger sequence")
    sequence = int(text)
    if sequence <= 0:
        raise InvalidKey("Invalid ledger sequence")
    return sequence


# Storage keys -------------------------------------------------------


def encode_key(path: Iterable[str]) -> str:
    return SEPARATOR.join(validate_segment(segment) for segment in path)


def decode_key(key: str) -> Path:
    return tuple(key.split(SEPARATOR)) if key else ()


def collation_key(segment: str) -> tuple[int, int, str]:
    """Order canonical integers numerically ahead of every other string."""
    if _CANONICAL_INT_RE.match(segment):
        return (0, int(segment), "")
    return (1, 0, segment)


def is_dense_slot(segment: str) -> bool:
    return segment.isdigit() and _CANONICAL_INT_RE.match(segment) is not None


# Accounts -----------------------------------------------------------


def account_path(account_id: str) -> Path:
    return (ACCOUNT_ROOT, validate_account_id(account_id))


def account_field_path(account_id: str, name: str) -> Path:
    return account_path(account_id) + (name,)


def trustlines_path(account_id: str) -> Path:
    return account_path(account_id) + ("trustlines",)


def trustline_path(account_id: str, asset_code: str, issuer: str) -> Path:
    return trustlines_path(account_id) + (validate_segment(asset_code), validate_segment(issuer))


def tracked_path(account_id: str) -> Path:
    return (TRACKED_ROOT, validate_account_id(account_id))


# Ledgers and transactions -------------------------------------------


def ledger_path(sequence: int) -> Path:
    return (LEDGER_ROOT, "ledger", str(int(sequence)))


def ledger_field_path(sequence: int, name: str) -> Path:
    return ledger_path(sequence) + (name,)


def ledger_tx_root(sequence: int) -> Path:
    return ledger_path(sequence) + ("tx",)


def tx_counter_path(sequence: int) -> Path:
    return ledger_field_path(sequence, "tx_next")


def hydrated_slot(tx_hash: str) -> str:
    return f"{HYDRATED_SLOT}/{validate_hash(tx_hash)}"


def tx_slot_path(sequence: int, slot: int | str) -> Path:
    """Path of a transaction child: a dense index or a ``hydrated/<hash>`` slot."""
    if isinstance(slot, int):
        if slot < 0:
            raise InvalidKey("dense slots are non-negative")
        return ledger_tx_root(sequence) + (str(slot),)
    parts = tuple(slot.split("/"))
    if len(parts) == 2 and parts[0] == HYDRATED_SLOT:
        return ledger_tx_root(sequence) + (HYDRATED_SLOT, validate_hash(parts[1]))
    if len(parts) == 1 and is_dense_slot(parts[0]):
        return ledger_tx_root(sequence) + parts
    raise InvalidKey(f"Invalid transaction slot: {slot!r}")


def hash_index_path(tx_hash: str) -> Path:
    return (LEDGER_ROOT, "tx_hash", validate_hash(tx_hash))


def latest_path() -> Path:
    return (LEDGER_ROOT, "latest")


__all__ = [
    "Path",
    "SEPARATOR",
    "HYDRATED_SLOT",
    "validate_segment",
    "validate_account_id",
    "validate_hash",
    "parse_sequence",
    "encode_key",
    "decode_key",
    "collation_key",
    "is_dense_slot",
    "account_path",
    "account_field_path",
    "trustlines_path",
    "trustline_path",
    "tracked_path",
    "ledger_path",
    "ledger_field_path",
    "ledger_tx_root",
    "tx_counter_path",
    "hydrated_slot",
    "tx_slot_path",
    "hash_index_path",
    "latest_path",
]
