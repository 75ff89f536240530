"""Record codec tests."""

from __future__ import annotations

import pytest

from ledger_cache.core.errors import InvalidKey
from ledger_cache.db.codec import (
    account_field_path,
    collation_key,
    decode_key,
    encode_key,
    hash_index_path,
    hydrated_slot,
    is_dense_slot,
    latest_path,
    ledger_field_path,
    parse_sequence,
    tracked_path,
    trustline_path,
    tx_counter_path,
    tx_slot_path,
)


def test_account_paths() -> None:
    assert account_field_path("GABC", "balance") == ("Account", "GABC", "balance")
    assert trustline_path("GABC", "USDC", "GISSUER") == ("Account", "GABC", "trustlines", "USDC", "GISSUER")
    assert tracked_path("GABC") == ("Tracked", "GABC")


def test_ledger_and_index_paths() -> None:
    assert ledger_field_path(100, "closed_at") == ("Stellar", "ledger", "100", "closed_at")
    assert tx_counter_path(100) == ("Stellar", "ledger", "100", "tx_next")
    assert hash_index_path("abc123") == ("Stellar", "tx_hash", "abc123")
    assert latest_path() == ("Stellar", "latest")


def test_tx_slot_paths() -> None:
    assert tx_slot_path(7, 0) == ("Stellar", "ledger", "7", "tx", "0")
    assert tx_slot_path(7, "3") == ("Stellar", "ledger", "7", "tx", "3")
    assert tx_slot_path(7, hydrated_slot("ff00")) == ("Stellar", "ledger", "7", "tx", "hydrated", "ff00")


@pytest.mark.parametrize("slot", [-1, "hydrated", "other/ff00", "01"])
def test_tx_slot_rejects_malformed(slot) -> None:
    with pytest.raises(InvalidKey):
        tx_slot_path(7, slot)


@pytest.mark.parametrize("raw", ["0", "-3", "abc", "", "1.5", "9999999999999"])
def test_parse_sequence_rejects(raw: str) -> None:
    with pytest.raises(InvalidKey):
        parse_sequence(raw)


def test_parse_sequence_accepts_digits() -> None:
    assert parse_sequence("101") == 101
    assert parse_sequence(5) == 5


@pytest.mark.parametrize("bad", ["", "has space", "slash/inside", "x" * 129])
def test_account_ids_are_validated(bad: str) -> None:
    with pytest.raises(InvalidKey):
        account_field_path(bad, "balance")


def test_encode_rejects_control_characters() -> None:
    with pytest.raises(InvalidKey):
        encode_key(("Account", "bad\x1fkey"))


def test_key_roundtrip() -> None:
    path = ("Stellar", "ledger", "5", "tx", "hydrated", "ab")
    assert decode_key(encode_key(path)) == path
    assert decode_key("") == ()


def test_collation_puts_integers_first_numerically() -> None:
    names = ["hydrated", "10", "2", "abc", "0", "007"]
    assert sorted(names, key=collation_key) == ["0", "2", "10", "007", "abc", "hydrated"]


def test_dense_slot_detection() -> None:
    assert is_dense_slot("0")
    assert is_dense_slot("12")
    assert not is_dense_slot("012")
    assert not is_dense_slot("hydrated")
    assert not is_dense_slot("-1")
