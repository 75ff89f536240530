"""Internal dataclasses for records held in the hierarchical store."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class Trustline:
    asset_code: str
    issuer: str
    balance: str
    limit: str = ""

    @property
    def asset(self) -> str:
        return f"{self.asset_code}:{self.issuer}"


@dataclass(slots=True)
class AccountSnapshot:
    """An account as last hydrated. ``balance`` is the native balance in stroops."""

    account_id: str
    balance: str
    sequence_number: int
    last_modified: int
    trustlines: list[Trustline] = field(default_factory=list)


@dataclass(slots=True)
class TransactionRecord:
    hash: str
    ledger_sequence: int
    envelope: str
    source_account: str | None = None
    paging_token: str | None = None
    slot: str | None = None


@dataclass(slots=True)
class LedgerRecord:
    """A ledger header. Presence is decided by ``closed_at`` alone."""

    sequence: int
    closed_at: str
    total_tx_count: int
    filtered_tx_count: int = 0
    paging_token: str | None = None


@dataclass(slots=True)
class TransactionPage:
    records: list[TransactionRecord]
    next_cursor: str | None


__all__ = [
    "Trustline",
    "AccountSnapshot",
    "TransactionRecord",
    "LedgerRecord",
    "TransactionPage",
]
