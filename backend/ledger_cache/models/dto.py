"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from ledger_cache.models.entities import AccountSnapshot, LedgerRecord, TransactionRecord, Trustline
from ledger_cache.utils.amounts import stroops_to_lumens


class TrustlineResponse(BaseModel):
    asset: str = Field(description="CODE:ISSUER")
    balance: str
    limit: str

    @classmethod
    def from_entity(cls, trustline: Trustline) -> "TrustlineResponse":
        return cls(asset=trustline.asset, balance=trustline.balance, limit=trustline.limit)


class BalanceResponse(BaseModel):
    account_id: str
    balance: str = Field(description="Native balance in stroops")
    balance_xlm: str

    @classmethod
    def from_entity(cls, snapshot: AccountSnapshot) -> "BalanceResponse":
        return cls(
            account_id=snapshot.account_id,
            balance=snapshot.balance,
            balance_xlm=stroops_to_lumens(snapshot.balance),
        )


class AccountResponse(BalanceResponse):
    seq_num: int
    last_modified: int
    trustlines: list[TrustlineResponse] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, snapshot: AccountSnapshot) -> "AccountResponse":
        return cls(
            account_id=snapshot.account_id,
            balance=snapshot.balance,
            balance_xlm=stroops_to_lumens(snapshot.balance),
            seq_num=snapshot.sequence_number,
            last_modified=snapshot.last_modified,
            trustlines=[TrustlineResponse.from_entity(t) for t in snapshot.trustlines],
        )


class TrustlinesResponse(BaseModel):
    account_id: str
    trustlines: list[TrustlineResponse]


class LedgerResponse(BaseModel):
    sequence: int
    closed_at: str
    total_tx_count: int
    filtered_tx_count: int
    tx_count: int = Field(description="Deprecated alias of filtered_tx_count")

    @classmethod
    def from_entity(cls, ledger: LedgerRecord) -> "LedgerResponse":
        return cls(
            sequence=ledger.sequence,
            closed_at=ledger.closed_at,
            total_tx_count=ledger.total_tx_count,
            filtered_tx_count=ledger.filtered_tx_count,
            tx_count=ledger.filtered_tx_count,
        )


class TransactionResponse(BaseModel):
    hash: str
    ledger_seq: int
    xdr: str

    @classmethod
    def from_entity(cls, tx: TransactionRecord) -> "TransactionResponse":
        return cls(hash=tx.hash, ledger_seq=tx.ledger_sequence, xdr=tx.envelope)


class CacheAccountRequest(BaseModel):
    account_id: str = Field(min_length=1)


class CacheAccountResponse(BaseModel):
    status: str = "hydrated"
    account_id: str
    seq_num: int


class BackfillResponse(BaseModel):
    account_id: str
    state: str
    pages: int
    transactions: int


class ErrorResponse(BaseModel):
    error: str


ERROR_RESPONSES: dict[int | str, dict] = {
    400: {"model": ErrorResponse, "description": "Malformed key or request body"},
    404: {"model": ErrorResponse, "description": "Not present locally or upstream"},
    500: {"model": ErrorResponse, "description": "Commit aborted or indices inconsistent"},
    502: {"model": ErrorResponse, "description": "Upstream unavailable or returned bad data"},
}


__all__ = [
    "TrustlineResponse",
    "BalanceResponse",
    "AccountResponse",
    "TrustlinesResponse",
    "LedgerResponse",
    "TransactionResponse",
    "CacheAccountRequest",
    "CacheAccountResponse",
    "BackfillResponse",
    "ErrorResponse",
    "ERROR_RESPONSES",
]
