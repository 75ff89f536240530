"""Ledger and transaction lookup routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ledger_cache.api.dependencies import get_engine
from ledger_cache.db.codec import parse_sequence
from ledger_cache.hydrate.engine import HydrationEngine
from ledger_cache.models.dto import LedgerResponse, TransactionResponse

router = APIRouter()


# Registered before /ledgers/{sequence} so "latest" is not parsed as a sequence.
@router.get("/ledgers/latest", response_model=LedgerResponse, summary="Latest fully committed ledger")
def get_latest_ledger(engine: HydrationEngine = Depends(get_engine)) -> LedgerResponse:
    return LedgerResponse.from_entity(engine.latest_ledger())


@router.get("/ledgers/{sequence}", response_model=LedgerResponse, summary="Ledger header")
def get_ledger(sequence: str, engine: HydrationEngine = Depends(get_engine)) -> LedgerResponse:
    return LedgerResponse.from_entity(engine.ledger(parse_sequence(sequence)))


@router.get("/transactions/{tx_hash}", response_model=TransactionResponse, summary="Transaction envelope")
def get_transaction(tx_hash: str, engine: HydrationEngine = Depends(get_engine)) -> TransactionResponse:
    return TransactionResponse.from_entity(engine.transaction(tx_hash))


__all__ = ["router"]
