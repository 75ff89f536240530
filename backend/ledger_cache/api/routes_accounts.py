"""Account lookup routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ledger_cache.api.dependencies import get_engine
from ledger_cache.hydrate.engine import HydrationEngine
from ledger_cache.models.dto import AccountResponse, BalanceResponse, TrustlineResponse, TrustlinesResponse

router = APIRouter()


@router.get("/accounts/{account_id}", response_model=AccountResponse, summary="Account snapshot")
def get_account(account_id: str, engine: HydrationEngine = Depends(get_engine)) -> AccountResponse:
    return AccountResponse.from_entity(engine.account(account_id))


@router.get("/accounts/{account_id}/balance", response_model=BalanceResponse, summary="Native balance")
def get_balance(account_id: str, engine: HydrationEngine = Depends(get_engine)) -> BalanceResponse:
    return BalanceResponse.from_entity(engine.account(account_id))


@router.get("/accounts/{account_id}/trustlines", response_model=TrustlinesResponse, summary="Trustlines")
def get_trustlines(account_id: str, engine: HydrationEngine = Depends(get_engine)) -> TrustlinesResponse:
    snapshot = engine.account(account_id)
    return TrustlinesResponse(
        account_id=snapshot.account_id,
        trustlines=[TrustlineResponse.from_entity(t) for t in snapshot.trustlines],
    )


__all__ = ["router"]
