"""Administrative and internal routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ledger_cache.api.dependencies import get_services
from ledger_cache.core.errors import BackfillUnavailable
from ledger_cache.core.metrics import metrics_response
from ledger_cache.db.codec import validate_account_id
from ledger_cache.models.dto import BackfillResponse, CacheAccountRequest, CacheAccountResponse
from ledger_cache.services import Services

router = APIRouter()


@router.get("/metrics", summary="Prometheus metrics")
def get_metrics():
    return metrics_response()


@router.post(
    "/internal/cache-account",
    response_model=CacheAccountResponse,
    summary="Force a fresh hydration of an account",
)
def cache_account(
    request: CacheAccountRequest,
    services: Services = Depends(get_services),
) -> CacheAccountResponse:
    snapshot = services.engine.refresh_account(request.account_id)
    return CacheAccountResponse(account_id=snapshot.account_id, seq_num=snapshot.sequence_number)


@router.get(
    "/internal/backfill/{account_id}",
    response_model=BackfillResponse,
    summary="Run a history backfill walk synchronously",
)
def run_backfill(account_id: str, services: Services = Depends(get_services)) -> BackfillResponse:
    validate_account_id(account_id)
    coordinator = services.backfill
    if coordinator is None:
        raise BackfillUnavailable("backfill is disabled")
    report = coordinator.run_now(account_id)
    if report is None:
        raise BackfillUnavailable(f"a backfill for {account_id} is already running")
    return BackfillResponse(
        account_id=report.account_id,
        state=report.state.value,
        pages=report.pages,
        transactions=report.transactions,
    )


__all__ = ["router"]
