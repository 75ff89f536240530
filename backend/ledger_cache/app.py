"""FastAPI application setup for the ledger cache."""

from __future__ import annotations

import time

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ledger_cache.api.dependencies import require_api_key
from ledger_cache.api.routes_accounts import router as accounts_router
from ledger_cache.api.routes_admin import router as admin_router
from ledger_cache.api.routes_ledgers import router as ledgers_router
from ledger_cache.core.config import Settings, get_settings
from ledger_cache.core.errors import LedgerCacheError
from ledger_cache.core.logging import configure_logging, get_logger
from ledger_cache.core.metrics import REQUEST_COUNT, REQUEST_LATENCY
from ledger_cache.models.dto import ERROR_RESPONSES
from ledger_cache.services import Services, build_services

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Build the application; services are constructed at startup unless supplied."""
    if settings is None:
        settings = services.settings if services is not None else get_settings()
    configure_logging(settings.log_level, use_json=settings.log_json)

    app = FastAPI(
        title="Ledger Cache",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.services = services
    app.state.owns_services = services is None

    protected = [Depends(require_api_key)]
    for router, tag in ((accounts_router, "accounts"), (ledgers_router, "ledgers"), (admin_router, "admin")):
        app.include_router(router, tags=[tag], dependencies=protected, responses=ERROR_RESPONSES)

    @app.on_event("startup")
    def startup() -> None:
        """Build core services (if not injected) and start background workers."""
        if app.state.services is None:
            app.state.services = build_services(settings)
        app.state.services.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        current = app.state.services
        if current is None:
            return
        if app.state.owns_services:
            current.close()
            app.state.services = None
        else:
            current.stream.stop()

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        # Label by route template, not raw path, to keep cardinality bounded.
        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or getattr(request.scope.get("endpoint"), "__name__", "unmatched")
        REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - start_time)
        REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
        return response

    @app.exception_handler(LedgerCacheError)
    async def handle_cache_error(request: Request, exc: LedgerCacheError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "invalid request") if errors else "invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("%s %s crashed", request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "internal server error"})

    @app.get("/health", tags=["admin"])
    def health() -> dict[str, bool]:
        """Simple liveness check."""
        return {"ok": True}

    return app


app = create_app()


__all__ = ["app", "create_app"]
