"""
FastAPI Application Entry Point.

Builds the Weighbridge Allocation Engine once at startup and exposes it
under ``/v1``.
"""

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from weighbridge.app.api.v1.router import router as api_v1_router
from weighbridge.app.core.config import settings
from weighbridge.app.core.dependencies import get_engine
from weighbridge.app.core.exceptions import (
    AppException,
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from weighbridge.app.core.observability import ObservabilityMiddleware, configure_logging
from weighbridge.app.domain.alerts.acknowledgements import AlertAcknowledgements
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the engine on startup.

    Settings are validated while the engine is constructed, so a bad
    threshold or route stops the service here rather than on the first
    alert pass.
    """
    configure_logging(settings.log_level)
    app.state.engine = WeighbridgeEngine(settings)
    app.state.acknowledgements = AlertAcknowledgements()
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Truck allocation lifecycle, weighbridge reconciliation and stockpile alerts",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/health", tags=["Health"])
async def health_check(engine: WeighbridgeEngine = Depends(get_engine)):
    """
    Liveness plus a glance at engine state.

    Returns:
        dict: Status, configured route and open-allocation / stockpile counts
    """
    snap = engine.snapshot()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "route": list(engine.route),
        "open_allocations": sum(1 for a in snap.allocations if not a.is_terminal),
        "stockpiles": len(snap.stockpiles),
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Weighbridge Allocation Engine",
        "docs": "/docs",
        "health": "/health",
    }
