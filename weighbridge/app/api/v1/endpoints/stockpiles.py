"""
Stockpile API Endpoints.
"""

from fastapi import APIRouter, Depends, Path, status
from typing import List

from weighbridge.app.core.dependencies import get_engine
from weighbridge.app.models.stockpile import Stockpile, StockpileAuditEntry
from weighbridge.app.schemas.stockpile import (
    StockpileAdjust,
    StockpileCreate,
    StockpileCredit,
    StockpileDebit,
)
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine

router = APIRouter(prefix="/stockpiles", tags=["Stockpiles"])


@router.get("", response_model=List[Stockpile])
async def list_stockpiles(engine: WeighbridgeEngine = Depends(get_engine)):
    return engine.stockpile_snapshot()


@router.post("", response_model=Stockpile, status_code=status.HTTP_201_CREATED)
async def register_stockpile(
    payload: StockpileCreate,
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.register_stockpile(Stockpile(**payload.model_dump()))


@router.get("/{stockpile_id}", response_model=Stockpile)
async def get_stockpile(
    stockpile_id: str = Path(..., description="Stockpile ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.ledger.get(stockpile_id)


@router.post("/{stockpile_id}/credit", response_model=Stockpile)
async def credit_stockpile(
    payload: StockpileCredit,
    stockpile_id: str = Path(..., description="Stockpile ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """Add tonnage. Clamped at capacity unless ``strict`` is set, in which case overflow is a 409."""
    return engine.credit_stockpile(
        stockpile_id,
        payload.tonnes,
        allocation_id=payload.allocation_id,
        strict=payload.strict,
        actor=payload.actor,
    )


@router.post("/{stockpile_id}/debit", response_model=Stockpile)
async def debit_stockpile(
    payload: StockpileDebit,
    stockpile_id: str = Path(..., description="Stockpile ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """Remove tonnage for vessel loading. Clamped at zero."""
    return engine.debit_stockpile(stockpile_id, payload.tonnes, actor=payload.actor, notes=payload.notes)


@router.post("/{stockpile_id}/adjust", response_model=Stockpile)
async def adjust_stockpile(
    payload: StockpileAdjust,
    stockpile_id: str = Path(..., description="Stockpile ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.adjust_stockpile(stockpile_id, payload.surveyed_tonnes, actor=payload.actor, notes=payload.notes)


@router.get("/{stockpile_id}/audit", response_model=List[StockpileAuditEntry])
async def stockpile_audit(
    stockpile_id: str = Path(..., description="Stockpile ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """Ledger movements, most recent first."""
    return engine.stockpile_audit(stockpile_id)
