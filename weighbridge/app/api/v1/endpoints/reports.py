"""
Reporting API Endpoints.

Read-only dashboards computed from a fresh engine snapshot per request.
"""

from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from weighbridge.app.core.dependencies import get_engine
from weighbridge.app.models.timestamps import ensure_utc
from weighbridge.app.schemas.reporting import (
    DailyCount,
    HourlyCount,
    ProductBreakdown,
    StatusPipeline,
    StockpileSummary,
    ThroughputReport,
    TransporterBreakdown,
    TurnaroundReport,
    VarianceAudit,
)
from weighbridge.app.services.audit import AuditEvent
from weighbridge.app.services.reporting import ReportingService
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine

router = APIRouter(prefix="/reports", tags=["Reports"])
audit_router = APIRouter(prefix="/audit", tags=["Audit"])


def _period(engine: WeighbridgeEngine, start: Optional[datetime], end: Optional[datetime], days: int):
    end = ensure_utc(end) or engine.now()
    start = ensure_utc(start) or end - timedelta(days=days)
    return start, end


@router.get("/throughput", response_model=ThroughputReport)
async def throughput(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """Trucks and delivered tonnes between ``start`` and ``end`` (default: the last 24 hours)."""
    start, end = _period(engine, start, end, days=1)
    return ReportingService.throughput(engine.snapshot().allocations, start, end)


@router.get("/turnaround", response_model=TurnaroundReport)
async def turnaround(
    site_id: Optional[str] = Query(None),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return ReportingService.average_turnaround_hours(engine.snapshot().journeys, site_id)


@router.get("/products", response_model=List[ProductBreakdown])
async def products(engine: WeighbridgeEngine = Depends(get_engine)):
    return ReportingService.product_breakdown(engine.snapshot().allocations)


@router.get("/transporters", response_model=List[TransporterBreakdown])
async def transporters(engine: WeighbridgeEngine = Depends(get_engine)):
    snap = engine.snapshot()
    return ReportingService.transporter_breakdown(
        snap.allocations,
        snap.transporters,
        now=snap.taken_at,
        window_days=engine.config.compliance_window_days,
        staging_limit_hours=engine.config.staging_warning_hours,
    )


@router.get("/daily", response_model=List[DailyCount])
async def daily(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """Per-day counts (default: the last 7 days)."""
    start, end = _period(engine, start, end, days=7)
    return ReportingService.daily_histogram(engine.snapshot().allocations, start, end)


@router.get("/hourly", response_model=List[HourlyCount])
async def hourly(
    site_id: Optional[str] = Query(None),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return ReportingService.hourly_histogram(engine.snapshot().journeys, site_id)


@router.get("/variance", response_model=VarianceAudit)
async def variance(engine: WeighbridgeEngine = Depends(get_engine)):
    return ReportingService.variance_audit(engine.snapshot().allocations, engine.thresholds)


@router.get("/stockpiles", response_model=StockpileSummary)
async def stockpiles(engine: WeighbridgeEngine = Depends(get_engine)):
    return ReportingService.stockpile_summary(engine.stockpile_snapshot())


@router.get("/pipeline", response_model=StatusPipeline)
async def pipeline(engine: WeighbridgeEngine = Depends(get_engine)):
    return ReportingService.status_pipeline(engine.snapshot().allocations)


@audit_router.get("", response_model=List[AuditEvent])
async def audit_trail(
    action: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """Engine audit trail, most recent first."""
    return engine.audit_trail(action=action, entity_id=entity_id, limit=limit)
