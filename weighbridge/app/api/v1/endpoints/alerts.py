"""
Alert API Endpoints.

Alerts are recomputed on every request; acknowledgement is an overlay kept
beside the engine.
"""

from fastapi import APIRouter, Depends, Path, Query
from typing import Optional

from weighbridge.app.core.dependencies import get_acknowledgements, get_engine
from weighbridge.app.domain.alerts.acknowledgements import AlertAcknowledgements
from weighbridge.app.models.alert_enums import AlertSeverity
from weighbridge.app.schemas.alert import AcknowledgementResponse, AlertListResponse
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine

router = APIRouter(prefix="/alerts", tags=["Alerts"])


@router.get("", response_model=AlertListResponse)
async def list_alerts(
    severity: Optional[AlertSeverity] = Query(None),
    include_acknowledged: bool = Query(True),
    engine: WeighbridgeEngine = Depends(get_engine),
    acknowledgements: AlertAcknowledgements = Depends(get_acknowledgements),
):
    """Evaluate the rule catalog now and apply the acknowledgement overlay."""
    alerts = engine.evaluate_alerts()
    acknowledgements.prune(alerts)
    views = acknowledgements.overlay(alerts)

    if severity is not None:
        views = [v for v in views if v.severity == severity]
    if not include_acknowledged:
        views = [v for v in views if not v.acknowledged]

    return AlertListResponse(
        alerts=views,
        total=len(views),
        critical=sum(1 for v in views if v.severity == AlertSeverity.CRITICAL),
        unacknowledged=sum(1 for v in views if not v.acknowledged),
    )


@router.post("/{alert_id}/acknowledge", response_model=AcknowledgementResponse)
async def acknowledge_alert(
    alert_id: str = Path(..., description="Alert ID"),
    acknowledgements: AlertAcknowledgements = Depends(get_acknowledgements),
):
    acknowledgements.acknowledge(alert_id)
    return AcknowledgementResponse(alert_id=alert_id, acknowledged=True)


@router.delete("/{alert_id}/acknowledge", response_model=AcknowledgementResponse)
async def unacknowledge_alert(
    alert_id: str = Path(..., description="Alert ID"),
    acknowledgements: AlertAcknowledgements = Depends(get_acknowledgements),
):
    acknowledgements.unacknowledge(alert_id)
    return AcknowledgementResponse(alert_id=alert_id, acknowledged=False)
