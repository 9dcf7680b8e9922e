"""
Alert schemas.
"""

from pydantic import BaseModel
from typing import List

from weighbridge.app.models.alert import AlertView


class AlertListResponse(BaseModel):
    """Current alerts with the acknowledgement overlay applied."""
    alerts: List[AlertView]
    total: int
    critical: int
    unacknowledged: int


class AcknowledgementResponse(BaseModel):
    alert_id: str
    acknowledged: bool
