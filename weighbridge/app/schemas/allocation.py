"""
Allocation request schemas.
"""

from pydantic import BaseModel, Field
from typing import List, Optional

from weighbridge.app.models.allocation_enums import (
    DriverValidationStatus,
    GateType,
    LifecycleEvent,
    MeasurementSource,
)
from weighbridge.app.models.timestamps import UtcDatetime


class AllocationCreate(BaseModel):
    """Schema for booking a truck against an order."""
    vehicle_reg: str = Field(..., min_length=1, max_length=32)
    order_ref: str = Field(..., min_length=1)
    transporter_ref: Optional[str] = None
    driver_ref: Optional[str] = None
    driver_validation_status: DriverValidationStatus = DriverValidationStatus.PENDING_VERIFICATION
    product: Optional[str] = None
    scheduled_date: Optional[UtcDatetime] = None
    route: Optional[List[str]] = None  # Deployment route when omitted
    destination_stockpile_id: Optional[str] = None
    expected_tonnes: Optional[float] = Field(None, ge=0)
    actor: str = "system"


class MeasurementCreate(BaseModel):
    """Schema for a weighbridge reading."""
    site_id: str
    gross_kg: float = Field(..., ge=0)
    tare_kg: float = Field(..., ge=0)
    ticket_ref: Optional[str] = None
    source: MeasurementSource = MeasurementSource.MANUAL_ENTRY
    captured_at: Optional[UtcDatetime] = None
    actor: str = "system"


class TransitionRequest(BaseModel):
    """Schema for applying a lifecycle event."""
    event: LifecycleEvent
    site_id: Optional[str] = None
    gate: Optional[GateType] = None
    driver_status: Optional[DriverValidationStatus] = None
    actor: str = "system"
    notes: Optional[str] = None


class StockpileAssignment(BaseModel):
    """Schema for pointing a load at a destination stockpile."""
    stockpile_id: str
    expected_tonnes: Optional[float] = Field(None, ge=0)
    actor: str = "system"


class GateCheckIn(BaseModel):
    """Schema for a gate operation by number plate."""
    vehicle_reg: str = Field(..., min_length=1, max_length=32)
    site_id: Optional[str] = None
    gate: GateType = GateType.ENTRANCE
    driver_status: Optional[DriverValidationStatus] = None
    actor: str = "system"
    notes: Optional[str] = None
