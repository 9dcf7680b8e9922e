"""
Reporting Schemas.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel


class ThroughputReport(BaseModel):
    """Trucks and delivered tonnage over a period."""
    start: datetime
    end: datetime
    trucks: int
    tonnes: float


class TurnaroundReport(BaseModel):
    site_id: Optional[str] = None
    average_hours: Optional[float] = None
    visits: int


class ProductBreakdown(BaseModel):
    product: str
    trucks: int
    tonnes: float


class TransporterBreakdown(BaseModel):
    transporter_id: str
    name: Optional[str] = None
    trucks: int
    tonnes: float
    breaches: int
    compliance_rate: Optional[float] = None


class DailyCount(BaseModel):
    day: date
    trucks: int
    tonnes: float


class HourlyCount(BaseModel):
    hour: int
    arrivals: int


class VarianceRow(BaseModel):
    allocation_id: str
    vehicle_reg: str
    origin_site_id: str
    destination_site_id: str
    origin_net_kg: float
    destination_net_kg: float
    variance_kg: float
    variance_pct: float
    flagged: bool


class VarianceAudit(BaseModel):
    """Per-load variance rows and their totals."""
    rows: List[VarianceRow]
    total_variance_kg: float
    over_warning: int
    over_critical: int
    max_abs_variance_pct: float


class StockpileSummary(BaseModel):
    stockpiles: int
    total_capacity_tonnes: float
    total_current_tonnes: float
    total_available_tonnes: float
    total_pending_inbound_tonnes: float
    pending_inbound_trucks: int
    aggregate_utilisation: float


class StatusPipeline(BaseModel):
    by_status: Dict[str, int]
    by_site_label: Dict[str, int]
