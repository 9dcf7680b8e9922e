"""
Allocation models.

An Allocation is one truck assigned to one order, tracked along an ordered
route of sites. Records are immutable: every lifecycle change produces a new
Allocation via ``model_copy`` so readers never see a half-applied update.
"""

import re
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field

from weighbridge.app.models.allocation_enums import (
    AllocationStatus,
    DriverValidationStatus,
    GateType,
    LifecycleEvent,
    SitePhase,
    TERMINAL_STATUSES,
)
from weighbridge.app.models.measurement import SiteWeight
from weighbridge.app.models.reconciliation import ReconciliationResult
from weighbridge.app.models.timestamps import UtcDatetime

_WHITESPACE = re.compile(r"\s+")


def normalize_registration(vehicle_reg: str) -> str:
    """Registration key used for matching: internal whitespace removed, upper-case."""
    return _WHITESPACE.sub("", vehicle_reg or "").upper()


class SiteVisit(BaseModel):
    """Arrival/departure times at one site."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    arrived_at: Optional[UtcDatetime] = None
    departed_at: Optional[UtcDatetime] = None

    @computed_field
    @property
    def turnaround_hours(self) -> Optional[float]:
        if self.arrived_at is None or self.departed_at is None:
            return None
        return (self.departed_at - self.arrived_at).total_seconds() / 3600


class Allocation(BaseModel):
    """Truck-to-order allocation."""

    model_config = ConfigDict(frozen=True)

    id: str
    vehicle_reg: str
    order_ref: str
    transporter_ref: Optional[str] = None
    driver_ref: Optional[str] = None
    driver_validation_status: DriverValidationStatus = DriverValidationStatus.PENDING_VERIFICATION
    product: Optional[str] = None
    scheduled_date: Optional[UtcDatetime] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime

    status: AllocationStatus = AllocationStatus.SCHEDULED
    route: Tuple[str, ...]
    site_index: int = 0

    site_visits: Dict[str, SiteVisit] = Field(default_factory=dict)
    site_weights: Dict[str, SiteWeight] = Field(default_factory=dict)
    reconciliation: Optional[ReconciliationResult] = None

    destination_stockpile_id: Optional[str] = None
    expected_tonnes: Optional[float] = None

    @computed_field
    @property
    def normalized_reg(self) -> str:
        return normalize_registration(self.vehicle_reg)

    @computed_field
    @property
    def current_site(self) -> str:
        return self.route[self.site_index]

    @computed_field
    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @computed_field
    @property
    def phase(self) -> Optional[SitePhase]:
        if self.is_terminal:
            return None
        if self.status in (AllocationStatus.SCHEDULED, AllocationStatus.IN_TRANSIT):
            return SitePhase.IN_TRANSIT
        return SitePhase.ARRIVED

    @computed_field
    @property
    def site_status_label(self) -> str:
        """Per-site label such as ``in_transit_to_lions_park`` or ``at_mine``."""
        if self.is_terminal or self.status == AllocationStatus.SCHEDULED:
            return self.status.value
        if self.phase == SitePhase.IN_TRANSIT:
            return f"in_transit_to_{self.current_site}"
        return f"at_{self.current_site}"

    @property
    def is_final_site(self) -> bool:
        return self.site_index == len(self.route) - 1

    def visit(self, site_id: str) -> Optional[SiteVisit]:
        return self.site_visits.get(site_id)

    def matches_registration(self, vehicle_reg: str) -> bool:
        return self.normalized_reg == normalize_registration(vehicle_reg)


class TransitionContext(BaseModel):
    """
    Who is applying an event, where, and what the outside world reports.

    ``driver_status`` is supplied by the driver verification service; when
    omitted the allocation's last known value is used.
    """

    site_id: Optional[str] = None
    gate: Optional[GateType] = None
    driver_status: Optional[DriverValidationStatus] = None
    actor: str = "system"
    notes: Optional[str] = None


class JourneyEntry(BaseModel):
    """One append-only journey log record, written per successful transition."""

    model_config = ConfigDict(frozen=True)

    allocation_id: str
    sequence: int
    site_id: str
    event: LifecycleEvent
    from_status: AllocationStatus
    status: AllocationStatus
    timestamp: UtcDatetime
    actor: str = "system"
    notes: Optional[str] = None


class UnallocatedSighting(BaseModel):
    """A truck that presented itself at a gate with no open allocation."""

    model_config = ConfigDict(frozen=True)

    vehicle_reg: str
    site_id: Optional[str] = None
    seen_at: UtcDatetime

    @computed_field
    @property
    def normalized_reg(self) -> str:
        return normalize_registration(self.vehicle_reg)
