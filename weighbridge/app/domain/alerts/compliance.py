"""
Transporter compliance rate.

Fraction of a transporter's recent allocations that were free of a flagged
weight discrepancy and of a staging breach, over a rolling window.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from pydantic import BaseModel

from weighbridge.app.models.allocation import Allocation
from weighbridge.app.models.allocation_enums import AllocationStatus, SitePhase


class ComplianceStats(BaseModel):
    transporter_id: str
    total_allocations: int
    breaches: int

    @property
    def rate(self) -> Optional[float]:
        if self.total_allocations == 0:
            return None
        return (self.total_allocations - self.breaches) / self.total_allocations


def longest_staging_hours(allocation: Allocation, now: datetime) -> float:
    """Longest wait at any site; a visit still in progress counts up to ``now``."""
    longest = 0.0
    for visit in allocation.site_visits.values():
        if visit.arrived_at is None:
            continue
        end = visit.departed_at
        if end is None:
            still_staging = (
                allocation.current_site == visit.site_id
                and allocation.phase == SitePhase.ARRIVED
            )
            if not still_staging:
                continue
            end = now
        longest = max(longest, (end - visit.arrived_at).total_seconds() / 3600)
    return longest


def is_breach(allocation: Allocation, staging_limit_hours: float, now: datetime) -> bool:
    if allocation.reconciliation is not None and allocation.reconciliation.flagged:
        return True
    return longest_staging_hours(allocation, now) > staging_limit_hours


def compliance_by_transporter(
    allocations: Iterable[Allocation],
    now: datetime,
    window_days: int,
    staging_limit_hours: float,
) -> Dict[str, ComplianceStats]:
    """
    Compliance figures per transporter over the window ending at ``now``.

    Allocations are placed in the window by scheduled date, falling back to
    creation time. Cancelled allocations and allocations without a
    transporter are ignored.
    """
    window_start = now - timedelta(days=window_days)
    totals: Dict[str, int] = {}
    breaches: Dict[str, int] = {}

    for allocation in allocations:
        if allocation.transporter_ref is None or allocation.status == AllocationStatus.CANCELLED:
            continue
        dated = allocation.scheduled_date or allocation.created_at
        if not window_start <= dated <= now:
            continue
        key = allocation.transporter_ref
        totals[key] = totals.get(key, 0) + 1
        if is_breach(allocation, staging_limit_hours, now):
            breaches[key] = breaches.get(key, 0) + 1

    return {
        key: ComplianceStats(transporter_id=key, total_allocations=total, breaches=breaches.get(key, 0))
        for key, total in totals.items()
    }
