"""
Reporting Service.

Handles aggregation over allocation, journey and stockpile snapshots for
dashboards. Focused on READ-ONLY operations: every method is a pure
function of its inputs. Records with a missing timestamp are left out of a
figure, never given a substitute time.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from weighbridge.app.domain.alerts.compliance import compliance_by_transporter
from weighbridge.app.domain.reconciliation.calculator import VarianceThresholds, reconcile_allocation
from weighbridge.app.domain.stockpile.ledger import aggregate_utilisation
from weighbridge.app.models.allocation import Allocation, JourneyEntry
from weighbridge.app.models.allocation_enums import AllocationStatus, LifecycleEvent
from weighbridge.app.models.stockpile import Stockpile
from weighbridge.app.models.transporter import Transporter
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
    VarianceRow,
)


def allocation_date(allocation: Allocation) -> datetime:
    """Date an allocation counts towards: scheduled date, else creation time."""
    return allocation.scheduled_date or allocation.created_at


def delivered_tonnes(allocation: Allocation) -> float:
    """Net tonnage from the most downstream weighed site; 0 when never weighed."""
    weighed = [site for site in allocation.route if site in allocation.site_weights]
    if not weighed:
        return 0.0
    return allocation.site_weights[weighed[-1]].net_kg / 1000


def _counted(allocations: Iterable[Allocation]) -> List[Allocation]:
    return [a for a in allocations if a.status != AllocationStatus.CANCELLED]


class ReportingService:

    @staticmethod
    def throughput(allocations: Sequence[Allocation], start: datetime, end: datetime) -> ThroughputReport:
        """Non-cancelled allocations dated in [start, end) and their delivered tonnage."""
        in_range = [a for a in _counted(allocations) if start <= allocation_date(a) < end]
        return ThroughputReport(
            start=start,
            end=end,
            trucks=len(in_range),
            tonnes=round(sum(delivered_tonnes(a) for a in in_range), 3),
        )

    @staticmethod
    def average_turnaround_hours(
        journeys: Dict[str, List[JourneyEntry]],
        site_id: Optional[str] = None,
    ) -> TurnaroundReport:
        """
        Mean time from check-in to dispatch at a site (or at every site).

        Computed from the journey log; a visit without both a check-in and a
        dispatch entry is not counted.
        """
        durations = []
        for entries in journeys.values():
            arrivals: Dict[str, datetime] = {}
            for entry in entries:
                if site_id is not None and entry.site_id != site_id:
                    continue
                if entry.event == LifecycleEvent.CHECK_IN:
                    arrivals[entry.site_id] = entry.timestamp
                elif entry.event == LifecycleEvent.DISPATCH and entry.site_id in arrivals:
                    arrived = arrivals.pop(entry.site_id)
                    durations.append((entry.timestamp - arrived).total_seconds() / 3600)

        average = sum(durations) / len(durations) if durations else None
        return TurnaroundReport(
            site_id=site_id,
            average_hours=round(average, 2) if average is not None else None,
            visits=len(durations),
        )

    @staticmethod
    def product_breakdown(allocations: Sequence[Allocation]) -> List[ProductBreakdown]:
        trucks: Counter = Counter()
        tonnes: Dict[str, float] = {}
        for allocation in _counted(allocations):
            product = allocation.product or "unspecified"
            trucks[product] += 1
            tonnes[product] = tonnes.get(product, 0.0) + delivered_tonnes(allocation)
        return [
            ProductBreakdown(product=product, trucks=count, tonnes=round(tonnes[product], 3))
            for product, count in sorted(trucks.items(), key=lambda item: (-item[1], item[0]))
        ]

    @staticmethod
    def transporter_breakdown(
        allocations: Sequence[Allocation],
        transporters: Sequence[Transporter],
        now: datetime,
        window_days: int,
        staging_limit_hours: float,
    ) -> List[TransporterBreakdown]:
        """Per-transporter volume with the rolling compliance rate alongside."""
        names = {t.id: t.name for t in transporters}
        trucks: Counter = Counter()
        tonnes: Dict[str, float] = {}
        for allocation in _counted(allocations):
            if allocation.transporter_ref is None:
                continue
            trucks[allocation.transporter_ref] += 1
            tonnes[allocation.transporter_ref] = tonnes.get(allocation.transporter_ref, 0.0) + delivered_tonnes(allocation)

        stats = compliance_by_transporter(allocations, now, window_days, staging_limit_hours)
        rows = []
        for transporter_id, count in trucks.items():
            figures = stats.get(transporter_id)
            rows.append(TransporterBreakdown(
                transporter_id=transporter_id,
                name=names.get(transporter_id),
                trucks=count,
                tonnes=round(tonnes[transporter_id], 3),
                breaches=figures.breaches if figures else 0,
                compliance_rate=figures.rate if figures else None,
            ))
        return sorted(rows, key=lambda r: (-r.trucks, r.transporter_id))

    @staticmethod
    def daily_histogram(allocations: Sequence[Allocation], start: datetime, end: datetime) -> List[DailyCount]:
        """Trucks and tonnage per calendar day in [start, end], zero-filled."""
        trucks: Counter = Counter()
        tonnes: Dict = {}
        for allocation in _counted(allocations):
            dated = allocation_date(allocation)
            if not start <= dated <= end:
                continue
            day = dated.date()
            trucks[day] += 1
            tonnes[day] = tonnes.get(day, 0.0) + delivered_tonnes(allocation)

        days = []
        day = start.date()
        while day <= end.date():
            days.append(DailyCount(day=day, trucks=trucks.get(day, 0), tonnes=round(tonnes.get(day, 0.0), 3)))
            day += timedelta(days=1)
        return days

    @staticmethod
    def hourly_histogram(
        journeys: Dict[str, List[JourneyEntry]],
        site_id: Optional[str] = None,
    ) -> List[HourlyCount]:
        """Check-ins by hour of day (0-23)."""
        arrivals: Counter = Counter()
        for entries in journeys.values():
            for entry in entries:
                if entry.event != LifecycleEvent.CHECK_IN:
                    continue
                if site_id is not None and entry.site_id != site_id:
                    continue
                arrivals[entry.timestamp.hour] += 1
        return [HourlyCount(hour=hour, arrivals=arrivals.get(hour, 0)) for hour in range(24)]

    @staticmethod
    def variance_audit(
        allocations: Sequence[Allocation],
        thresholds: Optional[VarianceThresholds] = None,
    ) -> VarianceAudit:
        """Every reconciled load, largest absolute variance first."""
        thresholds = thresholds or VarianceThresholds()
        rows = []
        for allocation in _counted(allocations):
            result = reconcile_allocation(allocation, thresholds)
            if result is None:
                continue
            rows.append(VarianceRow(
                allocation_id=allocation.id,
                vehicle_reg=allocation.vehicle_reg,
                origin_site_id=result.origin_site_id,
                destination_site_id=result.destination_site_id,
                origin_net_kg=result.origin_net_kg,
                destination_net_kg=result.destination_net_kg,
                variance_kg=result.variance_kg,
                variance_pct=round(result.variance_pct, 3),
                flagged=result.flagged,
            ))
        rows.sort(key=lambda r: (-abs(r.variance_pct), r.allocation_id))

        return VarianceAudit(
            rows=rows,
            total_variance_kg=sum(r.variance_kg for r in rows),
            over_warning=sum(1 for r in rows if abs(r.variance_pct) >= thresholds.warning_pct),
            over_critical=sum(1 for r in rows if abs(r.variance_pct) >= thresholds.critical_pct),
            max_abs_variance_pct=max((abs(r.variance_pct) for r in rows), default=0.0),
        )

    @staticmethod
    def stockpile_summary(stockpiles: Sequence[Stockpile]) -> StockpileSummary:
        return StockpileSummary(
            stockpiles=len(stockpiles),
            total_capacity_tonnes=sum(s.capacity_tonnes for s in stockpiles),
            total_current_tonnes=sum(s.current_tonnes for s in stockpiles),
            total_available_tonnes=sum(s.available_tonnes for s in stockpiles),
            total_pending_inbound_tonnes=sum(s.pending_inbound_tonnes for s in stockpiles),
            pending_inbound_trucks=sum(s.pending_inbound_trucks for s in stockpiles),
            aggregate_utilisation=aggregate_utilisation(stockpiles),
        )

    @staticmethod
    def status_pipeline(allocations: Sequence[Allocation]) -> StatusPipeline:
        """Allocation counts per status and per site label (e.g. ``at_lions_park``)."""
        by_status = Counter(a.status.value for a in allocations)
        by_site_label = Counter(a.site_status_label for a in allocations if not a.is_terminal)
        return StatusPipeline(
            by_status={status.value: by_status.get(status.value, 0) for status in AllocationStatus},
            by_site_label=dict(sorted(by_site_label.items())),
        )
