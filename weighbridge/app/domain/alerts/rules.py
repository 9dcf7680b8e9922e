"""
Alert rule catalog.

Each rule is independently enabled and thresholded. Tiered rules
(staging, variance, stockpile) are grouped into families so only the
highest tier that applies fires for an entity.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field

from weighbridge.app.domain.alerts.compliance import compliance_by_transporter
from weighbridge.app.domain.reconciliation.calculator import reconcile_allocation
from weighbridge.app.domain.stockpile.ledger import utilisation
from weighbridge.app.models.alert import Alert, alert_id
from weighbridge.app.models.alert_enums import AlertEntityType, AlertRuleType, AlertSeverity
from weighbridge.app.models.allocation import Allocation, UnallocatedSighting
from weighbridge.app.models.allocation_enums import AllocationStatus, SitePhase
from weighbridge.app.models.order import Order
from weighbridge.app.models.stockpile import Stockpile
from weighbridge.app.models.transporter import Transporter

logger = logging.getLogger(__name__)


class RuleSetting(BaseModel):
    enabled: bool = True
    threshold: Optional[float] = None
    severity: AlertSeverity = AlertSeverity.WARNING


DEFAULT_RULES: Dict[AlertRuleType, RuleSetting] = {
    AlertRuleType.STAGING_6H: RuleSetting(threshold=6.0),
    AlertRuleType.STAGING_12H: RuleSetting(threshold=12.0),
    AlertRuleType.STAGING_24H: RuleSetting(threshold=24.0, severity=AlertSeverity.CRITICAL),
    AlertRuleType.WEIGHT_VARIANCE_2: RuleSetting(threshold=2.0),
    AlertRuleType.WEIGHT_VARIANCE_5: RuleSetting(threshold=5.0, severity=AlertSeverity.CRITICAL),
    AlertRuleType.UNALLOCATED_TRUCK: RuleSetting(threshold=12.0, severity=AlertSeverity.CRITICAL),
    AlertRuleType.STOCKPILE_85: RuleSetting(threshold=0.85),
    AlertRuleType.STOCKPILE_95: RuleSetting(threshold=0.95, severity=AlertSeverity.CRITICAL),
    AlertRuleType.TRUCK_SHORTFALL: RuleSetting(threshold=24.0),
    AlertRuleType.TRANSPORTER_COMPLIANCE: RuleSetting(threshold=0.80),
    AlertRuleType.ORDER_OVERDUE: RuleSetting(),
}

# Highest tier first
STAGING_TIERS = (AlertRuleType.STAGING_24H, AlertRuleType.STAGING_12H, AlertRuleType.STAGING_6H)
VARIANCE_TIERS = (AlertRuleType.WEIGHT_VARIANCE_5, AlertRuleType.WEIGHT_VARIANCE_2)
STOCKPILE_TIERS = (AlertRuleType.STOCKPILE_95, AlertRuleType.STOCKPILE_85)


class AlertRuleConfig(BaseModel):
    """Per-rule toggles and thresholds plus the windows the rules evaluate over."""

    rules: Dict[AlertRuleType, RuleSetting] = Field(
        default_factory=lambda: {rule: setting.model_copy() for rule, setting in DEFAULT_RULES.items()}
    )
    compliance_critical_threshold: Optional[float] = None
    compliance_window_days: int = 30

    @classmethod
    def from_settings(cls, config) -> "AlertRuleConfig":
        thresholds = {
            AlertRuleType.STAGING_6H: config.staging_warning_hours,
            AlertRuleType.STAGING_12H: config.staging_escalation_hours,
            AlertRuleType.STAGING_24H: config.staging_critical_hours,
            AlertRuleType.WEIGHT_VARIANCE_2: config.variance_warning_pct,
            AlertRuleType.WEIGHT_VARIANCE_5: config.variance_critical_pct,
            AlertRuleType.UNALLOCATED_TRUCK: config.unallocated_sighting_window_hours,
            AlertRuleType.STOCKPILE_85: config.stockpile_warning_utilisation,
            AlertRuleType.STOCKPILE_95: config.stockpile_critical_utilisation,
            AlertRuleType.TRUCK_SHORTFALL: config.truck_shortfall_window_hours,
            AlertRuleType.TRANSPORTER_COMPLIANCE: config.transporter_compliance_warning,
        }
        disabled = set(config.disabled_rules)
        rules = {}
        for rule, default in DEFAULT_RULES.items():
            rules[rule] = default.model_copy(update={
                "threshold": thresholds.get(rule, default.threshold),
                "enabled": rule.value not in disabled,
            })
        return cls(
            rules=rules,
            compliance_critical_threshold=config.transporter_compliance_critical,
            compliance_window_days=config.compliance_window_days,
        )

    def is_enabled(self, rule: AlertRuleType) -> bool:
        return self.rules[rule].enabled

    def threshold(self, rule: AlertRuleType) -> Optional[float]:
        return self.rules[rule].threshold

    def severity(self, rule: AlertRuleType) -> AlertSeverity:
        return self.rules[rule].severity

    def enabled_tiers(self, tiers: Tuple[AlertRuleType, ...]) -> List[AlertRuleType]:
        return [rule for rule in tiers if self.is_enabled(rule)]

    def staging_breach_hours(self) -> float:
        """Lowest staging tier, used as the compliance breach limit whether or not its alert is enabled."""
        return self.threshold(AlertRuleType.STAGING_6H)


def _make_alert(
    config: AlertRuleConfig,
    rule: AlertRuleType,
    entity_type: AlertEntityType,
    entity_id: str,
    title: str,
    detail: str,
    created_at: datetime,
    severity: Optional[AlertSeverity] = None,
) -> Alert:
    return Alert(
        id=alert_id(rule, entity_type, entity_id),
        severity=severity or config.severity(rule),
        rule=rule,
        entity_type=entity_type,
        entity_id=entity_id,
        title=title,
        detail=detail,
        created_at=created_at,
    )


def _site_label(site_id: str) -> str:
    return site_id.replace("_", " ").title()


def staging_alerts(allocations: Iterable[Allocation], config: AlertRuleConfig, now: datetime) -> Iterator[Alert]:
    """Trucks still on site (arrived, weighing or awaiting dispatch) past the staging limits."""
    tiers = config.enabled_tiers(STAGING_TIERS)
    if not tiers:
        return
    for allocation in allocations:
        try:
            if allocation.phase != SitePhase.ARRIVED:
                continue
            visit = allocation.visit(allocation.current_site)
            if visit is None or visit.arrived_at is None:
                continue
            hours = (now - visit.arrived_at).total_seconds() / 3600
            rule = next((r for r in tiers if hours > config.threshold(r)), None)
            if rule is None:
                continue

            limit = f"{config.threshold(rule):g}h+"
            site = _site_label(allocation.current_site)
            if rule == AlertRuleType.STAGING_24H:
                title = f"CRITICAL: Truck {allocation.vehicle_reg} at staging {limit}"
            elif rule == AlertRuleType.STAGING_12H:
                title = f"WARNING: Truck {allocation.vehicle_reg} at staging {limit}"
            else:
                title = f"Truck {allocation.vehicle_reg} at staging {limit}"
            detail = (
                f"Truck {allocation.vehicle_reg} has been at {site} staging for {hours:.1f} hours. "
                f"Order: {allocation.order_ref or 'UNALLOCATED'}"
            )
            if rule == AlertRuleType.STAGING_12H:
                detail += ". Escalate to the transporter and site supervisor"
            yield _make_alert(config, rule, AlertEntityType.TRUCK, allocation.id, title, detail, visit.arrived_at)
        except Exception:
            logger.exception("Skipping allocation in staging rules", extra={"allocation_id": getattr(allocation, "id", None)})


def variance_alerts(allocations: Iterable[Allocation], config: AlertRuleConfig, now: datetime) -> Iterator[Alert]:
    """Loads whose downstream net mass differs from the origin reading."""
    tiers = config.enabled_tiers(VARIANCE_TIERS)
    if not tiers:
        return
    for allocation in allocations:
        try:
            result = reconcile_allocation(allocation)
            if result is None:
                continue
            magnitude = abs(result.variance_pct)
            rule = next((r for r in tiers if magnitude >= config.threshold(r)), None)
            if rule is None:
                continue

            pct = f"{result.variance_pct:.1f}%"
            if rule == AlertRuleType.WEIGHT_VARIANCE_5:
                title = f"CRITICAL VARIANCE: Truck {allocation.vehicle_reg} ({pct})"
            else:
                title = f"Weight Variance: Truck {allocation.vehicle_reg} ({pct})"
            detail = (
                f"{_site_label(result.origin_site_id)}: {result.origin_net_kg:.0f}kg, "
                f"{_site_label(result.destination_site_id)}: {result.destination_net_kg:.0f}kg, "
                f"Variance: {result.variance_kg:.0f}kg ({pct})"
            )
            created_at = allocation.site_weights[result.destination_site_id].captured_at
            yield _make_alert(config, rule, AlertEntityType.TRUCK, allocation.id, title, detail, created_at)
        except Exception:
            logger.exception("Skipping allocation in variance rules", extra={"allocation_id": getattr(allocation, "id", None)})


def unallocated_alerts(
    sightings: Iterable[UnallocatedSighting],
    allocations: Iterable[Allocation],
    config: AlertRuleConfig,
    now: datetime,
) -> Iterator[Alert]:
    """Trucks that presented at a gate with no open allocation and still have none."""
    rule = AlertRuleType.UNALLOCATED_TRUCK
    if not config.is_enabled(rule):
        return
    window = timedelta(hours=config.threshold(rule))
    open_regs = {a.normalized_reg for a in allocations if not a.is_terminal}

    latest: Dict[str, UnallocatedSighting] = {}
    for sighting in sightings:
        try:
            if now - sighting.seen_at > window or sighting.normalized_reg in open_regs:
                continue
            current = latest.get(sighting.normalized_reg)
            if current is None or sighting.seen_at > current.seen_at:
                latest[sighting.normalized_reg] = sighting
        except Exception:
            logger.exception("Skipping malformed gate sighting")

    for reg, sighting in latest.items():
        where = f" at {_site_label(sighting.site_id)}" if sighting.site_id else ""
        yield _make_alert(
            config, rule, AlertEntityType.TRUCK, reg,
            title=f"UNALLOCATED: Truck {sighting.vehicle_reg}{where}",
            detail=f"Truck {sighting.vehicle_reg} presented{where} with no order allocation.",
            created_at=sighting.seen_at,
        )


def stockpile_alerts(stockpiles: Iterable[Stockpile], config: AlertRuleConfig, now: datetime) -> Iterator[Alert]:
    """Stockpiles approaching capacity."""
    tiers = config.enabled_tiers(STOCKPILE_TIERS)
    if not tiers:
        return
    for stockpile in stockpiles:
        try:
            util = utilisation(stockpile)
            rule = next((r for r in tiers if util >= config.threshold(r)), None)
            if rule is None:
                continue
            prefix = "CRITICAL: " if rule == AlertRuleType.STOCKPILE_95 else ""
            yield _make_alert(
                config, rule, AlertEntityType.STOCKPILE, stockpile.id,
                title=f"{prefix}{stockpile.name} at {util * 100:.0f}% capacity",
                detail=(
                    f"{stockpile.current_tonnes:,.0f}T / {stockpile.capacity_tonnes:,.0f}T. "
                    f"{stockpile.pending_inbound_trucks} trucks inbound ({stockpile.pending_inbound_tonnes:,.0f}T)."
                ),
                created_at=now,
            )
        except Exception:
            logger.exception("Skipping stockpile in capacity rules", extra={"stockpile_id": getattr(stockpile, "id", None)})


def order_alerts(
    orders: Iterable[Order],
    allocations: Iterable[Allocation],
    config: AlertRuleConfig,
    now: datetime,
) -> Iterator[Alert]:
    """Truck shortfall ahead of an order deadline, and overdue orders."""
    allocated: Dict[str, int] = {}
    completed: Dict[str, int] = {}
    for allocation in allocations:
        if allocation.status == AllocationStatus.CANCELLED:
            continue
        allocated[allocation.order_ref] = allocated.get(allocation.order_ref, 0) + 1
        if allocation.status == AllocationStatus.COMPLETED:
            completed[allocation.order_ref] = completed.get(allocation.order_ref, 0) + 1

    shortfall_rule = AlertRuleType.TRUCK_SHORTFALL
    overdue_rule = AlertRuleType.ORDER_OVERDUE
    for order in orders:
        try:
            if order.is_terminal or order.deadline is None:
                continue
            hours_left = (order.deadline - now).total_seconds() / 3600
            count = allocated.get(order.id, 0)

            if (
                config.is_enabled(shortfall_rule)
                and count < order.planned_trucks
                and hours_left < config.threshold(shortfall_rule)
            ):
                yield _make_alert(
                    config, shortfall_rule, AlertEntityType.ORDER, order.id,
                    title=f"Truck shortfall: Order {order.id}",
                    detail=(
                        f"Planned: {order.planned_trucks}, Allocated: {count}. "
                        f"Shortfall: {order.planned_trucks - count} trucks. "
                        f"Deadline in {hours_left:.1f} hours."
                    ),
                    created_at=now,
                )

            if config.is_enabled(overdue_rule) and hours_left < 0:
                yield _make_alert(
                    config, overdue_rule, AlertEntityType.ORDER, order.id,
                    title=f"Order {order.id} is overdue",
                    detail=(
                        f"Target delivery: {order.deadline.isoformat()}. Status: {order.status.value}. "
                        f"{completed.get(order.id, 0)}/{order.planned_trucks} trucks completed."
                    ),
                    created_at=now,
                )
        except Exception:
            logger.exception("Skipping order in order rules", extra={"order_id": getattr(order, "id", None)})


def transporter_alerts(
    transporters: Iterable[Transporter],
    allocations: Iterable[Allocation],
    config: AlertRuleConfig,
    now: datetime,
) -> Iterator[Alert]:
    """Transporters whose rolling compliance rate is below target."""
    rule = AlertRuleType.TRANSPORTER_COMPLIANCE
    if not config.is_enabled(rule):
        return
    stats = compliance_by_transporter(
        allocations, now, config.compliance_window_days, config.staging_breach_hours()
    )
    warning = config.threshold(rule)
    critical = config.compliance_critical_threshold

    for transporter in transporters:
        try:
            if not transporter.active or transporter.id not in stats:
                continue
            figures = stats[transporter.id]
            rate = figures.rate
            if rate is None or rate >= warning:
                continue
            severity = AlertSeverity.CRITICAL if critical is not None and rate < critical else AlertSeverity.WARNING
            limit = critical if severity == AlertSeverity.CRITICAL else warning
            prefix = "CRITICAL: " if severity == AlertSeverity.CRITICAL else ""
            yield _make_alert(
                config, rule, AlertEntityType.TRANSPORTER, transporter.id,
                title=f"{prefix}{transporter.name} compliance below {limit * 100:.0f}%",
                detail=(
                    f"Compliance: {rate * 100:.1f}% over {config.compliance_window_days} days "
                    f"({figures.breaches} of {figures.total_allocations} allocations with a "
                    f"weight discrepancy or staging breach)."
                ),
                created_at=now,
                severity=severity,
            )
        except Exception:
            logger.exception("Skipping transporter in compliance rule", extra={"transporter_id": getattr(transporter, "id", None)})
