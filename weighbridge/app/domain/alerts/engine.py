"""
Alert Rule Engine.

Evaluates the rule catalog over a point-in-time view of the operation.
Alerts are recomputed from state on every pass, so running the engine twice
over the same inputs yields the same list; acknowledgement is handled
outside the engine.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from weighbridge.app.domain.alerts import rules
from weighbridge.app.domain.alerts.rules import AlertRuleConfig
from weighbridge.app.models.alert import Alert
from weighbridge.app.models.alert_enums import SEVERITY_RANK
from weighbridge.app.models.allocation import Allocation, UnallocatedSighting
from weighbridge.app.models.order import Order
from weighbridge.app.models.stockpile import Stockpile
from weighbridge.app.models.transporter import Transporter

logger = logging.getLogger(__name__)


def sort_alerts(alerts: Iterable[Alert]) -> List[Alert]:
    """Critical first, newest first within a severity, then by ID."""
    ordered = sorted(alerts, key=lambda a: a.id)
    ordered.sort(key=lambda a: a.created_at, reverse=True)
    ordered.sort(key=lambda a: SEVERITY_RANK[a.severity])
    return ordered


def _readable(allocations: Iterable[Allocation]) -> List[Allocation]:
    """Records whose identifying fields can all be read; the rest are logged and skipped."""
    usable = []
    for allocation in allocations:
        try:
            _ = (allocation.status, allocation.normalized_reg, allocation.order_ref, allocation.transporter_ref)
        except Exception:
            logger.exception("Skipping allocation with unreadable fields", extra={"allocation_id": getattr(allocation, "id", None)})
            continue
        usable.append(allocation)
    return usable


class AlertRuleEngine:

    def __init__(self, config: Optional[AlertRuleConfig] = None):
        self.config = config or AlertRuleConfig()

    def evaluate(
        self,
        allocations: Sequence[Allocation],
        stockpiles: Sequence[Stockpile],
        transporters: Sequence[Transporter],
        now: datetime,
        orders: Sequence[Order] = (),
        sightings: Sequence[UnallocatedSighting] = (),
    ) -> List[Alert]:
        """
        Run every enabled rule.

        Never raises: a record that breaks a rule is logged and left out,
        the rest of the pass continues.

        Args:
            allocations: Allocation snapshot
            stockpiles: Stockpile snapshot
            transporters: Configured transporters
            now: Evaluation time; all age-based rules measure from here
            orders: Orders for shortfall and overdue rules
            sightings: Unmatched gate check-ins

        Returns:
            One alert per (rule, entity), sorted for display
        """
        config = self.config
        allocations = _readable(allocations)
        passes: Dict[str, Callable[[], Iterable[Alert]]] = {
            "staging": lambda: rules.staging_alerts(allocations, config, now),
            "variance": lambda: rules.variance_alerts(allocations, config, now),
            "unallocated": lambda: rules.unallocated_alerts(sightings, allocations, config, now),
            "stockpile": lambda: rules.stockpile_alerts(stockpiles, config, now),
            "order": lambda: rules.order_alerts(orders, allocations, config, now),
            "transporter": lambda: rules.transporter_alerts(transporters, allocations, config, now),
        }

        found: Dict[str, Alert] = {}
        for name, run in passes.items():
            try:
                for alert in run():
                    found.setdefault(alert.id, alert)
            except Exception:
                logger.exception("Alert rule pass failed", extra={"rule_pass": name})

        alerts = sort_alerts(found.values())
        logger.debug("Alert evaluation complete", extra={"alert_count": len(alerts)})
        return alerts
