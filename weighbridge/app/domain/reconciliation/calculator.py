"""
Weight Reconciliation Calculator.

Compares the net mass of a load at its origin weighbridge with a later
reading of the same load. Pure functions: callers decide whether to store
the result or raise an alert.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from weighbridge.app.models.allocation import Allocation
from weighbridge.app.models.measurement import Measurement, SiteWeight
from weighbridge.app.models.reconciliation import ReconciliationResult, VarianceBand

Reading = Union[Measurement, SiteWeight]


class VarianceThresholds(BaseModel):
    """Absolute variance percentages; flagged at ``warning_pct``, escalated at ``critical_pct``."""

    model_config = ConfigDict(frozen=True)

    warning_pct: float = Field(2.0, gt=0)
    critical_pct: float = Field(5.0, gt=0)

    @model_validator(mode="after")
    def warning_below_critical(self):
        if self.warning_pct >= self.critical_pct:
            raise ValueError("warning_pct must be below critical_pct")
        return self

    @classmethod
    def from_settings(cls, config) -> "VarianceThresholds":
        return cls(warning_pct=config.variance_warning_pct, critical_pct=config.variance_critical_pct)

    def band(self, variance_pct: float) -> VarianceBand:
        magnitude = abs(variance_pct)
        if magnitude >= self.critical_pct:
            return VarianceBand.CRITICAL
        if magnitude >= self.warning_pct:
            return VarianceBand.WARNING
        return VarianceBand.NONE


def reconcile(
    origin: Reading,
    destination: Reading,
    thresholds: Optional[VarianceThresholds] = None,
) -> ReconciliationResult:
    """
    Compute variance between two readings of the same load.

    variance_kg is signed (destination - origin, negative = shrinkage) and
    variance_pct is relative to the origin net mass, 0 when that is 0.

    Args:
        origin: Reading at the loading site
        destination: Later reading of the same load
        thresholds: Flag/escalation thresholds (defaults 2% / 5%)

    Returns:
        ReconciliationResult
    """
    thresholds = thresholds or VarianceThresholds()

    variance_kg = destination.net_kg - origin.net_kg
    if origin.net_kg == 0:
        variance_pct = 0.0
    else:
        variance_pct = variance_kg * 100 / origin.net_kg

    band = thresholds.band(variance_pct)

    return ReconciliationResult(
        variance_kg=variance_kg,
        variance_pct=variance_pct,
        flagged=band != VarianceBand.NONE,
        band=band,
        origin_net_kg=origin.net_kg,
        destination_net_kg=destination.net_kg,
        origin_site_id=origin.site_id,
        destination_site_id=destination.site_id,
    )


def reconcile_allocation(
    allocation: Allocation,
    thresholds: Optional[VarianceThresholds] = None,
) -> Optional[ReconciliationResult]:
    """
    Reconcile the earliest and the most downstream weighed sites of an allocation.

    Uses the latest reading at each of the two sites (so corrections win).
    Returns None until two different sites on the route have been weighed.
    """
    weighed = [site for site in allocation.route if site in allocation.site_weights]
    if len(weighed) < 2:
        return None
    origin = allocation.site_weights[weighed[0]]
    destination = allocation.site_weights[weighed[-1]]
    return reconcile(origin, destination, thresholds)
