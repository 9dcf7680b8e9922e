"""
Weight reconciliation result model.
"""

import enum

from pydantic import BaseModel, ConfigDict


class VarianceBand(str, enum.Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


class ReconciliationResult(BaseModel):
    """Origin vs downstream net mass comparison for one load."""

    model_config = ConfigDict(frozen=True)

    variance_kg: float  # negative = shrinkage in transit
    variance_pct: float
    flagged: bool
    band: VarianceBand
    origin_net_kg: float
    destination_net_kg: float
    origin_site_id: str
    destination_site_id: str
