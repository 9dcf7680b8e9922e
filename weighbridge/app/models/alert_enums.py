"""
Alert enumerations.
"""

import enum


class AlertSeverity(str, enum.Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


# Display order: critical first
SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.WARNING: 1,
    AlertSeverity.INFO: 2,
}


class AlertRuleType(str, enum.Enum):
    """Catalog of operational alert rules."""
    STAGING_6H = "staging_6h"
    STAGING_12H = "staging_12h"
    STAGING_24H = "staging_24h"
    WEIGHT_VARIANCE_2 = "weight_variance_2"
    WEIGHT_VARIANCE_5 = "weight_variance_5"
    UNALLOCATED_TRUCK = "unallocated_truck"
    STOCKPILE_85 = "stockpile_85"
    STOCKPILE_95 = "stockpile_95"
    TRUCK_SHORTFALL = "truck_shortfall"
    TRANSPORTER_COMPLIANCE = "transporter_compliance"
    ORDER_OVERDUE = "order_overdue"


class AlertEntityType(str, enum.Enum):
    TRUCK = "truck"
    ORDER = "order"
    STOCKPILE = "stockpile"
    TRANSPORTER = "transporter"
