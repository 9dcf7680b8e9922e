"""
Alert models.

Alerts are derived facts, regenerated on every evaluation pass. They carry
no acknowledgement state; see ``AlertView`` for the caller-side overlay.
"""

from pydantic import BaseModel, ConfigDict

from weighbridge.app.models.alert_enums import AlertEntityType, AlertRuleType, AlertSeverity
from weighbridge.app.models.timestamps import UtcDatetime


def alert_id(rule: AlertRuleType, entity_type: AlertEntityType, entity_id: str) -> str:
    """Deterministic ID, stable across passes for the same (rule, entity)."""
    return f"{rule.value}:{entity_type.value}:{entity_id}"


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    severity: AlertSeverity
    rule: AlertRuleType
    entity_type: AlertEntityType
    entity_id: str
    title: str
    detail: str
    created_at: UtcDatetime


class AlertView(Alert):
    """Alert as shown to an operator, with the acknowledgement overlay applied."""

    acknowledged: bool = False
