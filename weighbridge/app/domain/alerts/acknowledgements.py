"""
Alert acknowledgements.

Operators acknowledge alerts by ID. Because alert IDs are stable per
(rule, entity), an acknowledgement survives re-evaluation for as long as the
condition persists and is pruned once the alert stops firing.
"""

import threading
from typing import Iterable, List, Set

from weighbridge.app.models.alert import Alert, AlertView


class AlertAcknowledgements:

    def __init__(self):
        self._acknowledged: Set[str] = set()
        self._lock = threading.Lock()

    def acknowledge(self, alert_id: str) -> None:
        with self._lock:
            self._acknowledged.add(alert_id)

    def unacknowledge(self, alert_id: str) -> None:
        with self._lock:
            self._acknowledged.discard(alert_id)

    def is_acknowledged(self, alert_id: str) -> bool:
        with self._lock:
            return alert_id in self._acknowledged

    def overlay(self, alerts: Iterable[Alert]) -> List[AlertView]:
        """Attach the acknowledged flag to each alert, order preserved."""
        with self._lock:
            acknowledged = set(self._acknowledged)
        return [
            AlertView(**alert.model_dump(), acknowledged=alert.id in acknowledged)
            for alert in alerts
        ]

    def prune(self, alerts: Iterable[Alert]) -> int:
        """
        Forget acknowledgements for alerts that are no longer active.

        Returns:
            Number of acknowledgements removed
        """
        active = {alert.id for alert in alerts}
        with self._lock:
            stale = self._acknowledged - active
            self._acknowledged -= stale
        return len(stale)
