"""
Per-allocation journey log.

Append-only: entries are never modified or removed. Turnaround and
pipeline reports are computed from it.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from weighbridge.app.models.allocation import JourneyEntry
from weighbridge.app.models.allocation_enums import AllocationStatus, LifecycleEvent


class JourneyLog:

    def __init__(self):
        self._entries: Dict[str, List[JourneyEntry]] = {}
        self._lock = threading.Lock()

    def append(
        self,
        allocation_id: str,
        site_id: str,
        event: LifecycleEvent,
        from_status: AllocationStatus,
        status: AllocationStatus,
        timestamp: datetime,
        actor: str = "system",
        notes: Optional[str] = None,
    ) -> JourneyEntry:
        with self._lock:
            entries = self._entries.setdefault(allocation_id, [])
            entry = JourneyEntry(
                allocation_id=allocation_id,
                sequence=len(entries) + 1,
                site_id=site_id,
                event=event,
                from_status=from_status,
                status=status,
                timestamp=timestamp,
                actor=actor,
                notes=notes,
            )
            entries.append(entry)
        return entry

    def entries(self, allocation_id: str) -> List[JourneyEntry]:
        """Journey for one allocation, oldest first. Returns a copy."""
        with self._lock:
            return list(self._entries.get(allocation_id, ()))

    def at_site(self, site_id: str) -> List[JourneyEntry]:
        with self._lock:
            return [e for entries in self._entries.values() for e in entries if e.site_id == site_id]

    def snapshot(self) -> Dict[str, List[JourneyEntry]]:
        with self._lock:
            return {key: list(value) for key, value in self._entries.items()}
