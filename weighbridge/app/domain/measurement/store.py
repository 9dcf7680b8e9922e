"""
Measurement Store.

Holds every weighbridge reading per allocation. Readings are appended,
never overwritten; a correction is simply a newer reading at the same site.
"""

import threading
from typing import Dict, List, Optional

from weighbridge.app.models.measurement import Measurement


class MeasurementStore:

    def __init__(self):
        self._by_allocation: Dict[str, List[Measurement]] = {}
        self._lock = threading.Lock()
        self._sequence = 0

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def add(self, measurement: Measurement) -> Measurement:
        with self._lock:
            self._by_allocation.setdefault(measurement.allocation_id, []).append(measurement)
        return measurement

    def for_allocation(self, allocation_id: str) -> List[Measurement]:
        """All readings for an allocation, in capture order."""
        with self._lock:
            readings = list(self._by_allocation.get(allocation_id, ()))
        return sorted(readings, key=lambda m: (m.captured_at, m.sequence))

    def latest_at_site(self, allocation_id: str, site_id: str) -> Optional[Measurement]:
        """Most recent reading at one site, or None if the truck was never weighed there."""
        at_site = [m for m in self.for_allocation(allocation_id) if m.site_id == site_id]
        return at_site[-1] if at_site else None

    def has_reading(self, allocation_id: str, site_id: str) -> bool:
        return self.latest_at_site(allocation_id, site_id) is not None

    def snapshot(self) -> Dict[str, List[Measurement]]:
        with self._lock:
            return {key: list(value) for key, value in self._by_allocation.items()}
