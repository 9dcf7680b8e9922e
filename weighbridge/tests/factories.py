"""
Shared test constants and helpers.
"""

from datetime import datetime, timedelta, timezone

from weighbridge.app.models.allocation import TransitionContext
from weighbridge.app.models.allocation_enums import DriverValidationStatus

ROUTE = ["mine", "lions_park", "bulk_connections"]
START = datetime(2025, 3, 10, 6, 0, tzinfo=timezone.utc)

# Driver cleared by the verification service; dispatch is refused without it
READY_DRIVER = TransitionContext(driver_status=DriverValidationStatus.READY_FOR_DISPATCH)


class FixedClock:
    """Deterministic clock; tests move it explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now
