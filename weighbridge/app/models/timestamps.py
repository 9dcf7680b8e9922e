"""
Timestamp type shared by the models.

Every stored time is timezone-aware. Times submitted without an offset
(a weighbridge terminal clock, a planner's schedule) are taken as UTC.
"""

from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import AfterValidator


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
