"""
Stockpile models.
"""

import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from weighbridge.app.models.timestamps import UtcDatetime


class Stockpile(BaseModel):
    """
    Named storage area for one product.

    Capacity is configured externally; current and pending tonnage change
    only through the ledger.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    product: str
    capacity_tonnes: float
    current_tonnes: float = Field(0.0, ge=0)
    pending_inbound_tonnes: float = Field(0.0, ge=0)
    pending_inbound_trucks: int = Field(0, ge=0)
    vessel_ref: Optional[str] = None

    @computed_field
    @property
    def available_tonnes(self) -> float:
        return self.capacity_tonnes - self.current_tonnes

    @computed_field
    @property
    def utilisation(self) -> float:
        if self.capacity_tonnes <= 0:
            return 0.0
        return self.current_tonnes / self.capacity_tonnes


class StockpileOperation(str, enum.Enum):
    ADDITION = "addition"
    REMOVAL = "removal"
    ADJUSTMENT = "adjustment"


class StockpileAuditEntry(BaseModel):
    """Append-only record of one ledger movement."""

    model_config = ConfigDict(frozen=True)

    stockpile_id: str
    operation: StockpileOperation
    requested_tonnes: float
    applied_tonnes: float
    overflow_tonnes: float = 0.0
    resulting_tonnes: float
    allocation_id: Optional[str] = None
    actor: str = "system"
    notes: Optional[str] = None
    timestamp: UtcDatetime
