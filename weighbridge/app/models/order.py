"""
Order model.

Orders are reference data supplied by the order-planning layer; the engine
only reads them to derive allocated truck counts and deadline alerts.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from weighbridge.app.models.allocation_enums import OrderStatus
from weighbridge.app.models.timestamps import UtcDatetime


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    product: Optional[str] = None
    client: Optional[str] = None
    planned_trucks: int = Field(0, ge=0)
    planned_tonnes: float = Field(0.0, ge=0)
    deadline: Optional[UtcDatetime] = None
    status: OrderStatus = OrderStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)
