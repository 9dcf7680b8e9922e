"""
Stockpile request schemas.
"""

from pydantic import BaseModel, Field
from typing import Optional


class StockpileCreate(BaseModel):
    """Schema for configuring a stockpile."""
    id: str = Field(..., min_length=1)
    name: str
    product: str
    capacity_tonnes: float = Field(..., gt=0)
    current_tonnes: float = Field(0.0, ge=0)
    vessel_ref: Optional[str] = None


class StockpileCredit(BaseModel):
    tonnes: float = Field(..., ge=0)
    allocation_id: Optional[str] = None
    strict: bool = False  # Reject instead of clamping at capacity
    actor: str = "system"


class StockpileDebit(BaseModel):
    tonnes: float = Field(..., ge=0)
    actor: str = "system"
    notes: Optional[str] = None


class StockpileAdjust(BaseModel):
    """Survey correction."""
    surveyed_tonnes: float = Field(..., ge=0)
    actor: str = "system"
    notes: Optional[str] = None
