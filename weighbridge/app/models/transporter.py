"""
Transporter model.
"""

from pydantic import BaseModel, ConfigDict


class Transporter(BaseModel):
    """Haulage company referenced by allocations. Compliance is derived, not stored."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    active: bool = True
