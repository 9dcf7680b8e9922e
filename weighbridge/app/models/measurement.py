"""
Weighbridge measurement models.

A Measurement is one reading taken at one site for one allocation. Net mass
is always derived from gross and tare, never accepted as input, so a
reading can never carry an inconsistent net.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from weighbridge.app.models.allocation_enums import MeasurementLocation, MeasurementSource
from weighbridge.app.models.timestamps import UtcDatetime


class WeightReading(BaseModel):
    """Gross/tare pair with derived net, in kilograms."""

    model_config = ConfigDict(frozen=True)

    gross_kg: float = Field(..., ge=0)
    tare_kg: float = Field(..., ge=0)

    @model_validator(mode="after")
    def tare_not_above_gross(self):
        if self.tare_kg > self.gross_kg:
            raise ValueError(f"tare ({self.tare_kg}) cannot exceed gross ({self.gross_kg})")
        return self

    @computed_field
    @property
    def net_kg(self) -> float:
        return self.gross_kg - self.tare_kg


class Measurement(WeightReading):
    """
    Immutable weighbridge reading.

    Corrections are recorded as a new Measurement; the store keeps every
    reading and treats the most recent one per site as current.
    """

    id: str
    allocation_id: str
    site_id: str
    location: MeasurementLocation
    captured_at: UtcDatetime
    ticket_ref: Optional[str] = None
    source: MeasurementSource = MeasurementSource.MANUAL_ENTRY
    sequence: int = 0


class SiteWeight(WeightReading):
    """Latest reading at one site, as carried on the allocation record."""

    measurement_id: str
    site_id: str
    location: MeasurementLocation
    captured_at: UtcDatetime
    ticket_ref: Optional[str] = None
