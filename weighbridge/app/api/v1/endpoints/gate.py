"""
Gate API Endpoints.

Entrance and exit gate operations keyed by number plate.
"""

from fastapi import APIRouter, Depends

from weighbridge.app.core.dependencies import get_engine
from weighbridge.app.models.allocation import Allocation, TransitionContext
from weighbridge.app.schemas.allocation import GateCheckIn
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine

router = APIRouter(prefix="/gate", tags=["Gate"])


@router.post("/check-in", response_model=Allocation)
async def gate_check_in(
    payload: GateCheckIn,
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """
    Look up the truck's open allocation by plate and apply the gate event.

    Entrance gate checks the truck in; exit gate dispatches it. An unknown
    plate returns 404 and is raised as an unallocated-truck alert.
    """
    context = TransitionContext(
        site_id=payload.site_id,
        gate=payload.gate,
        driver_status=payload.driver_status,
        actor=payload.actor,
        notes=payload.notes,
    )
    return engine.check_in_vehicle(payload.vehicle_reg, context)
