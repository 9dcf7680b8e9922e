"""
Allocation API Endpoints.

Booking trucks against orders, recording weighbridge readings and driving
allocations through their lifecycle.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from typing import List, Optional

from weighbridge.app.core.dependencies import get_engine
from weighbridge.app.domain.allocation.state_machine import AllocationStateMachine
from weighbridge.app.models.allocation import Allocation, JourneyEntry, TransitionContext
from weighbridge.app.models.allocation_enums import AllocationStatus, LifecycleEvent
from weighbridge.app.models.measurement import Measurement
from weighbridge.app.schemas.allocation import (
    AllocationCreate,
    MeasurementCreate,
    StockpileAssignment,
    TransitionRequest,
)
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine

router = APIRouter(prefix="/allocations", tags=["Allocations"])


@router.post("", response_model=Allocation, status_code=status.HTTP_201_CREATED)
async def create_allocation(
    payload: AllocationCreate,
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """
    Book a truck against an order.

    The allocation starts ``scheduled`` at the first site of its route.
    """
    return engine.create_allocation(**payload.model_dump())


@router.get("", response_model=List[Allocation])
async def list_allocations(
    status_filter: Optional[AllocationStatus] = Query(None, alias="status"),
    order_ref: Optional[str] = Query(None),
    transporter_ref: Optional[str] = Query(None),
    vehicle_reg: Optional[str] = Query(None, description="Matched ignoring spaces and case"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.list_allocations(
        status=status_filter,
        order_ref=order_ref,
        transporter_ref=transporter_ref,
        vehicle_reg=vehicle_reg,
    )


@router.get("/{allocation_id}", response_model=Allocation)
async def get_allocation(
    allocation_id: str = Path(..., description="Allocation ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.get_allocation(allocation_id)


@router.get("/{allocation_id}/events", response_model=List[LifecycleEvent])
async def allowed_events(
    allocation_id: str = Path(..., description="Allocation ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """Events that may be applied from the allocation's current status."""
    return AllocationStateMachine.allowed_events(engine.get_allocation(allocation_id))


@router.get("/{allocation_id}/journey", response_model=List[JourneyEntry])
async def get_journey(
    allocation_id: str = Path(..., description="Allocation ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.journey(allocation_id)


@router.get("/{allocation_id}/measurements", response_model=List[Measurement])
async def list_measurements(
    allocation_id: str = Path(..., description="Allocation ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.measurements(allocation_id)


@router.post(
    "/{allocation_id}/measurements",
    response_model=Measurement,
    status_code=status.HTTP_201_CREATED,
)
async def record_measurement(
    payload: MeasurementCreate,
    allocation_id: str = Path(..., description="Allocation ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """
    Record a weighbridge reading.

    A later reading at the same site supersedes the earlier one for
    reconciliation; both are kept.
    """
    return engine.record_measurement(allocation_id=allocation_id, **payload.model_dump())


@router.post("/{allocation_id}/transitions", response_model=Allocation)
async def apply_transition(
    payload: TransitionRequest,
    allocation_id: str = Path(..., description="Allocation ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    """
    Apply a lifecycle event.

    A refused dispatch returns 409 with ``details.reason_code``
    telling the operator why the truck may not leave.
    """
    context = TransitionContext(
        site_id=payload.site_id,
        gate=payload.gate,
        driver_status=payload.driver_status,
        actor=payload.actor,
        notes=payload.notes,
    )
    return engine.transition(allocation_id, payload.event, context)


@router.post("/{allocation_id}/stockpile", response_model=Allocation)
async def assign_stockpile(
    payload: StockpileAssignment,
    allocation_id: str = Path(..., description="Allocation ID"),
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.assign_stockpile(
        allocation_id,
        payload.stockpile_id,
        expected_tonnes=payload.expected_tonnes,
        actor=payload.actor,
    )
