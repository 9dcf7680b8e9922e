"""
Reference Data API Endpoints.

Transporters and orders are owned by upstream planning systems; the engine
keeps a copy to derive compliance, shortfall and overdue alerts.
"""

from fastapi import APIRouter, Depends, status
from typing import List

from weighbridge.app.core.dependencies import get_engine
from weighbridge.app.models.order import Order
from weighbridge.app.models.transporter import Transporter
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine

transporter_router = APIRouter(prefix="/transporters", tags=["Reference Data"])
order_router = APIRouter(prefix="/orders", tags=["Reference Data"])


@transporter_router.get("", response_model=List[Transporter])
async def list_transporters(engine: WeighbridgeEngine = Depends(get_engine)):
    return engine.transporters()


@transporter_router.post("", response_model=Transporter, status_code=status.HTTP_201_CREATED)
async def register_transporter(
    payload: Transporter,
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.register_transporter(payload)


@order_router.get("", response_model=List[Order])
async def list_orders(engine: WeighbridgeEngine = Depends(get_engine)):
    return engine.orders()


@order_router.post("", response_model=Order, status_code=status.HTTP_201_CREATED)
async def register_order(
    payload: Order,
    engine: WeighbridgeEngine = Depends(get_engine),
):
    return engine.register_order(payload)
