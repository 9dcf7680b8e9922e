"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from weighbridge.app.api.v1.endpoints import (
    allocations, gate, alerts, stockpiles, reference_data, reports
)

router = APIRouter()

# Allocation lifecycle and weighbridge readings
router.include_router(allocations.router)
router.include_router(gate.router)

# Alerts
router.include_router(alerts.router)

# Stockpile ledger
router.include_router(stockpiles.router)

# Reference data
router.include_router(reference_data.transporter_router)
router.include_router(reference_data.order_router)

# Reports and audit
router.include_router(reports.router)
router.include_router(reports.audit_router)
