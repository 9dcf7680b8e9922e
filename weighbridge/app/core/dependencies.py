"""
Engine dependencies for FastAPI.

The engine and the acknowledgement overlay are built once at startup and
held on ``app.state``; routes receive them through these dependencies so
tests can swap them with ``app.dependency_overrides``.
"""

from fastapi import Request

from weighbridge.app.domain.alerts.acknowledgements import AlertAcknowledgements
from weighbridge.app.services.weighbridge_engine import WeighbridgeEngine


def get_engine(request: Request) -> WeighbridgeEngine:
    """FastAPI dependency returning the application's engine."""
    return request.app.state.engine


def get_acknowledgements(request: Request) -> AlertAcknowledgements:
    """FastAPI dependency returning the operator acknowledgement overlay."""
    return request.app.state.acknowledgements
