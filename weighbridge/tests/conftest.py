"""
Centralized Test Configuration.

Sample stockpiles, transporters and orders live here and only here; the
engine itself never generates data.
"""

import pytest
from datetime import timedelta
from httpx import AsyncClient, ASGITransport

from weighbridge.app.main import app
from weighbridge.app.core.config import Settings
from weighbridge.app.core.dependencies import get_acknowledgements, get_engine
from weighbridge.app.domain.alerts.acknowledgements import AlertAcknowledgements
from weighbridge.app.models.allocation import TransitionContext
from weighbridge.app.models.allocation_enums import LifecycleEvent, OrderStatus
from weighbridge.app.models.order import Order
from weighbridge.app.models.stockpile import Stockpile
from weighbridge.app.models.transporter import Transporter
from weighbridge.app.services.weighbridge_engine import build_engine
from weighbridge.tests.factories import FixedClock, READY_DRIVER, ROUTE, START


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, route=ROUTE)


@pytest.fixture
def sample_stockpiles():
    return [
        Stockpile(id="SP-CHROME-A", name="Chrome Stockpile A", product="chrome", capacity_tonnes=10000, current_tonnes=4000),
        Stockpile(id="SP-MANGANESE", name="Manganese Stockpile", product="manganese", capacity_tonnes=5000, current_tonnes=1000),
    ]


@pytest.fixture
def sample_transporters():
    return [
        Transporter(id="TR-BULK", name="Bulk Haulage"),
        Transporter(id="TR-SWIFT", name="Swift Logistics"),
    ]


@pytest.fixture
def sample_orders():
    return [
        Order(
            id="ORD-1001",
            product="chrome",
            client="Harbour Metals",
            planned_trucks=3,
            planned_tonnes=102,
            deadline=START + timedelta(days=3),
            status=OrderStatus.IN_PROGRESS,
        ),
        Order(
            id="ORD-1002",
            product="manganese",
            client="Coastal Alloys",
            planned_trucks=2,
            planned_tonnes=68,
            deadline=START + timedelta(days=5),
        ),
    ]


@pytest.fixture
def engine(test_settings, clock, sample_stockpiles, sample_transporters, sample_orders):
    return build_engine(
        config=test_settings,
        clock=clock,
        stockpiles=sample_stockpiles,
        transporters=sample_transporters,
        orders=sample_orders,
    )


@pytest.fixture
def pass_site(engine, clock):
    """
    Take an allocation through one site: check in, weigh, dispatch.

    Returns the allocation after dispatch.
    """

    def _pass_site(allocation_id, gross_kg=50000, tare_kg=15000, dwell_hours=1.0):
        allocation = engine.get_allocation(allocation_id)
        site = allocation.current_site
        engine.transition(allocation_id, LifecycleEvent.CHECK_IN, TransitionContext(site_id=site))
        clock.advance(minutes=10)
        engine.transition(allocation_id, LifecycleEvent.BEGIN_WEIGH)
        engine.record_measurement(allocation_id, site, gross_kg, tare_kg, ticket_ref=f"TKT-{site}")
        engine.transition(allocation_id, LifecycleEvent.WEIGH_COMPLETE)
        clock.advance(hours=dwell_hours)
        return engine.transition(allocation_id, LifecycleEvent.DISPATCH, READY_DRIVER)

    return _pass_site


@pytest.fixture
def acknowledgements():
    return AlertAcknowledgements()


@pytest.fixture
async def client(engine, acknowledgements):
    """Async client for testing, bound to the test engine."""
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_acknowledgements] = lambda: acknowledgements
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}
