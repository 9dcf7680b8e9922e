"""
Allocation lifecycle tests.
"""

import pytest
from datetime import timedelta

from weighbridge.app.core.exceptions import (
    DispatchRejectedError,
    IllegalTransitionError,
    MissingMeasurementError,
)
from weighbridge.app.domain.allocation.journey import JourneyLog
from weighbridge.app.domain.allocation.state_machine import AllocationStateMachine
from weighbridge.app.domain.measurement.store import MeasurementStore
from weighbridge.app.models.allocation import Allocation, TransitionContext
from weighbridge.app.models.allocation_enums import (
    AllocationStatus,
    DriverValidationStatus,
    GateType,
    LifecycleEvent,
    MeasurementLocation,
    SitePhase,
)
from weighbridge.app.models.measurement import Measurement
from weighbridge.tests.factories import ROUTE, START


@pytest.fixture
def measurements():
    return MeasurementStore()


@pytest.fixture
def journey():
    return JourneyLog()


@pytest.fixture
def machine(measurements, journey):
    return AllocationStateMachine(measurements, journey)


def make_allocation(**overrides) -> Allocation:
    fields = dict(
        id="ALLOC-1",
        vehicle_reg="ND 123-456",
        order_ref="ORD-1001",
        created_at=START,
        updated_at=START,
        route=tuple(ROUTE),
        driver_validation_status=DriverValidationStatus.READY_FOR_DISPATCH,
    )
    fields.update(overrides)
    return Allocation(**fields)


def weigh(measurements, allocation, gross=50000.0, tare=15000.0):
    measurements.add(Measurement(
        id=f"M-{allocation.current_site}",
        allocation_id=allocation.id,
        site_id=allocation.current_site,
        location=MeasurementLocation.ORIGIN,
        gross_kg=gross,
        tare_kg=tare,
        captured_at=START,
    ))


def at_ready(machine, measurements, allocation):
    allocation = machine.transition(allocation, LifecycleEvent.CHECK_IN, now=START)
    allocation = machine.transition(allocation, LifecycleEvent.BEGIN_WEIGH, now=START)
    weigh(measurements, allocation)
    return machine.transition(allocation, LifecycleEvent.WEIGH_COMPLETE, now=START)


def test_full_route_completes(machine, measurements, journey):
    allocation = make_allocation()
    for index, site in enumerate(ROUTE):
        assert allocation.current_site == site
        allocation = at_ready(machine, measurements, allocation)
        assert allocation.status == AllocationStatus.READY_FOR_DISPATCH
        allocation = machine.transition(allocation, LifecycleEvent.DISPATCH, now=START + timedelta(hours=index + 1))

    assert allocation.status == AllocationStatus.COMPLETED
    assert allocation.is_terminal
    assert allocation.phase is None
    assert allocation.site_index == len(ROUTE) - 1
    assert set(allocation.site_visits) == set(ROUTE)
    assert all(v.departed_at is not None for v in allocation.site_visits.values())

    entries = journey.entries(allocation.id)
    assert len(entries) == 4 * len(ROUTE)
    assert [e.sequence for e in entries] == list(range(1, len(entries) + 1))
    assert entries[-1].status == AllocationStatus.COMPLETED


def test_dispatch_from_intermediate_site_advances_pointer(machine, measurements):
    allocation = at_ready(machine, measurements, make_allocation())
    allocation = machine.transition(allocation, LifecycleEvent.DISPATCH, now=START)

    assert allocation.status == AllocationStatus.IN_TRANSIT
    assert allocation.site_index == 1
    assert allocation.phase == SitePhase.IN_TRANSIT
    assert allocation.site_status_label == "in_transit_to_lions_park"


def test_site_status_label_at_site(machine):
    allocation = machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, now=START)
    assert allocation.site_status_label == "at_mine"
    assert allocation.phase == SitePhase.ARRIVED


def test_transition_returns_new_record(machine):
    original = make_allocation()
    updated = machine.transition(original, LifecycleEvent.CHECK_IN, now=START)

    assert original.status == AllocationStatus.SCHEDULED
    assert original.site_visits == {}
    assert updated.status == AllocationStatus.ARRIVED
    assert updated.site_visits["mine"].arrived_at == START


def test_check_in_at_wrong_site_rejected(machine):
    with pytest.raises(IllegalTransitionError) as exc_info:
        machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, TransitionContext(site_id="lions_park"))
    assert "expected at 'mine'" in exc_info.value.reason


def test_check_in_twice_rejected(machine):
    allocation = machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, now=START)
    with pytest.raises(IllegalTransitionError) as exc_info:
        machine.transition(allocation, LifecycleEvent.CHECK_IN, now=START)
    assert exc_info.value.reason == "This truck has already been checked in"
    assert exc_info.value.status_code == 409


def test_weigh_complete_requires_reading(machine):
    allocation = machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, now=START)
    allocation = machine.transition(allocation, LifecycleEvent.BEGIN_WEIGH, now=START)
    with pytest.raises(MissingMeasurementError):
        machine.transition(allocation, LifecycleEvent.WEIGH_COMPLETE, now=START)


def test_skipping_a_step_is_illegal(machine):
    with pytest.raises(IllegalTransitionError):
        machine.transition(make_allocation(), LifecycleEvent.BEGIN_WEIGH)


def test_unknown_event_is_illegal(machine):
    with pytest.raises(IllegalTransitionError) as exc_info:
        machine.transition(make_allocation(), "teleport")
    assert exc_info.value.reason == "unknown event"


@pytest.mark.parametrize("driver_status,reason_code", [
    (DriverValidationStatus.VERIFIED, "pending_permit"),
    (DriverValidationStatus.PENDING_VERIFICATION, "pending_verification"),
    (DriverValidationStatus.REJECTED, "driver_rejected"),
])
def test_exit_gate_reports_why_truck_cannot_leave(machine, driver_status, reason_code):
    allocation = machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, now=START)
    context = TransitionContext(gate=GateType.EXIT, driver_status=driver_status)

    with pytest.raises(DispatchRejectedError) as exc_info:
        machine.transition(allocation, LifecycleEvent.DISPATCH, context)

    assert exc_info.value.reason_code == reason_code
    assert exc_info.value.details["reason_code"] == reason_code
    assert exc_info.value.error_code == "ERR_TRANSITION_002"


def test_pending_permit_message(machine):
    allocation = machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, now=START)
    context = TransitionContext(gate=GateType.EXIT, driver_status=DriverValidationStatus.VERIFIED)
    with pytest.raises(DispatchRejectedError) as exc_info:
        machine.transition(allocation, LifecycleEvent.DISPATCH, context)
    assert "permit has not been issued" in exc_info.value.message


def test_dispatch_without_gate_reports_pending_permit(machine):
    allocation = machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, now=START)
    context = TransitionContext(driver_status=DriverValidationStatus.VERIFIED)

    with pytest.raises(DispatchRejectedError) as exc_info:
        machine.transition(allocation, LifecycleEvent.DISPATCH, context)
    assert exc_info.value.reason_code == "pending_permit"


def test_dispatch_without_gate_checks_driver(machine, measurements):
    allocation = at_ready(machine, measurements, make_allocation(
        driver_validation_status=DriverValidationStatus.PENDING_VERIFICATION,
    ))

    with pytest.raises(DispatchRejectedError) as exc_info:
        machine.transition(allocation, LifecycleEvent.DISPATCH, now=START)
    assert exc_info.value.reason_code == "pending_verification"


def test_exit_gate_uses_stored_driver_status(machine, measurements):
    allocation = at_ready(machine, measurements, make_allocation(
        driver_validation_status=DriverValidationStatus.READY_FOR_DISPATCH,
    ))
    dispatched = machine.transition(allocation, LifecycleEvent.DISPATCH, TransitionContext(gate=GateType.EXIT))
    assert dispatched.status == AllocationStatus.IN_TRANSIT


def test_exit_gate_in_transit_truck_not_ready(machine):
    context = TransitionContext(gate=GateType.EXIT, driver_status=DriverValidationStatus.PENDING_VERIFICATION)
    with pytest.raises(DispatchRejectedError) as exc_info:
        machine.transition(make_allocation(), LifecycleEvent.DISPATCH, context)
    assert exc_info.value.reason_code == "not_ready"


def test_completed_truck_already_departed(machine, measurements):
    allocation = make_allocation(route=("mine",))
    allocation = at_ready(machine, measurements, allocation)
    allocation = machine.transition(allocation, LifecycleEvent.DISPATCH, now=START)
    assert allocation.status == AllocationStatus.COMPLETED

    context = TransitionContext(gate=GateType.EXIT, driver_status=DriverValidationStatus.READY_FOR_DISPATCH)
    with pytest.raises(DispatchRejectedError) as exc_info:
        machine.transition(allocation, LifecycleEvent.DISPATCH, context)
    assert exc_info.value.reason_code == "already_departed"
    assert exc_info.value.message.endswith("This truck has already departed")


def test_context_driver_status_is_stored(machine):
    context = TransitionContext(driver_status=DriverValidationStatus.VERIFIED)
    allocation = machine.transition(make_allocation(), LifecycleEvent.CHECK_IN, context, now=START)
    assert allocation.driver_validation_status == DriverValidationStatus.VERIFIED


@pytest.mark.parametrize("steps", [0, 1, 2])
def test_cancel_from_any_open_state(machine, steps):
    allocation = make_allocation()
    for event in [LifecycleEvent.CHECK_IN, LifecycleEvent.BEGIN_WEIGH][:steps]:
        allocation = machine.transition(allocation, event, now=START)
    cancelled = machine.transition(allocation, LifecycleEvent.CANCEL, now=START)
    assert cancelled.status == AllocationStatus.CANCELLED


def test_cancelled_allocation_accepts_nothing(machine, journey):
    allocation = machine.transition(make_allocation(), LifecycleEvent.CANCEL, now=START)
    for event in LifecycleEvent:
        with pytest.raises(IllegalTransitionError):
            machine.transition(allocation, event, now=START)
    assert len(journey.entries(allocation.id)) == 1


def test_allowed_events():
    allowed = AllocationStateMachine.allowed_events(make_allocation())
    assert allowed == [LifecycleEvent.CHECK_IN, LifecycleEvent.CANCEL]
    assert AllocationStateMachine.allowed_events(make_allocation(status=AllocationStatus.COMPLETED)) == []
