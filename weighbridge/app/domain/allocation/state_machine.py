"""
Allocation State Machine.

Owns the lifecycle of one truck-to-order allocation along its route:

    scheduled -> in_transit -> arrived -> weighing -> ready_for_dispatch -> completed

with ``cancelled`` reachable from any non-terminal state. Position on the
route is the pair (site_index, phase); dispatching from an intermediate
site moves the pointer to the next site instead of completing.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional, Union

from weighbridge.app.core.exceptions import (
    DispatchRejectedError,
    IllegalTransitionError,
    MissingMeasurementError,
)
from weighbridge.app.domain.allocation.journey import JourneyLog
from weighbridge.app.domain.measurement.store import MeasurementStore
from weighbridge.app.models.allocation import Allocation, SiteVisit, TransitionContext
from weighbridge.app.models.allocation_enums import (
    AllocationStatus,
    DispatchBlockReason,
    DriverValidationStatus,
    LifecycleEvent,
    TERMINAL_STATUSES,
)
from weighbridge.app.models.timestamps import ensure_utc

logger = logging.getLogger(__name__)

_AT_SITE = frozenset({
    AllocationStatus.ARRIVED,
    AllocationStatus.WEIGHING,
    AllocationStatus.READY_FOR_DISPATCH,
})

# Event -> statuses it may be applied from
TRANSITIONS: Dict[LifecycleEvent, FrozenSet[AllocationStatus]] = {
    LifecycleEvent.CHECK_IN: frozenset({AllocationStatus.SCHEDULED, AllocationStatus.IN_TRANSIT}),
    LifecycleEvent.BEGIN_WEIGH: frozenset({AllocationStatus.ARRIVED}),
    LifecycleEvent.WEIGH_COMPLETE: frozenset({AllocationStatus.WEIGHING}),
    LifecycleEvent.DISPATCH: frozenset({AllocationStatus.READY_FOR_DISPATCH}),
    LifecycleEvent.CANCEL: frozenset(set(AllocationStatus) - TERMINAL_STATUSES),
}

DISPATCH_MESSAGES = {
    DispatchBlockReason.ALREADY_DEPARTED: "This truck has already departed",
    DispatchBlockReason.PENDING_PERMIT: "Pending permit board - driver is verified but permit has not been issued yet",
    DispatchBlockReason.PENDING_VERIFICATION: "This driver is still pending verification",
    DispatchBlockReason.DRIVER_REJECTED: "Driver verification was rejected",
    DispatchBlockReason.NOT_READY: "This truck is not ready for dispatch",
}


class AllocationStateMachine:
    """
    Validates and applies lifecycle events.

    Every successful transition appends an entry to the journey log; the
    input allocation is never modified, a new record is returned.
    """

    def __init__(self, measurements: MeasurementStore, journey: JourneyLog):
        self.measurements = measurements
        self.journey = journey

    @staticmethod
    def allowed_events(allocation: Allocation) -> List[LifecycleEvent]:
        """Events that are legal from the allocation's current status."""
        return [event for event, sources in TRANSITIONS.items() if allocation.status in sources]

    def transition(
        self,
        allocation: Allocation,
        event: Union[LifecycleEvent, str],
        context: Optional[TransitionContext] = None,
        now: Optional[datetime] = None,
    ) -> Allocation:
        """
        Apply a lifecycle event.

        Args:
            allocation: Current allocation record
            event: Event to apply
            context: Site, gate, driver status and actor
            now: Event time (defaults to current UTC time)

        Returns:
            The updated allocation

        Raises:
            IllegalTransitionError: Event not valid for the current state
            DispatchRejectedError: Truck may not leave (reason code attached)
            MissingMeasurementError: Weighing completed without a reading
        """
        context = context or TransitionContext()
        now = ensure_utc(now) or datetime.now(timezone.utc)
        try:
            event = LifecycleEvent(event)
        except ValueError:
            raise IllegalTransitionError(
                allocation.id, allocation.status.value, str(event), reason="unknown event"
            )

        if event == LifecycleEvent.DISPATCH:
            self._check_dispatch(allocation, context)

        if allocation.status not in TRANSITIONS[event]:
            raise IllegalTransitionError(
                allocation.id,
                allocation.status.value,
                event.value,
                reason=self._rejection_reason(allocation, event),
            )

        site_id = allocation.current_site
        if event == LifecycleEvent.CHECK_IN:
            update = self._check_in(allocation, context, now)
        elif event == LifecycleEvent.BEGIN_WEIGH:
            update = {"status": AllocationStatus.WEIGHING}
        elif event == LifecycleEvent.WEIGH_COMPLETE:
            if not self.measurements.has_reading(allocation.id, site_id):
                raise MissingMeasurementError(allocation.id, site_id)
            update = {"status": AllocationStatus.READY_FOR_DISPATCH}
        elif event == LifecycleEvent.DISPATCH:
            update = self._dispatch(allocation, now)
        else:
            update = {"status": AllocationStatus.CANCELLED}

        if context.driver_status is not None:
            update["driver_validation_status"] = context.driver_status
        update["updated_at"] = now

        updated = allocation.model_copy(update=update)
        self.journey.append(
            allocation_id=allocation.id,
            site_id=site_id,
            event=event,
            from_status=allocation.status,
            status=updated.status,
            timestamp=now,
            actor=context.actor,
            notes=context.notes,
        )
        return updated

    def _check_in(self, allocation: Allocation, context: TransitionContext, now: datetime) -> dict:
        expected = allocation.current_site
        site_id = context.site_id or expected
        if site_id != expected:
            raise IllegalTransitionError(
                allocation.id,
                allocation.status.value,
                LifecycleEvent.CHECK_IN.value,
                reason=f"truck is expected at '{expected}', not '{site_id}'",
            )
        visits = dict(allocation.site_visits)
        visits[site_id] = SiteVisit(site_id=site_id, arrived_at=now)
        return {"status": AllocationStatus.ARRIVED, "site_visits": visits}

    def _dispatch(self, allocation: Allocation, now: datetime) -> dict:
        site_id = allocation.current_site
        visits = dict(allocation.site_visits)
        previous = visits.get(site_id) or SiteVisit(site_id=site_id)
        visits[site_id] = previous.model_copy(update={"departed_at": now})

        if allocation.is_final_site:
            return {"status": AllocationStatus.COMPLETED, "site_visits": visits}
        return {
            "status": AllocationStatus.IN_TRANSIT,
            "site_index": allocation.site_index + 1,
            "site_visits": visits,
        }

    def _check_dispatch(self, allocation: Allocation, context: TransitionContext) -> None:
        """Dispatch rules, with or without a gate. Raises DispatchRejectedError with the reason the operator should see."""
        status = allocation.status
        if status == AllocationStatus.COMPLETED:
            self._reject_dispatch(allocation, DispatchBlockReason.ALREADY_DEPARTED)
        if status == AllocationStatus.CANCELLED:
            return

        driver = context.driver_status or allocation.driver_validation_status
        if driver != DriverValidationStatus.READY_FOR_DISPATCH:
            if driver == DriverValidationStatus.REJECTED:
                self._reject_dispatch(allocation, DispatchBlockReason.DRIVER_REJECTED)
            if status in _AT_SITE:
                if driver == DriverValidationStatus.VERIFIED:
                    self._reject_dispatch(allocation, DispatchBlockReason.PENDING_PERMIT)
                self._reject_dispatch(allocation, DispatchBlockReason.PENDING_VERIFICATION)
            self._reject_dispatch(allocation, DispatchBlockReason.NOT_READY)

        if status != AllocationStatus.READY_FOR_DISPATCH:
            self._reject_dispatch(allocation, DispatchBlockReason.NOT_READY)

    @staticmethod
    def _reject_dispatch(allocation: Allocation, reason: DispatchBlockReason) -> None:
        logger.warning(
            "Dispatch rejected",
            extra={"allocation_id": allocation.id, "status": allocation.status.value, "reason": reason.value},
        )
        raise DispatchRejectedError(
            allocation.id, allocation.status.value, reason.value, DISPATCH_MESSAGES[reason]
        )

    @staticmethod
    def _rejection_reason(allocation: Allocation, event: LifecycleEvent) -> str:
        if allocation.status in TERMINAL_STATUSES:
            return f"allocation is {allocation.status.value} and no longer tracked"
        if event == LifecycleEvent.CHECK_IN and allocation.status in _AT_SITE:
            return "This truck has already been checked in"
        allowed = ", ".join(sorted(s.value for s in TRANSITIONS[event]))
        return f"'{event.value}' is only valid from: {allowed}"
