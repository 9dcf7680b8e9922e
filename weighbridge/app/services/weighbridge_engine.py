"""
Weighbridge Engine Service.

Single entry point the API layer (or any other caller) uses to drive the
allocation lifecycle, record weighbridge readings, move stockpile tonnage
and evaluate alerts.

Mutations of one allocation are serialized on that allocation's lock;
different allocations proceed in parallel. Records are immutable and
swapped whole under the registry lock, so ``snapshot()`` never observes a
half-applied transition.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from weighbridge.app.core.config import Settings, settings as default_settings, validate_settings
from weighbridge.app.core.exceptions import (
    AppException,
    DuplicateResourceError,
    IllegalTransitionError,
    InvalidAllocationError,
    InvalidMeasurementError,
    ResourceNotFoundError,
)
from weighbridge.app.domain.alerts.engine import AlertRuleEngine
from weighbridge.app.domain.alerts.rules import AlertRuleConfig
from weighbridge.app.domain.allocation.journey import JourneyLog
from weighbridge.app.domain.allocation.state_machine import AllocationStateMachine
from weighbridge.app.domain.measurement.store import MeasurementStore
from weighbridge.app.domain.reconciliation.calculator import VarianceThresholds, reconcile_allocation
from weighbridge.app.domain.stockpile.ledger import StockpileLedger
from weighbridge.app.models.alert import Alert
from weighbridge.app.models.allocation import (
    Allocation,
    JourneyEntry,
    SiteWeight,
    TransitionContext,
    UnallocatedSighting,
    normalize_registration,
)
from weighbridge.app.models.allocation_enums import (
    AllocationStatus,
    DriverValidationStatus,
    GateType,
    LifecycleEvent,
    MeasurementLocation,
    MeasurementSource,
)
from weighbridge.app.models.measurement import Measurement
from weighbridge.app.models.order import Order
from weighbridge.app.models.stockpile import Stockpile, StockpileAuditEntry
from weighbridge.app.models.timestamps import ensure_utc
from weighbridge.app.models.transporter import Transporter
from weighbridge.app.services.audit import AuditAction, AuditEvent, AuditTrail
from weighbridge.app.services.record_locking import RecordLockRegistry

logger = logging.getLogger(__name__)


class EngineSnapshot(BaseModel):
    """Point-in-time copy of engine state for reporting and alert evaluation."""

    model_config = ConfigDict(frozen=True)

    taken_at: datetime
    allocations: List[Allocation]
    stockpiles: List[Stockpile]
    transporters: List[Transporter]
    orders: List[Order]
    sightings: List[UnallocatedSighting]
    journeys: Dict[str, List[JourneyEntry]]


def _validate_route(route: Sequence[str]) -> tuple:
    route = tuple(route)
    if not route:
        raise InvalidAllocationError("Route must contain at least one site", details={"route": []})
    if len(set(route)) != len(route):
        raise InvalidAllocationError("Route must not visit a site twice", details={"route": list(route)})
    return route


class WeighbridgeEngine:

    def __init__(
        self,
        config: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = validate_settings(config or default_settings)
        self.route = _validate_route(self.config.route)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.thresholds = VarianceThresholds.from_settings(self.config)
        self.alert_engine = AlertRuleEngine(AlertRuleConfig.from_settings(self.config))
        self.measurement_store = MeasurementStore()
        self.journey_log = JourneyLog()
        self.state_machine = AllocationStateMachine(self.measurement_store, self.journey_log)
        self.ledger = StockpileLedger(clock=self._clock)
        self.audit = AuditTrail(clock=self._clock)

        self._allocations: Dict[str, Allocation] = {}
        self._transporters: Dict[str, Transporter] = {}
        self._orders: Dict[str, Order] = {}
        self._sightings: Dict[str, UnallocatedSighting] = {}
        self._allocation_counter = 0
        self._registry_lock = threading.Lock()
        self._locks = RecordLockRegistry("allocation")

    def now(self) -> datetime:
        return self._clock()

    # --- Reference data ---

    def register_stockpile(self, stockpile: Stockpile) -> Stockpile:
        return self.ledger.register(stockpile)

    def register_transporter(self, transporter: Transporter) -> Transporter:
        with self._registry_lock:
            if transporter.id in self._transporters:
                raise DuplicateResourceError("Transporter", transporter.id)
            self._transporters[transporter.id] = transporter
        return transporter

    def register_order(self, order: Order) -> Order:
        with self._registry_lock:
            if order.id in self._orders:
                raise DuplicateResourceError("Order", order.id)
            self._orders[order.id] = order
        return order

    def transporters(self) -> List[Transporter]:
        with self._registry_lock:
            return list(self._transporters.values())

    def orders(self) -> List[Order]:
        with self._registry_lock:
            return list(self._orders.values())

    # --- Allocation reads ---

    def get_allocation(self, allocation_id: str) -> Allocation:
        with self._registry_lock:
            allocation = self._allocations.get(allocation_id)
        if allocation is None:
            raise ResourceNotFoundError("Allocation", allocation_id)
        return allocation

    def list_allocations(
        self,
        status: Optional[AllocationStatus] = None,
        order_ref: Optional[str] = None,
        transporter_ref: Optional[str] = None,
        vehicle_reg: Optional[str] = None,
    ) -> List[Allocation]:
        """Allocations matching every given filter, oldest first."""
        with self._registry_lock:
            allocations = list(self._allocations.values())
        wanted_reg = normalize_registration(vehicle_reg) if vehicle_reg else None
        return [
            a for a in allocations
            if (status is None or a.status == status)
            and (order_ref is None or a.order_ref == order_ref)
            and (transporter_ref is None or a.transporter_ref == transporter_ref)
            and (wanted_reg is None or a.normalized_reg == wanted_reg)
        ]

    def find_open_allocation(self, vehicle_reg: str) -> Optional[Allocation]:
        """
        Plate lookup for the gate: the truck's non-terminal allocation.

        Matching ignores whitespace and case. If a truck somehow holds more
        than one open allocation, the earliest created is returned.
        """
        wanted = normalize_registration(vehicle_reg)
        if not wanted:
            return None
        with self._registry_lock:
            candidates = [
                a for a in self._allocations.values()
                if not a.is_terminal and a.normalized_reg == wanted
            ]
        if not candidates:
            return None
        return min(candidates, key=lambda a: (a.created_at, a.id))

    def journey(self, allocation_id: str) -> List[JourneyEntry]:
        self.get_allocation(allocation_id)
        return self.journey_log.entries(allocation_id)

    def measurements(self, allocation_id: str) -> List[Measurement]:
        self.get_allocation(allocation_id)
        return self.measurement_store.for_allocation(allocation_id)

    def audit_trail(
        self,
        action: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        return self.audit.get_audit_trail(action=action, entity_id=entity_id, limit=limit)

    def snapshot(self) -> EngineSnapshot:
        with self._registry_lock:
            allocations = list(self._allocations.values())
            transporters = list(self._transporters.values())
            orders = list(self._orders.values())
            sightings = list(self._sightings.values())
        return EngineSnapshot(
            taken_at=self.now(),
            allocations=allocations,
            stockpiles=self.ledger.snapshot(),
            transporters=transporters,
            orders=orders,
            sightings=sightings,
            journeys=self.journey_log.snapshot(),
        )

    # --- Allocation lifecycle ---

    def create_allocation(
        self,
        vehicle_reg: str,
        order_ref: str,
        transporter_ref: Optional[str] = None,
        driver_ref: Optional[str] = None,
        driver_validation_status: DriverValidationStatus = DriverValidationStatus.PENDING_VERIFICATION,
        product: Optional[str] = None,
        scheduled_date: Optional[datetime] = None,
        route: Optional[Sequence[str]] = None,
        destination_stockpile_id: Optional[str] = None,
        expected_tonnes: Optional[float] = None,
        allocation_id: Optional[str] = None,
        actor: str = "system",
    ) -> Allocation:
        """
        Book a truck against an order.

        The allocation starts ``scheduled`` at the first site of its route
        (the deployment route unless one is given). If a destination
        stockpile is named, the expected load is counted as pending inbound.

        Raises:
            InvalidAllocationError: Blank registration or unusable route
            ResourceNotFoundError: Unknown destination stockpile
            DuplicateResourceError: Allocation ID already used
        """
        if not normalize_registration(vehicle_reg):
            raise InvalidAllocationError("Vehicle registration is required", details={"vehicle_reg": vehicle_reg})
        if not order_ref:
            raise InvalidAllocationError("Order reference is required", details={"order_ref": order_ref})
        route = _validate_route(route) if route is not None else self.route
        if expected_tonnes is not None and expected_tonnes < 0:
            raise InvalidAllocationError("expected_tonnes must be zero or positive", details={"expected_tonnes": expected_tonnes})
        if destination_stockpile_id is not None:
            self.ledger.get(destination_stockpile_id)

        now = self.now()
        with self._registry_lock:
            if allocation_id is None:
                self._allocation_counter += 1
                allocation_id = f"ALLOC-{self._allocation_counter:06d}"
            if allocation_id in self._allocations:
                raise DuplicateResourceError("Allocation", allocation_id)
            allocation = Allocation(
                id=allocation_id,
                vehicle_reg=vehicle_reg.strip(),
                order_ref=order_ref,
                transporter_ref=transporter_ref,
                driver_ref=driver_ref,
                driver_validation_status=driver_validation_status,
                product=product,
                scheduled_date=scheduled_date,
                created_at=now,
                updated_at=now,
                route=route,
                destination_stockpile_id=destination_stockpile_id,
                expected_tonnes=expected_tonnes,
            )
            self._allocations[allocation_id] = allocation

        if destination_stockpile_id is not None:
            self.ledger.plan_inbound(destination_stockpile_id, expected_tonnes or 0.0, allocation_id)

        self.audit.log_event(
            AuditAction.ALLOCATION_CREATED,
            entity_id=allocation_id,
            actor=actor,
            metadata={"vehicle_reg": allocation.vehicle_reg, "order_ref": order_ref, "route": list(route)},
        )
        logger.info(
            "Allocation created",
            extra={"allocation_id": allocation_id, "vehicle_reg": allocation.normalized_reg, "order_ref": order_ref},
        )
        return allocation

    def record_measurement(
        self,
        allocation_id: str,
        site_id: str,
        gross_kg: float,
        tare_kg: float,
        ticket_ref: Optional[str] = None,
        source: MeasurementSource = MeasurementSource.MANUAL_ENTRY,
        captured_at: Optional[datetime] = None,
        actor: str = "system",
    ) -> Measurement:
        """
        Record a weighbridge reading for an allocation at one site.

        The reading's location (origin / intermediate / destination) follows
        from the site's position on the allocation's route. The latest
        reading per site becomes the allocation's site weight, and once two
        sites have been weighed the reconciliation result is refreshed.

        Raises:
            ResourceNotFoundError: Unknown allocation
            InvalidMeasurementError: Negative weights, tare above gross,
                site not on the route, or a cancelled allocation
        """
        with self._locks.hold(allocation_id):
            allocation = self.get_allocation(allocation_id)
            if allocation.status == AllocationStatus.CANCELLED:
                raise InvalidMeasurementError(
                    f"Allocation {allocation_id} is cancelled; readings are no longer accepted",
                    details={"allocation_id": allocation_id},
                )
            if site_id not in allocation.route:
                raise InvalidMeasurementError(
                    f"Site '{site_id}' is not on the route of allocation {allocation_id}",
                    details={"site_id": site_id, "route": list(allocation.route)},
                )
            if gross_kg is None or tare_kg is None or gross_kg < 0 or tare_kg < 0:
                raise InvalidMeasurementError(
                    "Gross and tare must be zero or positive",
                    details={"gross_kg": gross_kg, "tare_kg": tare_kg},
                )
            if tare_kg > gross_kg:
                raise InvalidMeasurementError(
                    f"Tare ({tare_kg}) cannot exceed gross ({gross_kg})",
                    details={"gross_kg": gross_kg, "tare_kg": tare_kg},
                )

            position = allocation.route.index(site_id)
            if position == 0:
                location = MeasurementLocation.ORIGIN
            elif position == len(allocation.route) - 1:
                location = MeasurementLocation.DESTINATION
            else:
                location = MeasurementLocation.INTERMEDIATE

            sequence = self.measurement_store.next_sequence()
            measurement = self.measurement_store.add(Measurement(
                id=f"WB-{sequence:08d}",
                allocation_id=allocation_id,
                site_id=site_id,
                location=location,
                gross_kg=gross_kg,
                tare_kg=tare_kg,
                captured_at=captured_at or self.now(),
                ticket_ref=ticket_ref,
                source=source,
                sequence=sequence,
            ))

            latest = self.measurement_store.latest_at_site(allocation_id, site_id)
            site_weights = dict(allocation.site_weights)
            site_weights[site_id] = SiteWeight(
                measurement_id=latest.id,
                site_id=site_id,
                location=latest.location,
                gross_kg=latest.gross_kg,
                tare_kg=latest.tare_kg,
                captured_at=latest.captured_at,
                ticket_ref=latest.ticket_ref,
            )
            updated = allocation.model_copy(update={"site_weights": site_weights, "updated_at": self.now()})
            updated = updated.model_copy(update={"reconciliation": reconcile_allocation(updated, self.thresholds)})
            self._commit(updated)

        self.audit.log_event(
            AuditAction.MEASUREMENT_RECORDED,
            entity_id=allocation_id,
            actor=actor,
            metadata={
                "measurement_id": measurement.id,
                "site_id": site_id,
                "net_kg": measurement.net_kg,
                "source": source.value,
            },
        )
        logger.info(
            "Measurement recorded",
            extra={"allocation_id": allocation_id, "site_id": site_id, "net_kg": measurement.net_kg},
        )
        if updated.reconciliation is not None and updated.reconciliation.flagged:
            logger.warning(
                "Weight variance flagged",
                extra={
                    "allocation_id": allocation_id,
                    "variance_kg": updated.reconciliation.variance_kg,
                    "variance_pct": round(updated.reconciliation.variance_pct, 2),
                },
            )
        return measurement

    def transition(
        self,
        allocation_id: str,
        event: LifecycleEvent,
        context: Optional[TransitionContext] = None,
        now: Optional[datetime] = None,
    ) -> Allocation:
        """
        Apply a lifecycle event to an allocation.

        Completing an allocation credits its destination stockpile with the
        delivered net mass; cancelling releases its pending-inbound
        reservation.

        Raises:
            ResourceNotFoundError: Unknown allocation
            IllegalTransitionError: Event not valid for the current state
            DispatchRejectedError: Dispatch refused (driver not ready, already departed)
            MissingMeasurementError: Weighing completed without a reading
        """
        context = context or TransitionContext()
        with self._locks.hold(allocation_id):
            allocation = self.get_allocation(allocation_id)
            try:
                updated = self.state_machine.transition(allocation, event, context, ensure_utc(now) or self.now())
            except AppException as exc:
                self.audit.log_event(
                    AuditAction.TRANSITION_REJECTED,
                    entity_id=allocation_id,
                    actor=context.actor,
                    metadata={"event": str(getattr(event, "value", event)), "error_code": exc.error_code, "message": exc.message},
                )
                logger.warning(
                    "Transition rejected",
                    extra={"allocation_id": allocation_id, "event": str(getattr(event, "value", event)), "error_code": exc.error_code},
                )
                raise
            self._commit(updated)

            if updated.status == AllocationStatus.COMPLETED:
                self._credit_delivery(updated, context.actor)
            elif updated.status == AllocationStatus.CANCELLED and updated.destination_stockpile_id:
                self.ledger.release_inbound(updated.destination_stockpile_id, allocation_id)

        self.audit.log_event(
            AuditAction.TRANSITION_APPLIED,
            entity_id=allocation_id,
            actor=context.actor,
            metadata={
                "event": LifecycleEvent(event).value,
                "from_status": allocation.status.value,
                "status": updated.status.value,
                "site_id": allocation.current_site,
            },
        )
        logger.info(
            "Transition applied",
            extra={
                "allocation_id": allocation_id,
                "event": LifecycleEvent(event).value,
                "status": updated.status.value,
                "site": updated.site_status_label,
            },
        )
        return updated

    def check_in_vehicle(
        self,
        vehicle_reg: str,
        context: Optional[TransitionContext] = None,
        now: Optional[datetime] = None,
    ) -> Allocation:
        """
        Gate operation by plate.

        At the entrance gate the truck is checked in; at the exit gate it is
        dispatched. A plate with no open allocation is recorded as an
        unallocated sighting (which the alert pass reports) and rejected
        without any state change.

        Raises:
            ResourceNotFoundError: No open allocation for the registration
        """
        context = context or TransitionContext(gate=GateType.ENTRANCE)
        seen_at = ensure_utc(now) or self.now()
        allocation = self.find_open_allocation(vehicle_reg)
        if allocation is None:
            sighting = UnallocatedSighting(vehicle_reg=vehicle_reg.strip(), site_id=context.site_id, seen_at=seen_at)
            with self._registry_lock:
                self._record_sighting(sighting)
            self.audit.log_event(
                AuditAction.UNALLOCATED_CHECK_IN,
                entity_id=sighting.normalized_reg,
                actor=context.actor,
                metadata={"site_id": context.site_id, "gate": context.gate.value if context.gate else None},
            )
            logger.warning(
                "Unallocated vehicle at gate",
                extra={"vehicle_reg": sighting.normalized_reg, "site_id": context.site_id},
            )
            raise ResourceNotFoundError("Open allocation for vehicle", sighting.normalized_reg)

        event = LifecycleEvent.DISPATCH if context.gate == GateType.EXIT else LifecycleEvent.CHECK_IN
        return self.transition(allocation.id, event, context, seen_at)

    def assign_stockpile(
        self,
        allocation_id: str,
        stockpile_id: str,
        expected_tonnes: Optional[float] = None,
        actor: str = "system",
    ) -> Allocation:
        """
        Point an allocation's load at a destination stockpile.

        Moves the pending-inbound reservation from the previous stockpile,
        if any.

        Raises:
            ResourceNotFoundError: Unknown allocation or stockpile
            IllegalTransitionError: Allocation already completed or cancelled
        """
        if expected_tonnes is not None and expected_tonnes < 0:
            raise InvalidAllocationError("expected_tonnes must be zero or positive", details={"expected_tonnes": expected_tonnes})
        with self._locks.hold(allocation_id):
            allocation = self.get_allocation(allocation_id)
            self.ledger.get(stockpile_id)
            if allocation.is_terminal:
                raise IllegalTransitionError(
                    allocation_id,
                    allocation.status.value,
                    "assign_stockpile",
                    reason=f"allocation is {allocation.status.value} and no longer tracked",
                )

            tonnes = expected_tonnes if expected_tonnes is not None else allocation.expected_tonnes
            previous = allocation.destination_stockpile_id
            if previous is not None and previous != stockpile_id:
                self.ledger.release_inbound(previous, allocation_id)
            self.ledger.plan_inbound(stockpile_id, tonnes or 0.0, allocation_id)

            updated = allocation.model_copy(update={
                "destination_stockpile_id": stockpile_id,
                "expected_tonnes": tonnes,
                "updated_at": self.now(),
            })
            self._commit(updated)

        self.audit.log_event(
            AuditAction.STOCKPILE_ASSIGNED,
            entity_id=allocation_id,
            actor=actor,
            metadata={"stockpile_id": stockpile_id, "previous_stockpile_id": previous, "expected_tonnes": tonnes},
        )
        return updated

    # --- Stockpiles ---

    def stockpile_snapshot(self) -> List[Stockpile]:
        return self.ledger.snapshot()

    def credit_stockpile(
        self,
        stockpile_id: str,
        tonnes: float,
        allocation_id: Optional[str] = None,
        strict: bool = False,
        actor: str = "system",
    ) -> Stockpile:
        stockpile, entry = self.ledger.credit_with_entry(
            stockpile_id, tonnes, allocation_id=allocation_id, strict=strict, actor=actor
        )
        self._audit_credit(entry, actor)
        return stockpile

    def debit_stockpile(
        self,
        stockpile_id: str,
        tonnes: float,
        actor: str = "system",
        notes: Optional[str] = None,
    ) -> Stockpile:
        stockpile = self.ledger.debit(stockpile_id, tonnes, actor=actor, notes=notes)
        self.audit.log_event(
            AuditAction.STOCKPILE_DEBITED,
            entity_id=stockpile_id,
            actor=actor,
            metadata={"tonnes": tonnes, "current_tonnes": stockpile.current_tonnes},
        )
        return stockpile

    def adjust_stockpile(
        self,
        stockpile_id: str,
        surveyed_tonnes: float,
        actor: str = "system",
        notes: Optional[str] = None,
    ) -> Stockpile:
        stockpile = self.ledger.adjust(stockpile_id, surveyed_tonnes, actor=actor, notes=notes)
        self.audit.log_event(
            AuditAction.STOCKPILE_ADJUSTED,
            entity_id=stockpile_id,
            actor=actor,
            metadata={"surveyed_tonnes": surveyed_tonnes, "current_tonnes": stockpile.current_tonnes},
        )
        return stockpile

    def stockpile_audit(self, stockpile_id: str) -> List[StockpileAuditEntry]:
        self.ledger.get(stockpile_id)
        return self.ledger.audit_trail(stockpile_id)

    # --- Alerts ---

    def evaluate_alerts(self, now: Optional[datetime] = None) -> List[Alert]:
        """Run the rule catalog over a consistent snapshot. Never raises."""
        snap = self.snapshot()
        return self.alert_engine.evaluate(
            allocations=snap.allocations,
            stockpiles=snap.stockpiles,
            transporters=snap.transporters,
            now=ensure_utc(now) or snap.taken_at,
            orders=snap.orders,
            sightings=snap.sightings,
        )

    # --- Internals ---

    def _commit(self, allocation: Allocation) -> None:
        with self._registry_lock:
            self._allocations[allocation.id] = allocation

    def _record_sighting(self, sighting: UnallocatedSighting) -> None:
        """
        Keep the latest sighting per registration, dropping any older than
        the alert window. Caller holds the registry lock.
        """
        current = self._sightings.get(sighting.normalized_reg)
        if current is None or sighting.seen_at >= current.seen_at:
            self._sightings[sighting.normalized_reg] = sighting
        cutoff = self.now() - timedelta(hours=self.config.unallocated_sighting_window_hours)
        for reg in [reg for reg, s in self._sightings.items() if s.seen_at < cutoff]:
            del self._sightings[reg]

    def _credit_delivery(self, allocation: Allocation, actor: str) -> None:
        """Credit the delivered net mass of a completed allocation to its stockpile."""
        stockpile_id = allocation.destination_stockpile_id
        if stockpile_id is None:
            return
        weighed = [site for site in allocation.route if site in allocation.site_weights]
        if not weighed:
            self.ledger.release_inbound(stockpile_id, allocation.id)
            logger.warning(
                "Completed allocation has no weighbridge reading; stockpile not credited",
                extra={"allocation_id": allocation.id, "stockpile_id": stockpile_id},
            )
            return
        tonnes = allocation.site_weights[weighed[-1]].net_kg / 1000
        _, entry = self.ledger.credit_with_entry(stockpile_id, tonnes, allocation_id=allocation.id, actor=actor)
        self._audit_credit(entry, actor)

    def _audit_credit(self, entry: StockpileAuditEntry, actor: str) -> None:
        self.audit.log_event(
            AuditAction.STOCKPILE_CREDITED,
            entity_id=entry.stockpile_id,
            actor=actor,
            metadata={
                "tonnes": entry.requested_tonnes,
                "applied_tonnes": entry.applied_tonnes,
                "allocation_id": entry.allocation_id,
            },
        )
        if entry.overflow_tonnes > 0:
            self.audit.log_event(
                AuditAction.CAPACITY_OVERFLOW,
                entity_id=entry.stockpile_id,
                actor=actor,
                metadata={"overflow_tonnes": entry.overflow_tonnes, "allocation_id": entry.allocation_id},
            )


def build_engine(
    config: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
    stockpiles: Iterable[Stockpile] = (),
    transporters: Iterable[Transporter] = (),
    orders: Iterable[Order] = (),
) -> WeighbridgeEngine:
    """Construct an engine and load its reference data."""
    engine = WeighbridgeEngine(config=config, clock=clock)
    for stockpile in stockpiles:
        engine.register_stockpile(stockpile)
    for transporter in transporters:
        engine.register_transporter(transporter)
    for order in orders:
        engine.register_order(order)
    return engine
