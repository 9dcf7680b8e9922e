"""
Stockpile Ledger.

Tracks current, available and pending-inbound tonnage per stockpile.
Completed allocations credit a stockpile, vessel loading debits it.
Tonnage is clamped to [0, capacity]; an over-credit is recorded with its
overflow amount rather than rejected (unless the caller asks for strict).
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from weighbridge.app.core.exceptions import (
    CapacityViolationError,
    ConfigurationError,
    DuplicateResourceError,
    InvalidMeasurementError,
    ResourceNotFoundError,
)
from weighbridge.app.models.stockpile import Stockpile, StockpileAuditEntry, StockpileOperation
from weighbridge.app.services.record_locking import RecordLockRegistry

logger = logging.getLogger(__name__)


def utilisation(stockpile: Stockpile) -> float:
    """current / capacity. Capacity is > 0 by construction."""
    return stockpile.current_tonnes / stockpile.capacity_tonnes


def aggregate_utilisation(stockpiles: Iterable[Stockpile]) -> float:
    """
    Fleet-wide utilisation: total current over total capacity.

    Weighted by capacity, so a small full pile does not skew the figure the
    way an average of per-pile percentages would.
    """
    stockpiles = list(stockpiles)
    total_capacity = sum(s.capacity_tonnes for s in stockpiles)
    if total_capacity <= 0:
        return 0.0
    return sum(s.current_tonnes for s in stockpiles) / total_capacity


def _require_non_negative(tonnes: float, field: str = "tonnes") -> None:
    if tonnes is None or tonnes < 0:
        raise InvalidMeasurementError(f"{field} must be zero or positive", details={field: tonnes})


class StockpileLedger:

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._stockpiles: Dict[str, Stockpile] = {}
        self._reservations: Dict[Tuple[str, str], float] = {}
        self._audit: List[StockpileAuditEntry] = []
        self._registry_lock = threading.Lock()
        self._locks = RecordLockRegistry("stockpile")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # --- Configuration ---

    def register(self, stockpile: Stockpile) -> Stockpile:
        """
        Add a configured stockpile.

        Raises:
            ConfigurationError: capacity is not positive or current tonnage is out of range
            DuplicateResourceError: ID already registered
        """
        if stockpile.capacity_tonnes <= 0:
            raise ConfigurationError(
                f"Stockpile {stockpile.id} capacity must be greater than zero",
                setting="capacity_tonnes",
            )
        if not 0 <= stockpile.current_tonnes <= stockpile.capacity_tonnes:
            raise ConfigurationError(
                f"Stockpile {stockpile.id} current tonnage must be within [0, capacity]",
                setting="current_tonnes",
            )
        with self._registry_lock:
            if stockpile.id in self._stockpiles:
                raise DuplicateResourceError("Stockpile", stockpile.id)
            self._stockpiles[stockpile.id] = stockpile
        return stockpile

    # --- Reads ---

    def get(self, stockpile_id: str) -> Stockpile:
        with self._registry_lock:
            stockpile = self._stockpiles.get(stockpile_id)
        if stockpile is None:
            raise ResourceNotFoundError("Stockpile", stockpile_id)
        return stockpile

    def snapshot(self) -> List[Stockpile]:
        """Point-in-time copy of all stockpiles."""
        with self._registry_lock:
            return list(self._stockpiles.values())

    def audit_trail(self, stockpile_id: Optional[str] = None) -> List[StockpileAuditEntry]:
        """Ledger movements, most recent first."""
        with self._registry_lock:
            entries = [e for e in self._audit if stockpile_id is None or e.stockpile_id == stockpile_id]
        return list(reversed(entries))

    # --- Movements ---

    def credit(
        self,
        stockpile_id: str,
        tonnes: float,
        allocation_id: Optional[str] = None,
        strict: bool = False,
        actor: str = "system",
    ) -> Stockpile:
        stockpile, _ = self.credit_with_entry(stockpile_id, tonnes, allocation_id, strict, actor)
        return stockpile

    def credit_with_entry(
        self,
        stockpile_id: str,
        tonnes: float,
        allocation_id: Optional[str] = None,
        strict: bool = False,
        actor: str = "system",
    ) -> Tuple[Stockpile, StockpileAuditEntry]:
        """
        Add tonnage delivered by a completed allocation.

        Current tonnage is clamped at capacity; the overflow is written to
        the audit trail. If the allocation had a pending-inbound reservation
        on this stockpile, the whole reservation is released, whatever the
        delivered tonnage.

        Args:
            stockpile_id: Target stockpile
            tonnes: Delivered tonnage
            allocation_id: Delivering allocation, if any
            strict: Raise instead of clamping
            actor: Who triggered the movement

        Raises:
            CapacityViolationError: strict mode and tonnes exceed available capacity
        """
        _require_non_negative(tonnes)
        with self._locks.hold(stockpile_id):
            stockpile = self.get(stockpile_id)
            available = stockpile.available_tonnes
            if strict and tonnes > available:
                raise CapacityViolationError(stockpile_id, tonnes, available)

            applied = min(tonnes, available)
            overflow = tonnes - applied
            update = {"current_tonnes": stockpile.current_tonnes + applied}

            with self._registry_lock:
                reserved = self._reservations.pop((stockpile_id, allocation_id), None)
            if reserved is not None:
                # The truck has arrived; a short or heavy load still closes its reservation.
                update["pending_inbound_tonnes"] = max(0.0, stockpile.pending_inbound_tonnes - reserved)
                update["pending_inbound_trucks"] = max(0, stockpile.pending_inbound_trucks - 1)

            updated = stockpile.model_copy(update=update)
            entry = StockpileAuditEntry(
                stockpile_id=stockpile_id,
                operation=StockpileOperation.ADDITION,
                requested_tonnes=tonnes,
                applied_tonnes=applied,
                overflow_tonnes=overflow,
                resulting_tonnes=updated.current_tonnes,
                allocation_id=allocation_id,
                actor=actor,
                timestamp=self._clock(),
            )
            self._commit(updated, entry)

        if overflow > 0:
            logger.warning(
                "Stockpile credit clamped at capacity",
                extra={"stockpile_id": stockpile_id, "overflow_tonnes": overflow, "allocation_id": allocation_id},
            )
        logger.info(
            "Stockpile credited",
            extra={"stockpile_id": stockpile_id, "tonnes": applied, "current_tonnes": updated.current_tonnes},
        )
        return updated, entry

    def debit(
        self,
        stockpile_id: str,
        tonnes: float,
        actor: str = "system",
        notes: Optional[str] = None,
    ) -> Stockpile:
        """Remove tonnage (outbound vessel loading). Clamped at zero."""
        _require_non_negative(tonnes)
        with self._locks.hold(stockpile_id):
            stockpile = self.get(stockpile_id)
            applied = min(tonnes, stockpile.current_tonnes)
            updated = stockpile.model_copy(update={"current_tonnes": stockpile.current_tonnes - applied})
            self._commit(updated, StockpileAuditEntry(
                stockpile_id=stockpile_id,
                operation=StockpileOperation.REMOVAL,
                requested_tonnes=tonnes,
                applied_tonnes=applied,
                overflow_tonnes=tonnes - applied,
                resulting_tonnes=updated.current_tonnes,
                actor=actor,
                notes=notes,
                timestamp=self._clock(),
            ))

        if applied < tonnes:
            logger.warning(
                "Stockpile debit clamped at zero",
                extra={"stockpile_id": stockpile_id, "shortfall_tonnes": tonnes - applied},
            )
        return updated

    def adjust(
        self,
        stockpile_id: str,
        surveyed_tonnes: float,
        actor: str = "system",
        notes: Optional[str] = None,
    ) -> Stockpile:
        """Set current tonnage to a survey figure, clamped to [0, capacity]."""
        _require_non_negative(surveyed_tonnes, "surveyed_tonnes")
        with self._locks.hold(stockpile_id):
            stockpile = self.get(stockpile_id)
            applied = min(surveyed_tonnes, stockpile.capacity_tonnes)
            updated = stockpile.model_copy(update={"current_tonnes": applied})
            self._commit(updated, StockpileAuditEntry(
                stockpile_id=stockpile_id,
                operation=StockpileOperation.ADJUSTMENT,
                requested_tonnes=surveyed_tonnes,
                applied_tonnes=applied - stockpile.current_tonnes,
                overflow_tonnes=surveyed_tonnes - applied,
                resulting_tonnes=applied,
                actor=actor,
                notes=notes,
                timestamp=self._clock(),
            ))
        return updated

    def plan_inbound(self, stockpile_id: str, tonnes: float, allocation_id: str) -> Stockpile:
        """
        Count an allocation's expected load as pending inbound.

        Re-planning the same allocation replaces its previous reservation.
        """
        _require_non_negative(tonnes)
        with self._locks.hold(stockpile_id):
            stockpile = self.get(stockpile_id)
            key = (stockpile_id, allocation_id)
            with self._registry_lock:
                previous = self._reservations.get(key)
                self._reservations[key] = tonnes
            pending = stockpile.pending_inbound_tonnes - (previous or 0.0) + tonnes
            trucks = stockpile.pending_inbound_trucks + (0 if previous is not None else 1)
            updated = stockpile.model_copy(update={
                "pending_inbound_tonnes": max(0.0, pending),
                "pending_inbound_trucks": trucks,
            })
            self._commit(updated)
        return updated

    def release_inbound(self, stockpile_id: str, allocation_id: str) -> Stockpile:
        """Drop an allocation's reservation without crediting (e.g. cancelled)."""
        with self._locks.hold(stockpile_id):
            stockpile = self.get(stockpile_id)
            with self._registry_lock:
                reserved = self._reservations.pop((stockpile_id, allocation_id), None)
            if reserved is None:
                return stockpile
            updated = stockpile.model_copy(update={
                "pending_inbound_tonnes": max(0.0, stockpile.pending_inbound_tonnes - reserved),
                "pending_inbound_trucks": max(0, stockpile.pending_inbound_trucks - 1),
            })
            self._commit(updated)
        return updated

    def _commit(self, stockpile: Stockpile, entry: Optional[StockpileAuditEntry] = None) -> None:
        with self._registry_lock:
            self._stockpiles[stockpile.id] = stockpile
            if entry is not None:
                self._audit.append(entry)
