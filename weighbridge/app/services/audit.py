"""
Audit logging service for tracking lifecycle and ledger events.

Provides an append-only, in-memory trail of who did what to which record,
alongside the per-allocation journey log and per-stockpile ledger audit.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Allocation lifecycle
    ALLOCATION_CREATED = "ALLOCATION_CREATED"
    TRANSITION_APPLIED = "TRANSITION_APPLIED"
    TRANSITION_REJECTED = "TRANSITION_REJECTED"
    MEASUREMENT_RECORDED = "MEASUREMENT_RECORDED"
    STOCKPILE_ASSIGNED = "STOCKPILE_ASSIGNED"

    # Gate
    UNALLOCATED_CHECK_IN = "UNALLOCATED_CHECK_IN"

    # Stockpile ledger
    STOCKPILE_CREDITED = "STOCKPILE_CREDITED"
    STOCKPILE_DEBITED = "STOCKPILE_DEBITED"
    STOCKPILE_ADJUSTED = "STOCKPILE_ADJUSTED"
    CAPACITY_OVERFLOW = "CAPACITY_OVERFLOW"


class AuditEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    sequence: int
    action: str
    entity_id: Optional[str] = None
    actor: str = "system"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class AuditTrail:
    """Append-only engine audit trail."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def log_event(
        self,
        action: str,
        entity_id: Optional[str] = None,
        actor: str = "system",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Record an event.

        Args:
            action: Action being performed (use AuditAction constants)
            entity_id: Allocation, stockpile or vehicle the action applies to
            actor: Who performed the action
            metadata: Additional context

        Returns:
            Created AuditEvent
        """
        with self._lock:
            event = AuditEvent(
                sequence=len(self._events) + 1,
                action=action,
                entity_id=entity_id,
                actor=actor,
                metadata=metadata or {},
                timestamp=self._clock(),
            )
            self._events.append(event)
        return event

    def get_audit_trail(
        self,
        action: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        """
        Retrieve audit trail with optional filtering.

        Args:
            action: Filter by action type
            entity_id: Filter by entity
            limit: Maximum number of records to return

        Returns:
            List of AuditEvent instances, most recent first
        """
        with self._lock:
            events = list(self._events)
        matched = [
            e for e in reversed(events)
            if (action is None or e.action == action) and (entity_id is None or e.entity_id == entity_id)
        ]
        return matched[:limit]
