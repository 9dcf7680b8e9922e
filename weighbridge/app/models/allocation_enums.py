"""
Allocation-related enumerations.
"""

import enum


class AllocationStatus(str, enum.Enum):
    """Allocation lifecycle status."""
    SCHEDULED = "scheduled"  # Truck booked against an order, not yet seen at a site
    IN_TRANSIT = "in_transit"  # Travelling to the next site on its route
    ARRIVED = "arrived"  # Checked in at a site, staging
    WEIGHING = "weighing"  # On the weighbridge
    READY_FOR_DISPATCH = "ready_for_dispatch"  # Weighed, waiting to leave the site
    COMPLETED = "completed"  # Departed the final site
    CANCELLED = "cancelled"  # Withdrawn before completion


TERMINAL_STATUSES = frozenset({AllocationStatus.COMPLETED, AllocationStatus.CANCELLED})


class SitePhase(str, enum.Enum):
    """Where the truck is relative to the current site on its route."""
    IN_TRANSIT = "in_transit"
    ARRIVED = "arrived"


class LifecycleEvent(str, enum.Enum):
    """Events accepted by the allocation state machine."""
    CHECK_IN = "check_in"
    BEGIN_WEIGH = "begin_weigh"
    WEIGH_COMPLETE = "weigh_complete"
    DISPATCH = "dispatch"
    CANCEL = "cancel"


class GateType(str, enum.Enum):
    """Which gate an operator is working at."""
    ENTRANCE = "entrance"
    EXIT = "exit"


class DriverValidationStatus(str, enum.Enum):
    """Driver readiness as reported by the external verification service."""
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"  # Documents checked, permit not yet issued
    READY_FOR_DISPATCH = "ready_for_dispatch"
    REJECTED = "rejected"


class DispatchBlockReason(str, enum.Enum):
    """Why a dispatch was refused."""
    ALREADY_DEPARTED = "already_departed"
    PENDING_PERMIT = "pending_permit"
    PENDING_VERIFICATION = "pending_verification"
    DRIVER_REJECTED = "driver_rejected"
    NOT_READY = "not_ready"


class MeasurementLocation(str, enum.Enum):
    """Position of the weighing site on the route."""
    ORIGIN = "origin"
    INTERMEDIATE = "intermediate"
    DESTINATION = "destination"


class MeasurementSource(str, enum.Enum):
    """How a weighbridge reading entered the system."""
    MANUAL_ENTRY = "manual_entry"
    FILE_UPLOAD = "file_upload"
    OCR_MATCH = "ocr_match"
    WEIGHBRIDGE_FEED = "weighbridge_feed"


class OrderStatus(str, enum.Enum):
    """Order status enumeration."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
