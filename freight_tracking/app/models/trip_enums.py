"""
Trip and shipment status enumerations.
"""

import enum


class TripStage(str, enum.Enum):
    """
    Trip progress stages, declared in the only order a trip may walk them.
    """
    NEW = "NEW"
    ACCEPTED = "ACCEPTED"
    LOADING = "LOADING"  # Heading to pickup
    LOADED = "LOADED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED_PENDING_CONFIRMATION = "DELIVERED_PENDING_CONFIRMATION"  # Driver reported delivery
    DELIVERED = "DELIVERED"  # Shipper confirmed delivery
    COMPLETED = "COMPLETED"


class ShipmentStatus(str, enum.Enum):
    """Authoritative shipment status as stored on the shipment row."""
    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    LOADING = "LOADING"
    LOADED = "LOADED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED_PENDING_CONFIRMATION = "DELIVERED_PENDING_CONFIRMATION"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class AssignmentStatus(str, enum.Enum):
    """Statuses an assignment can hold besides the trip stages it mirrors."""
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"


# Assignments in these statuses no longer entitle the driver to act on the shipment
INACTIVE_ASSIGNMENT_STATUSES = (AssignmentStatus.CANCELLED.value, AssignmentStatus.REJECTED.value)
