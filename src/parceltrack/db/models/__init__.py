"""SQLAlchemy ORM models for parceltrack.

This package contains all database models organized by domain:
- base: Common metadata, type definitions and shared enums
- users: Senders, dispatchers, couriers and admins
- deliveries: Deliveries and courier assignments
- events: Append-only delivery timeline
"""

from parceltrack.db.models.base import (
    ActorRole,
    Base,
    DeliveryStatus,
    Priority,
    metadata,
)
from parceltrack.db.models.deliveries import Assignment, Delivery
from parceltrack.db.models.events import DeliveryEvent
from parceltrack.db.models.users import User

__all__ = [
    "ActorRole",
    "Assignment",
    "Base",
    "Delivery",
    "DeliveryEvent",
    "DeliveryStatus",
    "Priority",
    "User",
    "metadata",
]
