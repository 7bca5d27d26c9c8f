"""Base model definitions, mixins, and common types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Common type annotations for UUIDs and timestamps
- Enum types used across multiple models
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, Uuid, func
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()


def utcnow() -> datetime:
    """Timezone-aware current time used for application-side defaults."""
    return datetime.now(UTC)


# UUID primary key generated application-side so rows have an identity
# before the INSERT is flushed.
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    ),
]


class Base(DeclarativeBase):
    """Declarative base for all parceltrack models."""

    metadata = metadata
    registry = type_registry


# =============================================================================
# Common Enums
# =============================================================================


class DeliveryStatus(str, enum.Enum):
    """Delivery lifecycle statuses.

    The persisted representation is the member value, which equals the
    member name. Adding a status requires updating both the adjacency table
    and the role overlay in ``parceltrack.services.transition_policy``.

    States:
        DRAFT: Saved by the sender but not yet submitted
        CREATED: Submitted and waiting for a courier
        ASSIGNED: A courier is bound to the delivery
        PICKED_UP: The courier collected the parcel
        IN_TRANSIT: Moving between hubs
        OUT_FOR_DELIVERY: On the last-mile leg
        DELIVERED: Handed to the receiver (terminal)
        CANCELLED: Withdrawn before pickup (terminal)
        FAILED_DELIVERY: A delivery attempt failed
        RETURNED: Brought back for another attempt
    """

    DRAFT = "DRAFT"
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED_DELIVERY = "FAILED_DELIVERY"
    RETURNED = "RETURNED"


class ActorRole(str, enum.Enum):
    """Role of the authenticated user acting on a delivery.

    Values:
        SENDER: Owns the deliveries they create
        DISPATCHER: Assigns couriers and steers any delivery
        COURIER: Moves assigned parcels through the physical lifecycle
        ADMIN: Full authority
    """

    SENDER = "SENDER"
    DISPATCHER = "DISPATCHER"
    COURIER = "COURIER"
    ADMIN = "ADMIN"


class Priority(str, enum.Enum):
    """Handling priority of a delivery."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
