"""Delivery-related models: deliveries and courier assignments.

A delivery's ``status`` is only ever written by the lifecycle service. The
``version`` column is the mapper's version counter: every flush that changes
a delivery issues ``UPDATE ... WHERE version = :old`` and fails with
``StaleDataError`` if another transaction got there first.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from typing import TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parceltrack.db.models.base import (
    Base,
    DeliveryStatus,
    Priority,
    TimestampTZ,
    UUIDPrimaryKey,
)

if TYPE_CHECKING:
    from parceltrack.db.models.events import DeliveryEvent
    from parceltrack.db.models.users import User


class Delivery(Base):
    """A parcel moving from a sender to a receiver."""

    __tablename__ = "deliveries"

    delivery_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    # Human-readable identifier printed on labels and used for public tracking
    tracking_code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    priority: Mapped[Priority] = mapped_column(
        Enum(Priority, name="delivery_priority", create_constraint=True),
        nullable=False,
        default=Priority.MEDIUM,
    )

    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_status", create_constraint=True),
        nullable=False,
        default=DeliveryStatus.CREATED,
    )

    # Receiver contact and destination
    receiver_name: Mapped[str] = mapped_column(String(255), nullable=False)
    receiver_phone: Mapped[str] = mapped_column(String(50), nullable=False)
    destination_address: Mapped[str] = mapped_column(String(1000), nullable=False)

    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Reference to a generated shipping label (produced outside the core)
    label_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    sender: Mapped[User] = relationship("User", back_populates="sent_deliveries")
    assignments: Mapped[list[Assignment]] = relationship(
        "Assignment",
        back_populates="delivery",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Assignment.sequence",
    )
    events: Mapped[list[DeliveryEvent]] = relationship(
        "DeliveryEvent",
        back_populates="delivery",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DeliveryEvent.sequence",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_deliveries_sender_id", "sender_id"),
        Index("ix_deliveries_status", "status"),
        Index("ix_deliveries_created_at", "created_at"),
    )


class Assignment(Base):
    """Binding of a courier to a delivery.

    Reassignment inserts a new row; earlier rows are history and are never
    overwritten. The current courier is the row with the highest
    ``sequence`` (equivalently the latest ``assigned_at``).
    """

    __tablename__ = "assignments"

    assignment_id: Mapped[UUIDPrimaryKey]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("deliveries.delivery_id", ondelete="CASCADE"),
        nullable=False,
    )
    courier_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
    )
    # Dispatcher or admin who made the binding
    assigned_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
    )

    # 1-based position in this delivery's assignment ledger
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    assigned_at: Mapped[TimestampTZ]

    delivery: Mapped[Delivery] = relationship("Delivery", back_populates="assignments")
    courier: Mapped[User] = relationship(
        "User",
        foreign_keys=[courier_id],
        back_populates="assignments",
    )

    __table_args__ = (
        UniqueConstraint("delivery_id", "sequence", name="uq_assignments_delivery_sequence"),
        Index("ix_assignments_courier_id", "courier_id"),
    )
