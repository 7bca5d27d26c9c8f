"""Delivery event model: the append-only audit trail.

Every accepted status change and every checkpoint produces exactly one row.
Rows are inserted by ``parceltrack.services.audit_log`` and never updated or
deleted by application code.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from typing import TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parceltrack.db.models.base import Base, DeliveryStatus, TimestampTZ, UUIDPrimaryKey

if TYPE_CHECKING:
    from parceltrack.db.models.deliveries import Delivery
    from parceltrack.db.models.users import User


class DeliveryEvent(Base):
    """One entry in a delivery's timeline.

    ``type`` is the event's semantic tag. For a status change it is the new
    status; for a checkpoint it usually repeats the current status.
    ``sequence`` is the 1-based position within the delivery's trail and is
    unique per delivery, so two writers can never claim the same slot.
    """

    __tablename__ = "delivery_events"

    event_id: Mapped[UUIDPrimaryKey]

    delivery_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("deliveries.delivery_id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    type: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_event_type", create_constraint=True),
        nullable=False,
    )

    note: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    location_text: Mapped[str | None] = mapped_column(String(500), nullable=True)
    # Reference to a stored proof-of-delivery image
    proof_image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    created_by_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.user_id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[TimestampTZ]

    delivery: Mapped[Delivery] = relationship("Delivery", back_populates="events")
    created_by: Mapped[User] = relationship("User", foreign_keys=[created_by_id])

    __table_args__ = (
        UniqueConstraint("delivery_id", "sequence", name="uq_delivery_events_delivery_sequence"),
        Index("ix_delivery_events_created_by_id", "created_by_id"),
    )
