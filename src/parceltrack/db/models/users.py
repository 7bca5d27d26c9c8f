"""User model: senders, dispatchers, couriers and admins.

Users are created and authenticated outside the lifecycle core. The core only
reads them (courier lookup, names in audit notes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parceltrack.db.models.base import ActorRole, Base, TimestampTZ, UUIDPrimaryKey

if TYPE_CHECKING:
    from parceltrack.db.models.deliveries import Assignment, Delivery


class User(Base):
    """Authenticated person with exactly one role."""

    __tablename__ = "users"

    user_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    role: Mapped[ActorRole] = mapped_column(
        Enum(ActorRole, name="actor_role", create_constraint=True),
        nullable=False,
    )

    sent_deliveries: Mapped[list[Delivery]] = relationship(
        "Delivery",
        back_populates="sender",
    )
    assignments: Mapped[list[Assignment]] = relationship(
        "Assignment",
        foreign_keys="Assignment.courier_id",
        back_populates="courier",
    )

    __table_args__ = (Index("ix_users_role", "role"),)
