"""Pydantic schemas for data entering and leaving the lifecycle service.

These schemas define the validated delivery-creation input, the public
tracking view and the change notification handed to callers after commit.
"""

from __future__ import annotations

# NOTE: datetime and UUID must remain at runtime for Pydantic validation
from datetime import datetime  # noqa: TC003
from uuid import UUID  # noqa: TC003

from pydantic import BaseModel, ConfigDict, Field

from parceltrack.db.models.base import DeliveryStatus, Priority

# -----------------------------------------------------------------------------
# Delivery Creation
# -----------------------------------------------------------------------------


class NewDelivery(BaseModel):
    """Input for creating a delivery.

    Tracking code, sender and initial status are set by the service.
    """

    title: str = Field(..., min_length=3, max_length=255, description="Short parcel title")
    description: str = Field(..., min_length=3, max_length=2000, description="Parcel contents")
    priority: Priority = Field(Priority.MEDIUM, description="Handling priority")
    receiver_name: str = Field(..., min_length=2, max_length=255, description="Receiver name")
    receiver_phone: str = Field(..., min_length=5, max_length=50, description="Receiver phone")
    destination_address: str = Field(
        ..., min_length=5, max_length=1000, description="Delivery address"
    )

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# -----------------------------------------------------------------------------
# Public Tracking
# -----------------------------------------------------------------------------


class TrackingEvent(BaseModel):
    """One timeline entry as shown on the public tracking page."""

    type: DeliveryStatus
    note: str | None = None
    location_text: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PublicTracking(BaseModel):
    """Unauthenticated view of a delivery, looked up by tracking code."""

    tracking_code: str
    title: str
    priority: Priority
    status: DeliveryStatus
    destination_address: str
    receiver_name: str
    created_at: datetime
    events: list[TrackingEvent] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


# -----------------------------------------------------------------------------
# Change Notification
# -----------------------------------------------------------------------------


class DeliveryNotification(BaseModel):
    """A committed delivery change, passed to the service's ``notify`` callback."""

    event: str = Field(..., description="created, status_changed or assigned")
    delivery_id: UUID
    tracking_code: str
    status: DeliveryStatus
    previous_status: DeliveryStatus | None = None
    courier_id: UUID | None = None
    actor_id: UUID
    occurred_at: datetime
