"""Test data factories for parceltrack.

Use these to build consistent, valid test objects without duplicating
data structures across tests.
"""

from typing import Any
from uuid import uuid4

from parceltrack.db.models import ActorRole, Delivery, DeliveryStatus, Priority, User
from parceltrack.schemas import NewDelivery


def make_user(role: ActorRole, name: str | None = None) -> User:
    """Create an unsaved user with a unique email."""
    user_id = uuid4()
    return User(
        user_id=user_id,
        name=name or f"{role.value.title()} {user_id.hex[:6]}",
        email=f"{role.value.lower()}-{user_id.hex[:12]}@example.com",
        role=role,
    )


def new_delivery_payload(**overrides: Any) -> dict[str, Any]:
    """Valid ``create_delivery`` input as a plain dict."""
    payload: dict[str, Any] = {
        "title": "Box of books",
        "description": "Two paperbacks and a dictionary",
        "priority": Priority.MEDIUM,
        "receiver_name": "Rita Receiver",
        "receiver_phone": "+33 6 12 34 56 78",
        "destination_address": "12 Rue des Fleurs, Lyon",
    }
    payload.update(overrides)
    return payload


def new_delivery(**overrides: Any) -> NewDelivery:
    """Valid ``create_delivery`` input."""
    return NewDelivery(**new_delivery_payload(**overrides))


def make_delivery(
    sender_id,
    status: DeliveryStatus = DeliveryStatus.CREATED,
    tracking_code: str | None = None,
) -> Delivery:
    """Create an unsaved delivery row for repository tests."""
    return Delivery(
        delivery_id=uuid4(),
        tracking_code=tracking_code or f"TST-2026-{uuid4().hex[:6].upper()}",
        sender_id=sender_id,
        status=status,
        **new_delivery_payload(),
    )
