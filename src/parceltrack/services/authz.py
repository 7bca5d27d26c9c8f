"""Actor identity and per-delivery access control.

The caller's authentication layer resolves a request to an ``Actor``; the
lifecycle service then applies two independent checks:

- Access (this module): may the actor touch this delivery at all?
- Transition (``transition_policy``): may the actor's role request this
  particular status change?

Access rules:
- ADMIN and DISPATCHER may act on every delivery.
- SENDER may act on deliveries they own.
- COURIER may act on deliveries they are or were assigned to. Membership
  in the assignment history counts, so a reassignment does not lock out a
  courier with in-flight work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from parceltrack.db.models.base import ActorRole
from parceltrack.services.errors import ForbiddenError

if TYPE_CHECKING:
    from collections.abc import Collection
    from uuid import UUID

    from parceltrack.db.models.deliveries import Delivery

logger = logging.getLogger(__name__)

STAFF_ROLES: frozenset[ActorRole] = frozenset({ActorRole.DISPATCHER, ActorRole.ADMIN})


@dataclass(frozen=True, slots=True)
class Actor:
    """An authenticated user acting on the system.

    Attributes:
        actor_id: User ID of the actor.
        role: The actor's single role.
    """

    actor_id: UUID
    role: ActorRole

    @property
    def is_staff(self) -> bool:
        """Dispatchers and admins have authority over every delivery."""
        return self.role in STAFF_ROLES


def ensure_delivery_access(
    actor: Actor,
    delivery: Delivery,
    courier_ids: Collection[UUID],
) -> None:
    """Raise ``ForbiddenError`` unless ``actor`` may act on ``delivery``.

    Args:
        actor: The requesting actor.
        delivery: The delivery being acted on.
        courier_ids: Every courier ever assigned to the delivery.

    Raises:
        ForbiddenError: If the actor has no access.
    """
    if actor.is_staff:
        return
    if actor.role == ActorRole.SENDER:
        if delivery.sender_id == actor.actor_id:
            return
        message = "You do not have permission to access this delivery"
    elif actor.role == ActorRole.COURIER:
        if actor.actor_id in courier_ids:
            return
        message = (
            f"Delivery {delivery.delivery_id} is not assigned to you. "
            "Only assigned deliveries can be updated."
        )
    else:
        message = "Forbidden"

    logger.warning(
        "Access denied: actor=%s role=%s delivery=%s",
        actor.actor_id,
        actor.role.value,
        delivery.delivery_id,
        extra={
            "delivery_id": str(delivery.delivery_id),
            "actor_id": str(actor.actor_id),
            "actor_role": actor.role.value,
        },
    )
    raise ForbiddenError(
        message,
        detail={"delivery_id": str(delivery.delivery_id), "role": actor.role.value},
    )


def require_role(actor: Actor, *roles: ActorRole, action: str) -> None:
    """Raise ``ForbiddenError`` unless the actor holds one of ``roles``.

    Args:
        actor: The requesting actor.
        roles: Roles allowed to perform the action.
        action: Short name of the action for the error message.
    """
    if actor.role in roles:
        return

    logger.warning(
        "Role check failed: actor=%s role=%s action=%s",
        actor.actor_id,
        actor.role.value,
        action,
        extra={"actor_id": str(actor.actor_id), "actor_role": actor.role.value},
    )
    raise ForbiddenError(
        f"Role {actor.role.value} may not {action}",
        detail={"role": actor.role.value, "required": sorted(r.value for r in roles)},
    )
