"""Courier assignment ledger.

Bindings of couriers to deliveries are rows in an ordered ledger. A
reassignment appends a row; nothing is overwritten. The current courier is
the latest row of a delivery, and every courier that ever appears in the
ledger keeps access to the delivery.

The ledger writes only the binding. The lifecycle service moves the status
to ASSIGNED and appends the audit event in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from parceltrack.db.models.base import ActorRole
from parceltrack.db.models.deliveries import Assignment
from parceltrack.db.models.users import User
from parceltrack.services.authz import require_role
from parceltrack.services.errors import (
    AssignmentWindowClosedError,
    CourierNotFoundError,
    DuplicateAssignmentError,
)
from parceltrack.services.transition_policy import ASSIGNABLE_STATUSES

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from parceltrack.db.models.deliveries import Delivery
    from parceltrack.services.authz import Actor

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Binding:
    """A freshly written assignment and the courier it names."""

    assignment: Assignment
    courier: User


class AssignmentLedger:
    """Reads and appends courier bindings within one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def assign(self, delivery: Delivery, courier_id: UUID, actor: Actor) -> Binding:
        """Bind ``courier_id`` to ``delivery``.

        The delivery must already be loaded (and locked) by the caller.

        Raises:
            ForbiddenError: If the actor is not a dispatcher or admin.
            AssignmentWindowClosedError: If the delivery is past ASSIGNED.
            CourierNotFoundError: If the user is missing or not a courier.
            DuplicateAssignmentError: If the courier is already current.
        """
        require_role(actor, ActorRole.DISPATCHER, ActorRole.ADMIN, action="assign couriers")

        if delivery.status not in ASSIGNABLE_STATUSES:
            raise AssignmentWindowClosedError(delivery.delivery_id, delivery.status)

        courier = await self._session.get(User, courier_id)
        if courier is None or courier.role != ActorRole.COURIER:
            raise CourierNotFoundError(courier_id)

        if await self.current_courier(delivery.delivery_id) == courier_id:
            raise DuplicateAssignmentError(delivery.delivery_id, courier_id)

        assignment = Assignment(
            delivery_id=delivery.delivery_id,
            courier_id=courier_id,
            assigned_by_id=actor.actor_id,
            sequence=await self._next_sequence(delivery.delivery_id),
        )
        self._session.add(assignment)

        logger.debug(
            "Courier bound: delivery=%s courier=%s seq=%d",
            delivery.delivery_id,
            courier_id,
            assignment.sequence,
        )
        return Binding(assignment=assignment, courier=courier)

    async def current_courier(self, delivery_id: UUID) -> UUID | None:
        """Courier of the latest binding, or None if never assigned."""
        result = await self._session.execute(
            select(Assignment.courier_id)
            .where(Assignment.delivery_id == delivery_id)
            .order_by(Assignment.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, delivery_id: UUID) -> list[Assignment]:
        """All bindings of a delivery, oldest first."""
        result = await self._session.execute(
            select(Assignment)
            .where(Assignment.delivery_id == delivery_id)
            .order_by(Assignment.sequence)
        )
        return list(result.scalars().all())

    async def courier_ids(self, delivery_id: UUID) -> frozenset[UUID]:
        """Every courier ever bound to the delivery."""
        result = await self._session.execute(
            select(Assignment.courier_id).where(Assignment.delivery_id == delivery_id).distinct()
        )
        return frozenset(result.scalars().all())

    async def list_couriers(self) -> list[User]:
        """All users with the COURIER role, by name."""
        result = await self._session.execute(
            select(User).where(User.role == ActorRole.COURIER).order_by(User.name, User.email)
        )
        return list(result.scalars().all())

    async def _next_sequence(self, delivery_id: UUID) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.max(Assignment.sequence), 0)).where(
                Assignment.delivery_id == delivery_id
            )
        )
        return int(result.scalar_one()) + 1
