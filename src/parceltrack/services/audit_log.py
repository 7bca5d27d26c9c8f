"""Append-only delivery audit log.

Each delivery has its own event sequence. ``append`` is the only write path
and there is no update or delete path; the ordered sequence is both the
compliance trail and the route history shown to users.

The next ``sequence`` is read inside the caller's transaction after the
delivery row has been locked, and ``(delivery_id, sequence)`` is unique, so
two writers can never claim the same slot.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from parceltrack.db.models.events import DeliveryEvent
from parceltrack.services.errors import AuditTrailError, ConcurrentModificationError

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from parceltrack.db.models.base import DeliveryStatus

logger = logging.getLogger(__name__)

# Unique constraints whose violation means another writer took the slot first
SEQUENCE_CONSTRAINTS = (
    "uq_delivery_events_delivery_sequence",
    "uq_assignments_delivery_sequence",
)
# SQLite reports the columns instead of the constraint name
_SQLITE_SEQUENCE_MARKERS = (
    "delivery_events.delivery_id, delivery_events.sequence",
    "assignments.delivery_id, assignments.sequence",
)


def is_sequence_conflict(error: IntegrityError) -> bool:
    """Whether ``error`` is a lost race for a per-delivery sequence slot."""
    diag = getattr(error.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint is not None:
        return constraint in SEQUENCE_CONSTRAINTS
    message = str(error.orig)
    return any(marker in message for marker in SEQUENCE_CONSTRAINTS + _SQLITE_SEQUENCE_MARKERS)


class DeliveryAuditLog:
    """Per-delivery event trail bound to one session.

    The log never commits; the caller owns the transaction so a status write
    and its event land together or not at all.

    Example:
        audit = DeliveryAuditLog(session)
        event = await audit.append(
            delivery_id,
            DeliveryStatus.PICKED_UP,
            actor_id=courier_id,
            note="Status updated to PICKED_UP",
        )
        await session.commit()
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the audit log.

        Args:
            session: SQLAlchemy async session for database operations.
        """
        self._session = session

    async def append(
        self,
        delivery_id: UUID,
        event_type: DeliveryStatus,
        *,
        actor_id: UUID,
        note: str | None = None,
        location_text: str | None = None,
        proof_image_url: str | None = None,
    ) -> DeliveryEvent:
        """Append one immutable event to a delivery's trail.

        Pending changes in the session (such as the delivery's new status)
        are flushed together with the event.

        Args:
            delivery_id: Delivery the event belongs to.
            event_type: Semantic tag of the event (a status value).
            actor_id: User who caused the event.
            note: Free-text note.
            location_text: Where the event happened.
            proof_image_url: Reference to a proof-of-delivery image.

        Returns:
            The flushed event, with its ``sequence`` assigned.

        Raises:
            ConcurrentModificationError: If another transaction changed the
                delivery or claimed the same sequence slot.
            AuditTrailError: If the event could not be written, including
                other constraint violations such as an unknown actor.
        """
        try:
            next_sequence = await self._next_sequence(delivery_id)
            event = DeliveryEvent(
                delivery_id=delivery_id,
                sequence=next_sequence,
                type=event_type,
                note=note,
                location_text=location_text,
                proof_image_url=proof_image_url,
                created_by_id=actor_id,
            )
            self._session.add(event)
            await self._session.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError(delivery_id) from e
        except IntegrityError as e:
            if is_sequence_conflict(e):
                raise ConcurrentModificationError(delivery_id) from e
            raise AuditTrailError(delivery_id, str(e)) from e
        except SQLAlchemyError as e:
            raise AuditTrailError(delivery_id, str(e)) from e

        logger.debug(
            "Audit event appended: delivery=%s seq=%d type=%s",
            delivery_id,
            event.sequence,
            event_type.value,
            extra={
                "delivery_id": str(delivery_id),
                "event_id": str(event.event_id),
                "event_type": event_type.value,
            },
        )
        return event

    async def timeline(self, delivery_id: UUID) -> list[DeliveryEvent]:
        """Return every event of a delivery, oldest first."""
        result = await self._session.execute(
            select(DeliveryEvent)
            .where(DeliveryEvent.delivery_id == delivery_id)
            .order_by(DeliveryEvent.sequence)
        )
        return list(result.scalars().all())

    async def latest_proof(self, delivery_id: UUID) -> str | None:
        """Return the most recent non-empty proof image reference, if any."""
        result = await self._session.execute(
            select(DeliveryEvent.proof_image_url)
            .where(
                DeliveryEvent.delivery_id == delivery_id,
                DeliveryEvent.proof_image_url.is_not(None),
                DeliveryEvent.proof_image_url != "",
            )
            .order_by(DeliveryEvent.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _next_sequence(self, delivery_id: UUID) -> int:
        """1-based position for the next event of this delivery."""
        result = await self._session.execute(
            select(func.coalesce(func.max(DeliveryEvent.sequence), 0)).where(
                DeliveryEvent.delivery_id == delivery_id
            )
        )
        return int(result.scalar_one()) + 1
