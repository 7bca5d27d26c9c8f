"""Delivery lifecycle service.

This module is the only writer of delivery status. It ties together:
- The transition policy (which role may request which status)
- The per-delivery access check
- The assignment ledger
- The append-only audit log

Every operation runs in its own database transaction taken from an
``async_sessionmaker``; nothing is cached between calls, so every call
re-reads the current status. Writes lock the delivery row and the mapper's
version counter rejects a status write based on a stale read.

A status write and its audit event commit together or not at all. If the
event or the commit cannot be written, the transaction is rolled back, the
failure is logged at CRITICAL and an integrity alert is raised.

After commit, a ``DeliveryNotification`` is handed to the optional ``notify``
callback in a detached task, so the caller never waits for it. Plain
callables run in a worker thread and coroutine functions are awaited. A
failing callback is logged; the committed change stands. ``close`` waits for
the tasks still pending.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from parceltrack.core.log import configure_logging
from parceltrack.db.models.base import ActorRole, DeliveryStatus, utcnow
from parceltrack.db.models.deliveries import Assignment, Delivery
from parceltrack.schemas import DeliveryNotification, NewDelivery, PublicTracking, TrackingEvent
from parceltrack.services import transition_policy
from parceltrack.services.alerting import AlertEventType, AlertingConfig, AlertingService
from parceltrack.services.assignment import AssignmentLedger
from parceltrack.services.audit_log import DeliveryAuditLog, is_sequence_conflict
from parceltrack.services.authz import ensure_delivery_access, require_role
from parceltrack.services.errors import (
    AuditTrailError,
    ConcurrentModificationError,
    DeliveryNotFoundError,
    InvalidTransitionError,
    MissingProofError,
)
from parceltrack.services.tracking import allocate_tracking_code

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable, Callable, Coroutine, Mapping
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from parceltrack.core.config import Settings
    from parceltrack.db.models.events import DeliveryEvent
    from parceltrack.db.models.users import User
    from parceltrack.services.authz import Actor

    NotifyCallback = Callable[[DeliveryNotification], Awaitable[None] | None]

logger = logging.getLogger(__name__)

CREATED_NOTE = "Delivery created"
DRAFT_NOTE = "Draft saved"
CHECKPOINT_NOTE = "Checkpoint added"


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Result of an accepted status change.

    Attributes:
        delivery: The delivery after the change.
        event: Audit event recorded for the change.
        previous_status: Status before the change.
    """

    delivery: Delivery
    event: DeliveryEvent
    previous_status: DeliveryStatus


@dataclass(frozen=True, slots=True)
class AssignmentResult:
    """Result of a courier assignment.

    Attributes:
        delivery: The delivery after the assignment.
        assignment: The new ledger row.
        event: ASSIGNED audit event naming the courier.
        previous_status: Status before the assignment (CREATED or ASSIGNED).
    """

    delivery: Delivery
    assignment: Assignment
    event: DeliveryEvent
    previous_status: DeliveryStatus


def _clean(value: str | None) -> str | None:
    """Strip free text; blank becomes None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


class DeliveryLifecycleService:
    """Orchestrates every change to a delivery.

    The session factory must be configured with ``expire_on_commit=False``
    so returned models stay readable after their transaction commits.

    Example:
        service = DeliveryLifecycleService.from_settings(get_settings())
        result = await service.request_transition(
            delivery_id,
            DeliveryStatus.PICKED_UP,
            Actor(actor_id=courier_id, role=ActorRole.COURIER),
            location_text="Warehouse 3",
        )
        print(result.previous_status, "->", result.delivery.status)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        notify: NotifyCallback | None = None,
        alerting: AlertingService | None = None,
        tracking_prefix: str = "OFF",
        tracking_max_attempts: int = 10,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            session_factory: Factory for one session per operation.
            notify: Called with a notification after each committed change.
            alerting: Integrity alerting; None only logs audit failures.
            tracking_prefix: Prefix for new tracking codes.
            tracking_max_attempts: Collision retries for tracking codes.
        """
        self._session_factory = session_factory
        self._notify_callback = notify
        self._alerting = alerting
        self._tracking_prefix = tracking_prefix
        self._tracking_max_attempts = tracking_max_attempts
        # Strong references to detached alert and notification tasks
        self._background: set[asyncio.Task[Any]] = set()
        self._owns_engine = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        *,
        notify: NotifyCallback | None = None,
    ) -> DeliveryLifecycleService:
        """Build a service wired to the configured database and alert webhook.

        Also applies the configured log level. Without ``session_factory`` the
        service uses the process-wide engine and disposes of it in ``close``.
        """
        configure_logging(settings.log_level)

        owns_engine = session_factory is None
        if session_factory is None:
            from parceltrack.db import get_session_factory

            session_factory = get_session_factory()

        service = cls(
            session_factory,
            notify=notify,
            alerting=AlertingService(AlertingConfig.from_settings(settings.alerting)),
            tracking_prefix=settings.tracking.code_prefix,
            tracking_max_attempts=settings.tracking.max_attempts,
        )
        service._owns_engine = owns_engine
        return service

    async def close(self) -> None:
        """Wait for pending alerts and notifications, then release connections."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._alerting is not None:
            await self._alerting.close()
        if self._owns_engine:
            from parceltrack.db import close_engine

            await close_engine()

    # -------------------------------------------------------------------------
    # Status changes
    # -------------------------------------------------------------------------

    async def request_transition(
        self,
        delivery_id: UUID,
        requested_status: DeliveryStatus | str,
        actor: Actor,
        *,
        note: str | None = None,
        location_text: str | None = None,
        proof_image_url: str | None = None,
    ) -> TransitionResult:
        """Move a delivery to ``requested_status``.

        Steps, all in one transaction:
        1. Load and lock the delivery
        2. Check the actor's access to it
        3. Ask the transition policy for a verdict
        4. For DELIVERED, require a proof image (given now or stored earlier)
        5. Write the status and append exactly one audit event

        Args:
            delivery_id: Delivery to change.
            requested_status: Target status.
            actor: Authenticated actor making the request.
            note: Free-text note; defaults to ``Status updated to <STATUS>``.
            location_text: Where the change happened.
            proof_image_url: Proof-of-delivery image reference.

        Returns:
            TransitionResult with the updated delivery and its new event.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            ForbiddenError: If the actor has no access to the delivery.
            InvalidTransitionError: If the policy denies the change.
            MissingProofError: If DELIVERED is requested without proof.
            ConcurrentModificationError: If another writer got there first.
            AuditTrailError: If the audit event could not be recorded.
        """
        requested = DeliveryStatus(requested_status)
        proof = _clean(proof_image_url)

        async with self._transaction("request_transition", delivery_id) as session:
            delivery = await self._lock_delivery(session, delivery_id)
            ledger = AssignmentLedger(session)
            ensure_delivery_access(actor, delivery, await ledger.courier_ids(delivery_id))

            previous = delivery.status
            allowed = transition_policy.allowed_transitions(previous, actor.role)
            if requested not in allowed:
                logger.warning(
                    "Transition denied",
                    extra={
                        "delivery_id": str(delivery_id),
                        "from_status": previous.value,
                        "to_status": requested.value,
                        "actor_role": actor.role.value,
                    },
                )
                raise InvalidTransitionError(previous, requested, allowed, actor.role)

            audit = DeliveryAuditLog(session)
            if requested == DeliveryStatus.DELIVERED:
                proof = proof or await audit.latest_proof(delivery_id)
                if not proof:
                    logger.warning(
                        "Delivery without proof rejected",
                        extra={"delivery_id": str(delivery_id), "actor_role": actor.role.value},
                    )
                    raise MissingProofError(delivery_id)

            delivery.status = requested
            delivery.updated_at = utcnow()
            event = await audit.append(
                delivery_id,
                requested,
                actor_id=actor.actor_id,
                note=_clean(note) or f"Status updated to {requested.value}",
                location_text=_clean(location_text),
                proof_image_url=proof,
            )
            notification = self._notification(
                "status_changed", delivery, actor, previous_status=previous
            )

        logger.info(
            "Status transition committed",
            extra={
                "delivery_id": str(delivery_id),
                "from_status": previous.value,
                "to_status": requested.value,
                "actor_role": actor.role.value,
                "event_id": str(event.event_id),
            },
        )
        self._notify(notification)
        return TransitionResult(delivery=delivery, event=event, previous_status=previous)

    async def add_checkpoint(
        self,
        delivery_id: UUID,
        actor: Actor,
        *,
        event_type: DeliveryStatus | str | None = None,
        note: str | None = None,
        location_text: str | None = None,
        proof_image_url: str | None = None,
    ) -> DeliveryEvent:
        """Record a note or location ping without changing status.

        Only the access check applies; the transition policy is skipped
        because a checkpoint never moves the delivery.

        Args:
            delivery_id: Delivery to annotate.
            actor: Authenticated actor.
            event_type: Event tag; defaults to the current status.
            note: Free-text note; defaults to ``Checkpoint added``.
            location_text: Where the checkpoint was taken.
            proof_image_url: Optional image reference (e.g. proof taken early).

        Returns:
            The new audit event.
        """
        async with self._transaction("add_checkpoint", delivery_id) as session:
            delivery = await self._lock_delivery(session, delivery_id)
            ledger = AssignmentLedger(session)
            ensure_delivery_access(actor, delivery, await ledger.courier_ids(delivery_id))

            tag = DeliveryStatus(event_type) if event_type is not None else delivery.status
            event = await DeliveryAuditLog(session).append(
                delivery_id,
                tag,
                actor_id=actor.actor_id,
                note=_clean(note) or CHECKPOINT_NOTE,
                location_text=_clean(location_text),
                proof_image_url=_clean(proof_image_url),
            )

        logger.info(
            "Checkpoint recorded",
            extra={
                "delivery_id": str(delivery_id),
                "event_type": tag.value,
                "actor_role": actor.role.value,
                "event_id": str(event.event_id),
            },
        )
        return event

    async def assign(self, delivery_id: UUID, courier_id: UUID, actor: Actor) -> AssignmentResult:
        """Bind a courier to a delivery.

        The ledger row, the CREATED to ASSIGNED bump and the ASSIGNED event
        (``Assigned to <courier name>``) share one transaction. Reassigning
        while ASSIGNED keeps the status and appends another event.

        Raises:
            DeliveryNotFoundError: If the delivery does not exist.
            ForbiddenError: If the actor is not a dispatcher or admin.
            AssignmentWindowClosedError: If the delivery is past ASSIGNED.
            CourierNotFoundError: If the target is missing or not a courier.
            DuplicateAssignmentError: If the courier is already current.
        """
        async with self._transaction("assign", delivery_id) as session:
            delivery = await self._lock_delivery(session, delivery_id)
            binding = await AssignmentLedger(session).assign(delivery, courier_id, actor)

            previous = delivery.status
            if previous != DeliveryStatus.ASSIGNED:
                if not transition_policy.can_transition(
                    previous, DeliveryStatus.ASSIGNED, actor.role
                ):
                    allowed = transition_policy.allowed_transitions(previous, actor.role)
                    raise InvalidTransitionError(
                        previous, DeliveryStatus.ASSIGNED, allowed, actor.role
                    )
                delivery.status = DeliveryStatus.ASSIGNED
            delivery.updated_at = utcnow()

            event = await DeliveryAuditLog(session).append(
                delivery_id,
                DeliveryStatus.ASSIGNED,
                actor_id=actor.actor_id,
                note=f"Assigned to {binding.courier.name}",
            )
            notification = self._notification(
                "assigned", delivery, actor, previous_status=previous, courier_id=courier_id
            )

        logger.info(
            "Courier assigned",
            extra={
                "delivery_id": str(delivery_id),
                "courier_id": str(courier_id),
                "from_status": previous.value,
                "actor_role": actor.role.value,
                "event_id": str(event.event_id),
            },
        )
        self._notify(notification)
        return AssignmentResult(
            delivery=delivery,
            assignment=binding.assignment,
            event=event,
            previous_status=previous,
        )

    async def create_delivery(
        self,
        actor: Actor,
        data: NewDelivery | Mapping[str, Any],
        *,
        draft: bool = False,
    ) -> Delivery:
        """Create a delivery owned by ``actor``.

        The delivery starts in CREATED (or DRAFT when ``draft`` is set) with
        one matching audit event. This is the only place a status is set
        outside a transition or an assignment.

        Raises:
            ForbiddenError: If the actor is not a sender or admin.
            pydantic.ValidationError: If ``data`` is not a valid delivery.
            TrackingCodeExhaustedError: If no free tracking code was found.
        """
        require_role(actor, ActorRole.SENDER, ActorRole.ADMIN, action="create deliveries")
        try:
            payload = data if isinstance(data, NewDelivery) else NewDelivery.model_validate(data)
        except ValidationError:
            logger.warning(
                "Delivery payload rejected",
                extra={"actor_id": str(actor.actor_id), "actor_role": actor.role.value},
            )
            raise

        status = DeliveryStatus.DRAFT if draft else DeliveryStatus.CREATED
        delivery_id = uuid.uuid4()

        async with self._transaction("create_delivery", delivery_id) as session:
            code = await allocate_tracking_code(
                session,
                prefix=self._tracking_prefix,
                max_attempts=self._tracking_max_attempts,
            )
            delivery = Delivery(
                delivery_id=delivery_id,
                tracking_code=code,
                sender_id=actor.actor_id,
                status=status,
                **payload.model_dump(),
            )
            session.add(delivery)
            event = await DeliveryAuditLog(session).append(
                delivery_id,
                status,
                actor_id=actor.actor_id,
                note=DRAFT_NOTE if draft else CREATED_NOTE,
            )
            notification = self._notification("created", delivery, actor)

        logger.info(
            "Delivery created",
            extra={
                "delivery_id": str(delivery_id),
                "tracking_code": code,
                "to_status": status.value,
                "actor_role": actor.role.value,
                "event_id": str(event.event_id),
            },
        )
        self._notify(notification)
        return delivery

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_delivery(self, delivery_id: UUID, actor: Actor) -> Delivery:
        """Load one delivery the actor has access to."""
        async with self._session_factory() as session:
            delivery = await self._load_delivery(session, delivery_id)
            courier_ids = await AssignmentLedger(session).courier_ids(delivery_id)
            ensure_delivery_access(actor, delivery, courier_ids)
            return delivery

    async def current_courier(self, delivery_id: UUID, actor: Actor) -> UUID | None:
        """Courier of the latest assignment, or None."""
        async with self._session_factory() as session:
            delivery = await self._load_delivery(session, delivery_id)
            ledger = AssignmentLedger(session)
            ensure_delivery_access(actor, delivery, await ledger.courier_ids(delivery_id))
            return await ledger.current_courier(delivery_id)

    async def assignment_history(self, delivery_id: UUID, actor: Actor) -> list[Assignment]:
        """Every assignment of the delivery, oldest first."""
        async with self._session_factory() as session:
            delivery = await self._load_delivery(session, delivery_id)
            ledger = AssignmentLedger(session)
            ensure_delivery_access(actor, delivery, await ledger.courier_ids(delivery_id))
            return await ledger.history(delivery_id)

    async def timeline(self, delivery_id: UUID, actor: Actor) -> list[DeliveryEvent]:
        """The delivery's audit trail, oldest first."""
        async with self._session_factory() as session:
            delivery = await self._load_delivery(session, delivery_id)
            courier_ids = await AssignmentLedger(session).courier_ids(delivery_id)
            ensure_delivery_access(actor, delivery, courier_ids)
            return await DeliveryAuditLog(session).timeline(delivery_id)

    async def allowed_transitions(self, delivery_id: UUID, actor: Actor) -> frozenset[DeliveryStatus]:
        """Statuses the actor may request for this delivery right now."""
        async with self._session_factory() as session:
            delivery = await self._load_delivery(session, delivery_id)
            courier_ids = await AssignmentLedger(session).courier_ids(delivery_id)
            ensure_delivery_access(actor, delivery, courier_ids)
            return transition_policy.allowed_transitions(delivery.status, actor.role)

    async def list_deliveries(self, actor: Actor) -> list[Delivery]:
        """Deliveries visible to the actor, newest first.

        Senders see their own, couriers those in their assignment history,
        dispatchers and admins see all.
        """
        query = select(Delivery).order_by(Delivery.created_at.desc(), Delivery.tracking_code)
        if actor.role == ActorRole.SENDER:
            query = query.where(Delivery.sender_id == actor.actor_id)
        elif actor.role == ActorRole.COURIER:
            query = query.where(
                Delivery.delivery_id.in_(
                    select(Assignment.delivery_id).where(Assignment.courier_id == actor.actor_id)
                )
            )

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_couriers(self, actor: Actor) -> list[User]:
        """Couriers available for assignment, by name."""
        require_role(actor, ActorRole.DISPATCHER, ActorRole.ADMIN, action="list couriers")
        async with self._session_factory() as session:
            return await AssignmentLedger(session).list_couriers()

    async def status_summary(self, actor: Actor) -> dict[DeliveryStatus, int]:
        """Number of deliveries per status; every status is present. Admins only."""
        require_role(actor, ActorRole.ADMIN, action="view statistics")
        async with self._session_factory() as session:
            result = await session.execute(
                select(Delivery.status, func.count()).group_by(Delivery.status)
            )
            counts = {status: 0 for status in DeliveryStatus}
            for status, count in result.all():
                counts[DeliveryStatus(status)] = count
            return counts

    async def track(self, tracking_code: str) -> PublicTracking:
        """Public view of a delivery by tracking code; no actor needed.

        Raises:
            DeliveryNotFoundError: If no delivery has this code.
        """
        code = tracking_code.strip().upper()
        async with self._session_factory() as session:
            result = await session.execute(select(Delivery).where(Delivery.tracking_code == code))
            delivery = result.scalar_one_or_none()
            if delivery is None:
                raise DeliveryNotFoundError(tracking_code)

            events = await DeliveryAuditLog(session).timeline(delivery.delivery_id)
            return PublicTracking(
                tracking_code=delivery.tracking_code,
                title=delivery.title,
                priority=delivery.priority,
                status=delivery.status,
                destination_address=delivery.destination_address,
                receiver_name=delivery.receiver_name,
                created_at=delivery.created_at,
                events=[TrackingEvent.model_validate(e) for e in events],
            )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(
        self, operation: str, delivery_id: UUID
    ) -> AsyncGenerator[AsyncSession, None]:
        """One session and transaction; commit on success, roll back on error."""
        session = self._session_factory()
        try:
            yield session
            await self._commit(session, delivery_id)
        except AuditTrailError as e:
            await session.rollback()
            self._report_audit_failure(operation, e)
            raise
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def _commit(self, session: AsyncSession, delivery_id: UUID) -> None:
        try:
            await session.commit()
        except StaleDataError as e:
            raise ConcurrentModificationError(delivery_id) from e
        except IntegrityError as e:
            if is_sequence_conflict(e):
                raise ConcurrentModificationError(delivery_id) from e
            raise AuditTrailError(delivery_id, str(e)) from e
        except SQLAlchemyError as e:
            raise AuditTrailError(delivery_id, str(e)) from e

    async def _load_delivery(self, session: AsyncSession, delivery_id: UUID) -> Delivery:
        delivery = await session.get(Delivery, delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def _lock_delivery(self, session: AsyncSession, delivery_id: UUID) -> Delivery:
        """Load the delivery with ``SELECT ... FOR UPDATE``."""
        result = await session.execute(
            select(Delivery).where(Delivery.delivery_id == delivery_id).with_for_update()
        )
        delivery = result.scalar_one_or_none()
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    def _notification(
        self,
        event: str,
        delivery: Delivery,
        actor: Actor,
        *,
        previous_status: DeliveryStatus | None = None,
        courier_id: UUID | None = None,
    ) -> DeliveryNotification:
        return DeliveryNotification(
            event=event,
            delivery_id=delivery.delivery_id,
            tracking_code=delivery.tracking_code,
            status=delivery.status,
            previous_status=previous_status,
            courier_id=courier_id,
            actor_id=actor.actor_id,
            occurred_at=utcnow(),
        )

    def _notify(self, notification: DeliveryNotification) -> None:
        """Hand the notification to the callback in a detached task."""
        if self._notify_callback is None:
            return
        self._spawn(self._deliver_notification(self._notify_callback, notification))

    async def _deliver_notification(
        self, callback: NotifyCallback, notification: DeliveryNotification
    ) -> None:
        try:
            if inspect.iscoroutinefunction(callback):
                await callback(notification)
            else:
                # Plain callables may block; keep them off the event loop
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(None, callback, notification)
                if asyncio.iscoroutine(result):
                    await result
        except Exception:
            # The change is already committed
            logger.exception(
                "Notification callback failed: delivery=%s event=%s",
                notification.delivery_id,
                notification.event,
                extra={"delivery_id": str(notification.delivery_id)},
            )

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _report_audit_failure(self, operation: str, error: AuditTrailError) -> None:
        logger.critical(
            "Audit trail write failed; transaction rolled back: operation=%s delivery=%s",
            operation,
            error.delivery_id,
            extra={
                "delivery_id": str(error.delivery_id),
                "operation": operation,
                "reason": error.reason,
            },
        )
        if self._alerting is None:
            return

        self._spawn(
            self._alerting.send_integrity_alert(
                alert_type=AlertEventType.AUDIT_TRAIL_FAILURE,
                title="Delivery audit event could not be recorded",
                description=(
                    f"{operation} on delivery {error.delivery_id} was rolled back "
                    "because its audit event could not be persisted."
                ),
                resource_id=str(error.delivery_id),
                details={"operation": operation, "reason": error.reason},
            )
        )
