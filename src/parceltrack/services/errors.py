"""Domain errors raised by the lifecycle services.

Every error carries a machine-readable ``error`` code, a human-readable
``message``, an HTTP-class ``status_code`` and an optional structured
``detail`` dict, so a transport layer can render it without knowing the
concrete class. None of these are retried by the services.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from parceltrack.services.transition_policy import format_allowed, in_declaration_order

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from parceltrack.db.models.base import ActorRole, DeliveryStatus


class LifecycleError(Exception):
    """Base exception for lifecycle errors with structured details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Initialize lifecycle error.

        Args:
            error: Machine-readable error code (e.g., "invalid_transition").
            message: Human-readable error description.
            status_code: HTTP status code a transport layer should return.
            detail: Optional structured details.
        """
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error body shape."""
        body: dict[str, Any] = {"error": self.error, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class NotFoundError(LifecycleError):
    """Referenced resource does not exist (404)."""


class DeliveryNotFoundError(NotFoundError):
    """Raised when a delivery is not found."""

    def __init__(self, delivery_id: UUID | str) -> None:
        self.delivery_id = delivery_id
        super().__init__(
            error="delivery_not_found",
            message=f"Delivery not found: {delivery_id}",
            status_code=404,
            detail={"delivery_id": str(delivery_id)},
        )


class CourierNotFoundError(NotFoundError):
    """Raised when an assignment target is missing or is not a courier."""

    def __init__(self, courier_id: UUID | str) -> None:
        self.courier_id = courier_id
        super().__init__(
            error="courier_not_found",
            message=f"Courier not found: {courier_id}",
            status_code=404,
            detail={"courier_id": str(courier_id)},
        )


class ForbiddenError(LifecycleError):
    """Actor may not act on this resource (403)."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(
            error="forbidden",
            message=message,
            status_code=403,
            detail=detail,
        )


class InvalidTransitionError(LifecycleError):
    """Raised when the transition policy denies a status change.

    Attributes:
        current: Status the delivery is in.
        requested: Status that was asked for.
        allowed: Statuses the actor's role may request from ``current``.
    """

    def __init__(
        self,
        current: DeliveryStatus,
        requested: DeliveryStatus,
        allowed: Iterable[DeliveryStatus],
        role: ActorRole | None = None,
    ) -> None:
        self.current = current
        self.requested = requested
        self.allowed = frozenset(allowed)
        self.role = role
        super().__init__(
            error="invalid_transition",
            message=(
                f"Invalid status transition from {current.value} to {requested.value}. "
                f"Allowed transitions: {format_allowed(self.allowed)}"
            ),
            status_code=400,
            detail={
                "current": current.value,
                "requested": requested.value,
                "allowed": [s.value for s in in_declaration_order(self.allowed)],
                "role": role.value if role is not None else None,
            },
        )


class MissingProofError(LifecycleError):
    """Raised when DELIVERED is requested without a proof-of-delivery image."""

    def __init__(self, delivery_id: UUID | str) -> None:
        self.delivery_id = delivery_id
        super().__init__(
            error="missing_proof",
            message="Proof image is required when marking delivery as DELIVERED",
            status_code=400,
            detail={"delivery_id": str(delivery_id)},
        )


class DuplicateAssignmentError(LifecycleError):
    """Raised when the courier is already the delivery's current courier."""

    def __init__(self, delivery_id: UUID | str, courier_id: UUID | str) -> None:
        self.delivery_id = delivery_id
        self.courier_id = courier_id
        super().__init__(
            error="duplicate_assignment",
            message="Courier is already assigned to this delivery",
            status_code=400,
            detail={"delivery_id": str(delivery_id), "courier_id": str(courier_id)},
        )


class AssignmentWindowClosedError(LifecycleError):
    """Raised when a courier is assigned after the parcel left CREATED/ASSIGNED."""

    def __init__(self, delivery_id: UUID | str, status: DeliveryStatus) -> None:
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(
            error="assignment_window_closed",
            message=f"Cannot assign a courier to a delivery in status {status.value}",
            status_code=400,
            detail={"delivery_id": str(delivery_id), "status": status.value},
        )


class ConcurrentModificationError(LifecycleError):
    """Raised when another transaction changed the delivery first (409)."""

    def __init__(self, delivery_id: UUID | str) -> None:
        self.delivery_id = delivery_id
        super().__init__(
            error="concurrent_modification",
            message=f"Delivery {delivery_id} was modified concurrently; reload and retry",
            status_code=409,
            detail={"delivery_id": str(delivery_id)},
        )


class AuditTrailError(LifecycleError):
    """Raised when the audit event or its transaction could not be persisted.

    The status change is rolled back with it; the delivery is left unchanged.
    """

    def __init__(self, delivery_id: UUID | str, reason: str) -> None:
        self.delivery_id = delivery_id
        self.reason = reason
        super().__init__(
            error="audit_trail_failure",
            message=f"Could not record audit event for delivery {delivery_id}",
            status_code=500,
            detail={"delivery_id": str(delivery_id), "reason": reason},
        )


class TrackingCodeExhaustedError(LifecycleError):
    """Raised when no free tracking code was found within the retry budget."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            error="tracking_code_exhausted",
            message=f"Could not generate a unique tracking code after {attempts} attempts",
            status_code=500,
            detail={"attempts": attempts},
        )
