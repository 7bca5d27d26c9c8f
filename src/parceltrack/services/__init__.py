"""parceltrack service layer.

This package contains the delivery lifecycle authority and its parts:
- transition_policy: Pure status adjacency and role overlay
- DeliveryAuditLog: Append-only per-delivery event trail
- AssignmentLedger: Courier bindings and assignment history
- DeliveryLifecycleService: Orchestrator and only writer of delivery status
- AlertingService: Integrity alerts for audit-trail write failures
"""

from parceltrack.services.alerting import (
    AlertEventType,
    AlertingConfig,
    AlertingService,
    AlertPayload,
    AlertResult,
    AlertSeverity,
)
from parceltrack.services.assignment import AssignmentLedger
from parceltrack.services.audit_log import DeliveryAuditLog
from parceltrack.services.authz import Actor, ensure_delivery_access
from parceltrack.services.errors import (
    AssignmentWindowClosedError,
    AuditTrailError,
    ConcurrentModificationError,
    CourierNotFoundError,
    DeliveryNotFoundError,
    DuplicateAssignmentError,
    ForbiddenError,
    InvalidTransitionError,
    LifecycleError,
    MissingProofError,
    NotFoundError,
    TrackingCodeExhaustedError,
)
from parceltrack.services.lifecycle import (
    AssignmentResult,
    DeliveryLifecycleService,
    TransitionResult,
)

__all__ = [
    "Actor",
    "AlertEventType",
    "AlertPayload",
    "AlertResult",
    "AlertSeverity",
    "AlertingConfig",
    "AlertingService",
    "AssignmentLedger",
    "AssignmentResult",
    "AssignmentWindowClosedError",
    "AuditTrailError",
    "ConcurrentModificationError",
    "CourierNotFoundError",
    "DeliveryAuditLog",
    "DeliveryLifecycleService",
    "DeliveryNotFoundError",
    "DuplicateAssignmentError",
    "ForbiddenError",
    "InvalidTransitionError",
    "LifecycleError",
    "MissingProofError",
    "NotFoundError",
    "TrackingCodeExhaustedError",
    "TransitionResult",
    "ensure_delivery_access",
]
