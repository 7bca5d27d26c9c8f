"""Delivery transition policy.

Single source of truth for which status changes are legal and which roles
may request them. Everything here is pure: no I/O and no mutable module
state. Callers never hardcode status lists; they ask this module.

Two layers decide a request:

1. The adjacency table says which statuses may follow the current one,
   independent of who asks.
2. The role overlay narrows that set per role:

   - SENDER: only CANCELLED, and only before pickup
     (current in DRAFT, CREATED, ASSIGNED)
   - COURIER: only the physical-handling statuses
   - DISPATCHER, ADMIN: the full adjacency set

``can_transition`` is defined through ``allowed_transitions`` so the two
can never disagree.

Proof of delivery is not a policy concern; the lifecycle service enforces
it before moving a delivery to DELIVERED.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

from parceltrack.db.models.base import ActorRole, DeliveryStatus

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

S = DeliveryStatus

ADJACENCY: Mapping[DeliveryStatus, frozenset[DeliveryStatus]] = MappingProxyType(
    {
        S.DRAFT: frozenset({S.CREATED, S.CANCELLED}),
        S.CREATED: frozenset({S.ASSIGNED, S.CANCELLED}),
        S.ASSIGNED: frozenset({S.PICKED_UP, S.CANCELLED}),
        S.PICKED_UP: frozenset(
            {S.IN_TRANSIT, S.OUT_FOR_DELIVERY, S.FAILED_DELIVERY, S.RETURNED}
        ),
        S.IN_TRANSIT: frozenset({S.OUT_FOR_DELIVERY, S.FAILED_DELIVERY, S.RETURNED}),
        S.OUT_FOR_DELIVERY: frozenset({S.DELIVERED, S.FAILED_DELIVERY, S.RETURNED}),
        # Re-delivery loop: a failed attempt returns to the hub and goes out again
        S.FAILED_DELIVERY: frozenset({S.RETURNED}),
        S.RETURNED: frozenset({S.OUT_FOR_DELIVERY}),
        S.DELIVERED: frozenset(),
        S.CANCELLED: frozenset(),
    }
)

# Sender may withdraw a delivery only while it has not been picked up
SENDER_CANCELLABLE: frozenset[DeliveryStatus] = frozenset({S.DRAFT, S.CREATED, S.ASSIGNED})

COURIER_REACHABLE: frozenset[DeliveryStatus] = frozenset(
    {
        S.PICKED_UP,
        S.IN_TRANSIT,
        S.OUT_FOR_DELIVERY,
        S.DELIVERED,
        S.FAILED_DELIVERY,
        S.RETURNED,
    }
)

TERMINAL_STATUSES: frozenset[DeliveryStatus] = frozenset(
    status for status, following in ADJACENCY.items() if not following
)

# Statuses in which a courier may still be bound or replaced
ASSIGNABLE_STATUSES: frozenset[DeliveryStatus] = frozenset({S.CREATED, S.ASSIGNED})

_DECLARATION_ORDER: Mapping[DeliveryStatus, int] = MappingProxyType(
    {status: index for index, status in enumerate(DeliveryStatus)}
)


def _check_tables() -> None:
    """Fail at import if the tables do not cover the status enum."""
    missing = set(DeliveryStatus) - set(ADJACENCY)
    if missing:
        msg = f"Adjacency table is missing statuses: {sorted(s.value for s in missing)}"
        raise RuntimeError(msg)
    for status, following in ADJACENCY.items():
        unknown = following - set(DeliveryStatus)
        if unknown:
            msg = f"Adjacency entry for {status.value} references unknown statuses"
            raise RuntimeError(msg)


_check_tables()


def allowed_transitions(current: DeliveryStatus, role: ActorRole) -> frozenset[DeliveryStatus]:
    """Statuses ``role`` may move a delivery to from ``current``.

    Args:
        current: The delivery's current status.
        role: Role of the requesting actor.

    Returns:
        The allowed next statuses; empty when nothing is allowed.
    """
    following = ADJACENCY[current]

    if role in (ActorRole.DISPATCHER, ActorRole.ADMIN):
        return following
    if role == ActorRole.COURIER:
        return following & COURIER_REACHABLE
    if role == ActorRole.SENDER:
        if current in SENDER_CANCELLABLE:
            return following & {S.CANCELLED}
        return frozenset()
    return frozenset()


def can_transition(current: DeliveryStatus, next_status: DeliveryStatus, role: ActorRole) -> bool:
    """Whether ``role`` may move a delivery from ``current`` to ``next_status``."""
    return next_status in allowed_transitions(current, role)


def is_terminal(status: DeliveryStatus) -> bool:
    """Whether no further status change is possible from ``status``."""
    return status in TERMINAL_STATUSES


def in_declaration_order(statuses: Iterable[DeliveryStatus]) -> list[DeliveryStatus]:
    """Sort statuses in lifecycle (enum declaration) order."""
    return sorted(set(statuses), key=_DECLARATION_ORDER.__getitem__)


def format_allowed(statuses: Iterable[DeliveryStatus]) -> str:
    """Render an allowed set for messages: ``"X, Y"`` or ``"none"``."""
    ordered = in_declaration_order(statuses)
    if not ordered:
        return "none"
    return ", ".join(status.value for status in ordered)
