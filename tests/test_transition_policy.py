"""Tests for the delivery transition policy.

Tests cover:
- Agreement of can_transition and allowed_transitions over every input
- Sender cancellation window
- Courier status restrictions
- Full authority for dispatchers and admins
- Terminal statuses
- The re-delivery loop
- Message formatting of allowed sets
"""

import itertools

import pytest

from parceltrack.db.models.base import ActorRole, DeliveryStatus
from parceltrack.services import transition_policy
from parceltrack.services.transition_policy import (
    ADJACENCY,
    allowed_transitions,
    can_transition,
    format_allowed,
    in_declaration_order,
    is_terminal,
)

S = DeliveryStatus

ALL_INPUTS = list(itertools.product(DeliveryStatus, DeliveryStatus, ActorRole))


class TestPolicyConsistency:
    """can_transition and allowed_transitions must never disagree."""

    @pytest.mark.parametrize(("current", "requested", "role"), ALL_INPUTS)
    def test_can_transition_matches_allowed_set(self, current, requested, role):
        """requested is allowed exactly when it is in the allowed set."""
        assert can_transition(current, requested, role) == (
            requested in allowed_transitions(current, role)
        )

    @pytest.mark.parametrize(
        ("current", "role"), list(itertools.product(DeliveryStatus, ActorRole))
    )
    def test_allowed_set_is_subset_of_adjacency(self, current, role):
        """No role can reach a status the adjacency table forbids."""
        assert allowed_transitions(current, role) <= ADJACENCY[current]

    def test_every_status_has_an_adjacency_entry(self):
        """The adjacency table covers the whole enum."""
        assert set(ADJACENCY) == set(DeliveryStatus)

    def test_tables_are_immutable(self):
        """Module tables cannot be modified at runtime."""
        with pytest.raises(TypeError):
            ADJACENCY[S.DELIVERED] = frozenset({S.CREATED})  # type: ignore[index]
        assert isinstance(transition_policy.COURIER_REACHABLE, frozenset)


class TestAdjacency:
    """Tests for the role-independent adjacency table."""

    def test_canonical_table(self):
        """Adjacency matches the documented lifecycle graph."""
        assert ADJACENCY[S.DRAFT] == {S.CREATED, S.CANCELLED}
        assert ADJACENCY[S.CREATED] == {S.ASSIGNED, S.CANCELLED}
        assert ADJACENCY[S.ASSIGNED] == {S.PICKED_UP, S.CANCELLED}
        assert ADJACENCY[S.PICKED_UP] == {
            S.IN_TRANSIT,
            S.OUT_FOR_DELIVERY,
            S.FAILED_DELIVERY,
            S.RETURNED,
        }
        assert ADJACENCY[S.IN_TRANSIT] == {S.OUT_FOR_DELIVERY, S.FAILED_DELIVERY, S.RETURNED}
        assert ADJACENCY[S.OUT_FOR_DELIVERY] == {S.DELIVERED, S.FAILED_DELIVERY, S.RETURNED}
        assert ADJACENCY[S.FAILED_DELIVERY] == {S.RETURNED}
        assert ADJACENCY[S.RETURNED] == {S.OUT_FOR_DELIVERY}


class TestSenderOverlay:
    """Senders may only cancel, and only before pickup."""

    @pytest.mark.parametrize("current", [S.DRAFT, S.CREATED, S.ASSIGNED])
    def test_sender_can_cancel_before_pickup(self, current):
        """CANCELLED is the only option before pickup."""
        assert allowed_transitions(current, ActorRole.SENDER) == {S.CANCELLED}

    @pytest.mark.parametrize(
        "current",
        [
            S.PICKED_UP,
            S.IN_TRANSIT,
            S.OUT_FOR_DELIVERY,
            S.FAILED_DELIVERY,
            S.RETURNED,
            S.DELIVERED,
            S.CANCELLED,
        ],
    )
    def test_sender_has_no_options_after_pickup(self, current):
        """Once picked up, a sender can request nothing."""
        assert allowed_transitions(current, ActorRole.SENDER) == frozenset()
        assert not can_transition(current, S.CANCELLED, ActorRole.SENDER)

    def test_sender_cannot_submit_draft(self):
        """Submitting a draft is not a sender transition."""
        assert not can_transition(S.DRAFT, S.CREATED, ActorRole.SENDER)


class TestCourierOverlay:
    """Couriers handle the physical lifecycle only."""

    @pytest.mark.parametrize("current", list(DeliveryStatus))
    @pytest.mark.parametrize("requested", [S.CANCELLED, S.ASSIGNED, S.CREATED, S.DRAFT])
    def test_courier_never_requests_administrative_statuses(self, current, requested):
        """CANCELLED, ASSIGNED, CREATED and DRAFT are never courier moves."""
        assert not can_transition(current, requested, ActorRole.COURIER)

    def test_courier_picks_up_assigned_delivery(self):
        """ASSIGNED -> PICKED_UP is the courier's first move."""
        assert allowed_transitions(S.ASSIGNED, ActorRole.COURIER) == {S.PICKED_UP}

    def test_courier_out_for_delivery_options(self):
        """From OUT_FOR_DELIVERY a courier can deliver, fail or return."""
        assert allowed_transitions(S.OUT_FOR_DELIVERY, ActorRole.COURIER) == {
            S.DELIVERED,
            S.FAILED_DELIVERY,
            S.RETURNED,
        }

    def test_courier_has_no_options_before_assignment(self):
        """A CREATED delivery offers the courier nothing."""
        assert allowed_transitions(S.CREATED, ActorRole.COURIER) == frozenset()


class TestStaffAuthority:
    """Dispatchers and admins get the full adjacency set."""

    @pytest.mark.parametrize("role", [ActorRole.DISPATCHER, ActorRole.ADMIN])
    @pytest.mark.parametrize("current", list(DeliveryStatus))
    def test_staff_get_full_adjacency(self, role, current):
        """Staff allowed set equals the adjacency entry."""
        assert allowed_transitions(current, role) == ADJACENCY[current]

    def test_dispatcher_can_cancel_assigned(self):
        """Dispatchers can cancel before pickup."""
        assert can_transition(S.ASSIGNED, S.CANCELLED, ActorRole.DISPATCHER)

    def test_staff_cannot_skip_states(self):
        """Full authority still follows the graph."""
        assert not can_transition(S.CREATED, S.DELIVERED, ActorRole.ADMIN)
        assert not can_transition(S.PICKED_UP, S.CANCELLED, ActorRole.ADMIN)


class TestTerminalStatuses:
    """DELIVERED and CANCELLED end the lifecycle."""

    @pytest.mark.parametrize("status", [S.DELIVERED, S.CANCELLED])
    @pytest.mark.parametrize("role", list(ActorRole))
    def test_terminal_has_no_successors(self, status, role):
        """Nothing follows a terminal status, for any role."""
        assert is_terminal(status)
        assert allowed_transitions(status, role) == frozenset()

    @pytest.mark.parametrize(
        "status", [s for s in DeliveryStatus if s not in (S.DELIVERED, S.CANCELLED)]
    )
    def test_other_statuses_are_not_terminal(self, status):
        """Every other status has a way forward."""
        assert not is_terminal(status)


class TestRedeliveryLoop:
    """Failed attempts can be retried indefinitely."""

    def test_returned_out_for_delivery_cycle_repeats(self):
        """RETURNED -> OUT_FOR_DELIVERY -> FAILED_DELIVERY -> RETURNED keeps cycling."""
        status = S.RETURNED
        for _ in range(3):
            assert can_transition(status, S.OUT_FOR_DELIVERY, ActorRole.COURIER)
            status = S.OUT_FOR_DELIVERY
            assert can_transition(status, S.FAILED_DELIVERY, ActorRole.COURIER)
            status = S.FAILED_DELIVERY
            assert can_transition(status, S.RETURNED, ActorRole.COURIER)
            status = S.RETURNED

    def test_out_for_delivery_can_return_directly(self):
        """A parcel can go straight back to the hub."""
        assert can_transition(S.OUT_FOR_DELIVERY, S.RETURNED, ActorRole.COURIER)

    def test_delivery_possible_after_returns(self):
        """A returned parcel can still be delivered on the next attempt."""
        assert can_transition(S.RETURNED, S.OUT_FOR_DELIVERY, ActorRole.COURIER)
        assert can_transition(S.OUT_FOR_DELIVERY, S.DELIVERED, ActorRole.COURIER)


class TestFormatting:
    """Tests for allowed-set rendering."""

    def test_format_empty(self):
        """An empty set renders as 'none'."""
        assert format_allowed(frozenset()) == "none"

    def test_format_uses_declaration_order(self):
        """Statuses render in lifecycle order regardless of input order."""
        assert (
            format_allowed({S.RETURNED, S.DELIVERED, S.FAILED_DELIVERY})
            == "DELIVERED, FAILED_DELIVERY, RETURNED"
        )

    def test_in_declaration_order_deduplicates(self):
        """Sorting removes duplicates."""
        assert in_declaration_order([S.CANCELLED, S.CREATED, S.CANCELLED]) == [
            S.CREATED,
            S.CANCELLED,
        ]
