"""Unit tests for capability checks."""

from types import SimpleNamespace
from uuid import uuid4

import pytest

from tourmarket.core.exceptions import AccessDeniedError
from tourmarket.services.authorization import Actor, Capability, Role, authorize, is_allowed

TRAVELER = Actor(user_id="traveler-1", role=Role.TRAVELER)
OTHER_TRAVELER = Actor(user_id="traveler-2", role=Role.TRAVELER)
OPERATOR = Actor(user_id="operator-1", role=Role.OPERATOR)
OTHER_OPERATOR = Actor(user_id="operator-2", role=Role.OPERATOR)
ADMIN = Actor(user_id="admin-1", role=Role.ADMIN)

BOOKING = SimpleNamespace(id=uuid4(), user_id="traveler-1", operator_id="operator-1")
TOUR = SimpleNamespace(id=uuid4(), created_by="operator-1")


@pytest.mark.parametrize(
    "actor,capability,expected",
    [
        (TRAVELER, Capability.REQUEST_BOOKING, True),
        (OPERATOR, Capability.REQUEST_BOOKING, False),
        (ADMIN, Capability.REQUEST_BOOKING, False),
        (OPERATOR, Capability.DECIDE_BOOKING, True),
        (OTHER_OPERATOR, Capability.DECIDE_BOOKING, False),
        (ADMIN, Capability.DECIDE_BOOKING, False),
        (TRAVELER, Capability.DECIDE_BOOKING, False),
        (TRAVELER, Capability.CANCEL_BOOKING, True),
        (OTHER_TRAVELER, Capability.CANCEL_BOOKING, False),
        (OPERATOR, Capability.CANCEL_BOOKING, False),
        (TRAVELER, Capability.PAY_BOOKING, True),
        (OTHER_TRAVELER, Capability.PAY_BOOKING, False),
        (OPERATOR, Capability.COMPLETE_BOOKING, True),
        (ADMIN, Capability.COMPLETE_BOOKING, True),
        (TRAVELER, Capability.COMPLETE_BOOKING, False),
        (TRAVELER, Capability.VIEW_BOOKING, True),
        (OPERATOR, Capability.VIEW_BOOKING, True),
        (ADMIN, Capability.VIEW_BOOKING, True),
        (OTHER_TRAVELER, Capability.VIEW_BOOKING, False),
        (OTHER_OPERATOR, Capability.VIEW_BOOKING, False),
        (OPERATOR, Capability.REFUND_BOOKING, True),
        (ADMIN, Capability.REFUND_BOOKING, True),
        (TRAVELER, Capability.REFUND_BOOKING, False),
    ],
)
def test_booking_capabilities(actor, capability, expected):
    """Capabilities depend on role and relationship to the booking."""
    assert is_allowed(actor, capability, booking=BOOKING) is expected


def test_tour_capabilities():
    """Operators manage their own tours; only admins moderate."""
    assert is_allowed(OPERATOR, Capability.MANAGE_TOUR) is True
    assert is_allowed(TRAVELER, Capability.MANAGE_TOUR) is False
    assert is_allowed(OPERATOR, Capability.MANAGE_TOUR, tour=TOUR) is True
    assert is_allowed(OTHER_OPERATOR, Capability.MANAGE_TOUR, tour=TOUR) is False
    assert is_allowed(ADMIN, Capability.MANAGE_TOUR, tour=TOUR) is True
    assert is_allowed(ADMIN, Capability.MODERATE_TOUR) is True
    assert is_allowed(OPERATOR, Capability.MODERATE_TOUR) is False


def test_capability_without_booking_is_denied():
    """Relationship-based capabilities need the resource."""
    assert is_allowed(TRAVELER, Capability.CANCEL_BOOKING) is False
    assert is_allowed(OPERATOR, Capability.DECIDE_BOOKING) is False


def test_authorize_raises_access_denied():
    """Denied capabilities surface as 403 problems naming the capability."""
    with pytest.raises(AccessDeniedError) as exc_info:
        authorize(OTHER_TRAVELER, Capability.CANCEL_BOOKING, booking=BOOKING)

    assert exc_info.value.status_code == 403
    assert exc_info.value.problem_details["capability"] == "cancel_booking"


def test_authorize_allows():
    """Allowed capabilities return quietly."""
    authorize(TRAVELER, Capability.CANCEL_BOOKING, booking=BOOKING)
