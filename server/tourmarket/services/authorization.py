"""Capability checks performed once at each booking operation boundary."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..core.exceptions import AccessDeniedError

if TYPE_CHECKING:
    from ..models.booking import Booking
    from ..models.tour import Tour

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Marketplace roles carried in the bearer token."""
    TRAVELER = "traveler"
    OPERATOR = "operator"
    ADMIN = "admin"


class Capability(str, Enum):
    """Actions guarded by the capability check."""
    REQUEST_BOOKING = "request_booking"
    DECIDE_BOOKING = "decide_booking"
    CANCEL_BOOKING = "cancel_booking"
    COMPLETE_BOOKING = "complete_booking"
    VIEW_BOOKING = "view_booking"
    PAY_BOOKING = "pay_booking"
    REFUND_BOOKING = "refund_booking"
    LIST_OPERATOR_BOOKINGS = "list_operator_bookings"
    MANAGE_TOUR = "manage_tour"
    MODERATE_TOUR = "moderate_tour"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an operation."""

    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def _owns_booking(actor: Actor, booking: Optional["Booking"]) -> bool:
    return booking is not None and booking.user_id == actor.user_id


def _operates_booking(actor: Actor, booking: Optional["Booking"]) -> bool:
    return actor.role == Role.OPERATOR and booking is not None and booking.operator_id == actor.user_id


def _operates_tour(actor: Actor, tour: Optional["Tour"]) -> bool:
    return actor.role == Role.OPERATOR and tour is not None and tour.created_by == actor.user_id


def is_allowed(
    actor: Actor,
    capability: Capability,
    booking: Optional["Booking"] = None,
    tour: Optional["Tour"] = None,
) -> bool:
    """Return True if ``actor`` holds ``capability`` on the given resource."""
    if capability == Capability.REQUEST_BOOKING:
        return actor.role == Role.TRAVELER
    if capability == Capability.DECIDE_BOOKING:
        return _operates_booking(actor, booking)
    if capability in (Capability.CANCEL_BOOKING, Capability.PAY_BOOKING):
        return actor.role == Role.TRAVELER and _owns_booking(actor, booking)
    if capability == Capability.COMPLETE_BOOKING:
        return actor.is_admin or _operates_booking(actor, booking)
    if capability == Capability.VIEW_BOOKING:
        return actor.is_admin or _owns_booking(actor, booking) or _operates_booking(actor, booking)
    if capability == Capability.REFUND_BOOKING:
        return actor.is_admin or _operates_booking(actor, booking)
    if capability == Capability.LIST_OPERATOR_BOOKINGS:
        return actor.role == Role.OPERATOR
    if capability == Capability.MANAGE_TOUR:
        if tour is None:
            return actor.role == Role.OPERATOR
        return actor.is_admin or _operates_tour(actor, tour)
    if capability == Capability.MODERATE_TOUR:
        return actor.is_admin
    return False


def authorize(
    actor: Actor,
    capability: Capability,
    booking: Optional["Booking"] = None,
    tour: Optional["Tour"] = None,
) -> None:
    """
    Raise AccessDeniedError unless ``actor`` holds ``capability``.

    Args:
        actor: Authenticated caller
        capability: Action being attempted
        booking: Booking the action targets, if any
        tour: Tour the action targets, if any

    Raises:
        AccessDeniedError: If the actor's role or relationship to the
            resource does not grant the capability
    """
    if is_allowed(actor, capability, booking=booking, tour=tour):
        return

    logger.warning(
        "Access denied",
        extra={
            "user_id": actor.user_id,
            "role": actor.role.value,
            "capability": capability.value,
            "booking_id": str(booking.id) if booking is not None else None,
            "tour_id": str(tour.id) if tour is not None else None,
        }
    )
    raise AccessDeniedError(capability=capability.value)
