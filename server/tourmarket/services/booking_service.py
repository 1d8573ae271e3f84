"""Booking service: the booking lifecycle state machine."""

import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any, Optional, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..core.clock import Clock, utc_today
from ..core.exceptions import (
    AlreadyProcessedError,
    DateNotAvailableError,
    DuplicateBookingError,
    InvalidTransitionError,
    NotFoundError,
    PastDateNotAllowedError,
    TourNotBookableError,
    ValidationError,
)
from ..core.identifiers import parse_resource_id
from ..core.locking import acquire_advisory_lock, booking_key, booking_locks
from ..core.observability import metrics_collector
from ..models.booking import BILLABLE_STATUSES, COMMITTED_STATUSES, Booking, BookingStatus, PaymentStatus
from ..models.notification import NotificationCategory
from ..models.tour import Tour
from ..schemas.booking import RequestBookingRequest
from .authorization import Actor, Capability, authorize
from .capacity_ledger import CapacityLedger, CapacitySnapshot
from .catalog_service import CatalogService
from .notification_service import NotificationService, Notifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def guarded_transition(
    db: AsyncSession,
    booking: Booking,
    mutate: Callable[[Booking], Awaitable[T]],
    attempts: int = 1,
) -> T:
    """
    Apply ``mutate`` to ``booking`` under the per-booking exclusion scope.

    The booking is re-read after the lock is taken, so ``mutate`` always sees
    the latest committed state and can decide whether its transition is still
    legal. The change is committed with an optimistic version check; a writer
    that lost a race against another process gets a stale-data error, which is
    retried up to ``attempts`` times and otherwise reported as
    AlreadyProcessedError.

    Args:
        db: Session owning ``booking``
        booking: Booking to transition
        mutate: Check-and-set callback; raises to abort the transition
        attempts: Number of tries on version conflicts

    Returns:
        Whatever ``mutate`` returned
    """
    booking_id = booking.id
    key = booking_key(booking_id)

    async with booking_locks.hold(key):
        for attempt in range(1, attempts + 1):
            try:
                await acquire_advisory_lock(db, key)
                await db.refresh(booking)
                result = await mutate(booking)
                await db.commit()
                return result
            except StaleDataError:
                await db.rollback()
                logger.warning(
                    "Concurrent booking update detected",
                    extra={"booking_id": str(booking_id), "attempt": attempt}
                )
            except BaseException:
                await db.rollback()
                raise

        await db.refresh(booking)
        raise AlreadyProcessedError(str(booking_id), booking.status.value)


def ensure_transition(booking: Booking, target: BookingStatus) -> BookingStatus:
    """
    Check that ``booking`` may move to ``target`` and return its current status.

    Raises:
        InvalidTransitionError: If the booking is pending but ``target`` is
            not reachable from pending
        AlreadyProcessedError: If the booking has already left pending and
            ``target`` is not reachable from where it is now
    """
    current = booking.status
    if current.can_transition_to(target):
        return current
    if current == BookingStatus.PENDING:
        raise InvalidTransitionError(str(booking.id), current.value, target.value)
    raise AlreadyProcessedError(str(booking.id), current.value, target.value)


class BookingService:
    """Service for booking lifecycle operations."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        clock: Clock = utc_today,
    ):
        self.db = db
        self.notifier = notifier if notifier is not None else NotificationService(db)
        self.clock = clock
        self.catalog = CatalogService(db)
        self.ledger = CapacityLedger(db)

    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        category: NotificationCategory,
        metadata: dict[str, Any],
    ) -> None:
        try:
            await self.notifier.notify(user_id, title, body, category, metadata)
        except Exception as e:
            logger.error(
                "Notification failed",
                extra={"recipient_user_id": user_id, "title": title, "error": str(e)},
                exc_info=True
            )

    def _record_transition(self, booking: Booking, previous: BookingStatus) -> None:
        metrics_collector.record_transition(previous.value, booking.status.value)
        logger.info(
            "Booking transitioned",
            extra={
                "booking_id": str(booking.id),
                "from_status": previous.value,
                "to_status": booking.status.value,
                "payment_status": booking.payment_status.value
            }
        )

    async def get_booking_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """
        Get booking by ID.

        Args:
            booking_id: Booking ID to search for

        Returns:
            Booking if found, None otherwise
        """
        stmt = select(Booking).where(Booking.id == booking_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_booking_by_id_or_raise(self, booking_id: object) -> Booking:
        """
        Get booking by ID or raise NotFoundError.

        Raises:
            NotFoundError: If booking not found or the ID is malformed
        """
        booking_uuid = parse_resource_id(booking_id, "booking")
        booking = await self.get_booking_by_id(booking_uuid)
        if not booking:
            logger.warning(
                "Booking not found",
                extra={"booking_id": str(booking_id)}
            )
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def _find_live_booking(self, user_id: str, tour_id: UUID, travel_date: date) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .where(
                Booking.user_id == user_id,
                Booking.tour_id == tour_id,
                Booking.travel_date == travel_date,
                Booking.status.in_(COMMITTED_STATUSES),
            )
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def _ensure_requestable(self, tour: Tour, travel_date: date) -> None:
        if not tour.is_bookable:
            raise TourNotBookableError(str(tour.id), tour.is_active, tour.approval_status.value)

        today = self.clock()
        if travel_date < today:
            metrics_collector.record_admission_rejected("past_date")
            raise PastDateNotAllowedError(travel_date, today)

        if travel_date not in tour.available_date_set:
            metrics_collector.record_admission_rejected("date_not_available")
            raise DateNotAvailableError(str(tour.id), travel_date)

    async def request_booking(self, request: RequestBookingRequest, actor: Actor) -> Booking:
        """
        Create a pending booking after admission control.

        The duplicate check, the capacity check and the insert run inside the
        admission scope for the tour date, so concurrent requests for the same
        date cannot jointly exceed the tour's capacity.

        Args:
            request: Booking request
            actor: Traveler requesting the booking

        Returns:
            The new pending booking

        Raises:
            AccessDeniedError: If the actor is not a traveler
            ValidationError: If participants < 1 or the date is missing
            NotFoundError: If the tour does not exist
            TourNotBookableError: If the tour is inactive or not approved
            PastDateNotAllowedError: If the date is before today
            DateNotAvailableError: If the tour does not run on the date
            DuplicateBookingError: If the traveler already has a live booking for the date
            CapacityExceededError: If the request does not fit
        """
        authorize(actor, Capability.REQUEST_BOOKING)

        if request.participants < 1:
            raise ValidationError(
                detail="At least one participant is required",
                errors={"participants": "must be greater than or equal to 1"}
            )
        if request.travel_date is None:
            raise ValidationError(
                detail="Travel date is required",
                errors={"travel_date": "missing"}
            )

        tour_id = parse_resource_id(request.tour_id, "tour")
        tour = await self.catalog.get_tour_by_id_or_raise(tour_id)
        travel_date = request.travel_date
        self._ensure_requestable(tour, travel_date)

        async with self.ledger.admission(tour.id, travel_date):
            existing = await self._find_live_booking(actor.user_id, tour.id, travel_date)
            if existing:
                logger.warning(
                    "Booking request rejected - duplicate",
                    extra={
                        "user_id": actor.user_id,
                        "tour_id": str(tour.id),
                        "travel_date": travel_date.isoformat(),
                        "existing_booking_id": str(existing.id)
                    }
                )
                metrics_collector.record_admission_rejected("duplicate")
                raise DuplicateBookingError(str(existing.id), travel_date)

            snapshot = await self.ledger.ensure_admissible(tour, travel_date, request.participants)

            booking = Booking(
                tour_id=tour.id,
                user_id=actor.user_id,
                operator_id=tour.created_by,
                travel_date=travel_date,
                participants=request.participants,
                price_at_booking=tour.price_amount,
                total_price=tour.price_amount * request.participants,
                currency=tour.price_currency,
                status=BookingStatus.PENDING,
                payment_status=PaymentStatus.UNPAID,
                amount_paid=0,
            )
            self.db.add(booking)
            await self.db.commit()

        committed = snapshot.committed + booking.participants
        metrics_collector.record_booking_requested()
        metrics_collector.set_capacity_utilization(
            str(tour.id), travel_date.isoformat(), committed / tour.max_group_size
        )
        logger.info(
            "Booking requested",
            extra={
                "booking_id": str(booking.id),
                "tour_id": str(tour.id),
                "user_id": actor.user_id,
                "travel_date": travel_date.isoformat(),
                "participants": booking.participants,
                "total_price": booking.total_price,
                "committed": committed,
                "max_group_size": tour.max_group_size
            }
        )

        await self.notify(
            booking.operator_id,
            "New booking request",
            f"New booking request for {tour.title} on {travel_date.isoformat()} "
            f"({booking.participants} participant(s))",
            NotificationCategory.BOOKING,
            {"bookingId": str(booking.id), "tourId": str(tour.id)},
        )
        await self.db.refresh(booking)
        return booking

    async def decide_booking(self, booking_id: object, decision: BookingStatus, actor: Actor) -> Booking:
        """
        Accept or reject a pending booking.

        Acceptance re-checks capacity against accepted bookings only, under
        the admission scope for the tour date; if the date is already full
        the booking stays pending. Rejection clears any payment artifacts.

        Args:
            booking_id: Booking to decide
            decision: ``accepted`` or ``rejected``
            actor: Operator owning the tour

        Returns:
            The decided booking

        Raises:
            ValidationError: If the decision is neither accepted nor rejected
            AccessDeniedError: If the actor does not operate the booking's tour
            TourFullError: If accepting would overfill the date
            AlreadyProcessedError: If the booking was already decided
        """
        if decision not in (BookingStatus.ACCEPTED, BookingStatus.REJECTED):
            raise ValidationError(
                detail="Decision must be 'accepted' or 'rejected'",
                errors={"status": decision.value}
            )

        booking = await self.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.DECIDE_BOOKING, booking=booking)

        if decision == BookingStatus.ACCEPTED:
            tour = await self.catalog.get_tour_by_id_or_raise(booking.tour_id)

            async def accept(current: Booking) -> BookingStatus:
                previous = ensure_transition(current, BookingStatus.ACCEPTED)
                await self.ledger.ensure_acceptable(tour, current)
                current.status = BookingStatus.ACCEPTED
                return previous

            async with self.ledger.admission(booking.tour_id, booking.travel_date):
                previous = await guarded_transition(self.db, booking, accept)
        else:
            async def reject(current: Booking) -> BookingStatus:
                previous = ensure_transition(current, BookingStatus.REJECTED)
                current.status = BookingStatus.REJECTED
                current.payment_status = PaymentStatus.UNPAID
                current.amount_paid = 0
                current.payment_intent_ref = None
                return previous

            previous = await guarded_transition(self.db, booking, reject)

        self._record_transition(booking, previous)

        verb = "accepted" if decision == BookingStatus.ACCEPTED else "rejected"
        await self.notify(
            booking.user_id,
            f"Booking {verb}",
            f"Your booking for {booking.travel_date.isoformat()} has been {verb}",
            NotificationCategory.BOOKING,
            {"bookingId": str(booking.id), "status": booking.status.value},
        )
        await self.db.refresh(booking)
        return booking

    async def cancel_booking(self, booking_id: object, actor: Actor) -> Booking:
        """
        Cancel a pending or accepted booking on behalf of its traveler.

        A paid booking keeps its ``paid`` payment status: refunds are a
        separate action taken by the operator or an admin.

        Raises:
            AccessDeniedError: If the actor does not own the booking
            AlreadyProcessedError: If the booking is already terminal
        """
        booking = await self.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.CANCEL_BOOKING, booking=booking)

        async def cancel(current: Booking) -> BookingStatus:
            previous = ensure_transition(current, BookingStatus.CANCELLED)
            current.status = BookingStatus.CANCELLED
            return previous

        previous = await guarded_transition(self.db, booking, cancel)
        self._record_transition(booking, previous)

        if booking.payment_status == PaymentStatus.PAID:
            logger.info(
                "Paid booking cancelled, refund pending",
                extra={
                    "booking_id": str(booking.id),
                    "amount_paid": booking.amount_paid,
                    "currency": booking.currency
                }
            )

        await self.notify(
            booking.operator_id,
            "Booking cancelled",
            f"A booking for {booking.travel_date.isoformat()} has been cancelled by the traveler",
            NotificationCategory.BOOKING,
            {"bookingId": str(booking.id), "paymentStatus": booking.payment_status.value},
        )
        await self.db.refresh(booking)
        return booking

    async def _complete(self, booking: Booking) -> BookingStatus:
        today = self.clock()

        async def complete(current: Booking) -> BookingStatus:
            previous = ensure_transition(current, BookingStatus.COMPLETED)
            if current.travel_date >= today:
                raise InvalidTransitionError(
                    str(current.id), current.status.value, BookingStatus.COMPLETED.value
                )
            current.status = BookingStatus.COMPLETED
            return previous

        return await guarded_transition(self.db, booking, complete)

    async def complete_booking(self, booking_id: object, actor: Actor) -> Booking:
        """
        Mark an accepted booking whose travel date has passed as completed.

        Raises:
            AccessDeniedError: If the actor is neither the operator nor an admin
            InvalidTransitionError: If the travel date has not passed yet
            AlreadyProcessedError: If the booking is not accepted
        """
        booking = await self.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.COMPLETE_BOOKING, booking=booking)

        previous = await self._complete(booking)
        self._record_transition(booking, previous)

        await self.notify(
            booking.user_id,
            "Trip completed",
            f"Your trip on {booking.travel_date.isoformat()} is complete. You can now leave a review.",
            NotificationCategory.BOOKING,
            {"bookingId": str(booking.id), "tourId": str(booking.tour_id)},
        )
        await self.db.refresh(booking)
        return booking

    async def complete_due_bookings(self, limit: int = 100) -> int:
        """
        Complete accepted bookings whose travel date has passed.

        Bookings that another writer moves first are skipped.

        Args:
            limit: Maximum number of bookings to complete in one pass

        Returns:
            Number of bookings completed
        """
        stmt = (
            select(Booking.id)
            .where(
                Booking.status == BookingStatus.ACCEPTED,
                Booking.travel_date < self.clock(),
            )
            .order_by(Booking.travel_date)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        due_ids = list(result.scalars().all())

        # A skipped booking rolls the session back, so each one is loaded afresh
        completed = 0
        for booking_id in due_ids:
            booking = await self.get_booking_by_id(booking_id)
            if booking is None:
                continue
            try:
                previous = await self._complete(booking)
            except (AlreadyProcessedError, InvalidTransitionError) as e:
                logger.info(
                    "Skipping booking completion",
                    extra={"booking_id": str(booking_id), "reason": e.code}
                )
                continue
            self._record_transition(booking, previous)
            completed += 1

        if completed:
            logger.info("Completed due bookings", extra={"count": completed})
        return completed

    async def get_booking(self, booking_id: object, actor: Actor) -> Booking:
        """Get a booking the actor may view."""
        booking = await self.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.VIEW_BOOKING, booking=booking)
        return booking

    async def list_user_bookings(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        limit: int = 50,
    ) -> list[Booking]:
        """Bookings requested by the actor, newest first."""
        stmt = select(Booking).where(Booking.user_id == actor.user_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.order_by(Booking.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_operator_bookings(
        self,
        actor: Actor,
        status: Optional[BookingStatus] = None,
        limit: int = 50,
    ) -> list[Booking]:
        """Bookings on tours operated by the actor, newest first."""
        authorize(actor, Capability.LIST_OPERATOR_BOOKINGS)
        stmt = select(Booking).where(Booking.operator_id == actor.user_id)
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        stmt = stmt.order_by(Booking.created_at.desc()).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_availability(self, tour_id: object, travel_date: date) -> CapacitySnapshot:
        """Capacity snapshot for a tour date."""
        tour = await self.catalog.get_tour_by_id_or_raise(parse_resource_id(tour_id, "tour"))
        return await self.ledger.snapshot(tour, travel_date)

    async def is_eligible_to_review(self, user_id: str, tour_id: UUID) -> bool:
        """
        Whether ``user_id`` may review ``tour_id``.

        True iff the user holds an accepted or completed booking for the tour
        whose travel date has passed.
        """
        stmt = (
            select(Booking.id)
            .where(
                Booking.user_id == user_id,
                Booking.tour_id == tour_id,
                Booking.status.in_(BILLABLE_STATUSES),
                Booking.travel_date < self.clock(),
            )
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None
