"""Capacity ledger: committed participants per tour and travel date."""

import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import CapacityExceededError, TourFullError
from ..core.locking import acquire_advisory_lock, capacity_key, capacity_locks
from ..core.observability import metrics_collector
from ..models.booking import COMMITTED_STATUSES, Booking, BookingStatus
from ..models.tour import Tour

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacitySnapshot:
    """Point-in-time view of one tour date's capacity."""

    tour_id: UUID
    travel_date: date
    max_group_size: int
    committed: int
    accepted: int

    @property
    def available(self) -> int:
        return max(self.max_group_size - self.committed, 0)


class CapacityLedger:
    """
    Derived capacity accounting over the bookings table.

    The ledger stores nothing of its own: committed capacity is the sum of
    participants over pending and accepted bookings. Callers that check and
    then write must do so inside ``admission`` so that the check and the
    insert or update are atomic with respect to other writers.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def committed_participants(
        self,
        tour_id: UUID,
        travel_date: date,
        statuses: Iterable[BookingStatus] = COMMITTED_STATUSES,
    ) -> int:
        """
        Sum participants over bookings for a tour date.

        Args:
            tour_id: Tour to count
            travel_date: Calendar date to count
            statuses: Booking statuses that count (default pending + accepted)

        Returns:
            Total participants, 0 when there are no bookings
        """
        stmt = select(func.coalesce(func.sum(Booking.participants), 0)).where(
            Booking.tour_id == tour_id,
            Booking.travel_date == travel_date,
            Booking.status.in_(list(statuses)),
        )
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def snapshot(self, tour: Tour, travel_date: date) -> CapacitySnapshot:
        """Capacity view for a tour date."""
        committed = await self.committed_participants(tour.id, travel_date)
        accepted = await self.committed_participants(tour.id, travel_date, (BookingStatus.ACCEPTED,))
        return CapacitySnapshot(
            tour_id=tour.id,
            travel_date=travel_date,
            max_group_size=tour.max_group_size,
            committed=committed,
            accepted=accepted,
        )

    @asynccontextmanager
    async def admission(self, tour_id: UUID, travel_date: date) -> AsyncIterator[None]:
        """
        Exclusive admission scope for one tour date.

        Holds the in-process lock for the key and, on PostgreSQL, a
        transaction-scoped advisory lock. The block is expected to commit
        before leaving; on error the session is rolled back so the advisory
        lock is released.
        """
        key = capacity_key(tour_id, travel_date)
        async with capacity_locks.hold(key):
            try:
                await acquire_advisory_lock(self.db, key)
                yield
            except BaseException:
                await self.db.rollback()
                raise

    async def ensure_admissible(self, tour: Tour, travel_date: date, participants: int) -> CapacitySnapshot:
        """
        Request-time gate: pending plus accepted participants must fit.

        Args:
            tour: Tour being booked
            travel_date: Requested date
            participants: Requested participants

        Returns:
            The snapshot the decision was made on

        Raises:
            CapacityExceededError: If the request does not fit
        """
        snapshot = await self.snapshot(tour, travel_date)
        if snapshot.committed + participants > tour.max_group_size:
            logger.warning(
                "Admission rejected - capacity exceeded",
                extra={
                    "tour_id": str(tour.id),
                    "travel_date": travel_date.isoformat(),
                    "requested": participants,
                    "committed": snapshot.committed,
                    "max_group_size": tour.max_group_size
                }
            )
            metrics_collector.record_admission_rejected("capacity_exceeded")
            raise CapacityExceededError(
                tour_id=str(tour.id),
                travel_date=travel_date,
                requested=participants,
                available=snapshot.available,
            )
        return snapshot

    async def ensure_acceptable(self, tour: Tour, booking: Booking) -> CapacitySnapshot:
        """
        Accept-time gate: accepted participants plus this booking must fit.

        Only accepted bookings count here; the pending booking being decided
        is itself part of the pending sum.

        Raises:
            TourFullError: If accepting would overfill the date
        """
        snapshot = await self.snapshot(tour, booking.travel_date)
        if snapshot.accepted + booking.participants > tour.max_group_size:
            logger.warning(
                "Acceptance rejected - tour full",
                extra={
                    "tour_id": str(tour.id),
                    "booking_id": str(booking.id),
                    "travel_date": booking.travel_date.isoformat(),
                    "requested": booking.participants,
                    "accepted": snapshot.accepted,
                    "max_group_size": tour.max_group_size
                }
            )
            metrics_collector.record_admission_rejected("tour_full")
            raise TourFullError(
                tour_id=str(tour.id),
                travel_date=booking.travel_date,
                accepted=snapshot.accepted,
                requested=booking.participants,
                max_group_size=tour.max_group_size,
            )
        return snapshot
