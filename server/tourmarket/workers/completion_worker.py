"""Background worker completing bookings whose travel date has passed."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import async_session_factory
from ..services.booking_service import BookingService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class BookingCompletionWorker(BaseWorker):
    """
    Moves accepted bookings to completed once their travel date is over.

    Completed bookings make their travelers eligible to review the tour.
    """

    def __init__(
        self,
        interval_seconds: int = 3600,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        batch_size: int = 100,
    ):
        super().__init__(name="BookingCompletion", interval_seconds=interval_seconds)
        self.session_factory = session_factory
        self.batch_size = batch_size

    async def process(self) -> None:
        """Complete one batch of due bookings."""
        async with self.session_factory() as db:
            completed = await BookingService(db).complete_due_bookings(limit=self.batch_size)

        if completed > 0:
            logger.info(
                f"Completed {completed} bookings",
                extra={
                    "completed_count": completed,
                    "worker": self.name,
                }
            )
