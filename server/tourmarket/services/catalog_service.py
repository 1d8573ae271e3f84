"""Tour catalog service for business logic operations."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..models.tour import ApprovalStatus, Tour, TourDate
from ..schemas.tour import CreateTourRequest
from .authorization import Actor, Capability, authorize

logger = logging.getLogger(__name__)


class CatalogService:
    """Service for tour catalog operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_tour(self, request: CreateTourRequest, actor: Actor) -> Tour:
        """
        Create a new tour owned by the calling operator.

        New tours start in ``pending`` approval and cannot be booked until an
        admin approves them.

        Args:
            request: Tour creation request
            actor: Operator publishing the tour

        Returns:
            Created tour entity

        Raises:
            AccessDeniedError: If the actor is not an operator
            ConflictError: If the tour violates a storage constraint
        """
        authorize(actor, Capability.MANAGE_TOUR)

        tour = Tour(
            title=request.title,
            description=request.description,
            price_amount=request.price.amount,
            price_currency=request.price.currency,
            max_group_size=request.max_group_size,
            created_by=actor.user_id,
            is_active=True,
            approval_status=ApprovalStatus.PENDING,
            available_dates=[TourDate(travel_date=d) for d in sorted(set(request.available_dates))],
        )

        try:
            self.db.add(tour)
            await self.db.commit()
            await self.db.refresh(tour)
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Tour creation failed due to integrity constraint",
                extra={
                    "title": request.title,
                    "created_by": actor.user_id,
                    "error": str(e)
                }
            )
            raise ConflictError(detail="Tour creation failed due to constraint violation")

        logger.info(
            "Tour created successfully",
            extra={
                "tour_id": str(tour.id),
                "title": tour.title,
                "created_by": tour.created_by,
                "max_group_size": tour.max_group_size,
                "date_count": len(tour.available_dates)
            }
        )
        return tour

    async def get_tour_by_id(self, tour_id: UUID) -> Optional[Tour]:
        """
        Get tour by ID.

        Args:
            tour_id: Tour ID to search for

        Returns:
            Tour if found, None otherwise
        """
        stmt = select(Tour).where(Tour.id == tour_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_tour_by_id_or_raise(self, tour_id: UUID) -> Tour:
        """
        Get tour by ID or raise NotFoundError.

        Args:
            tour_id: Tour ID to search for

        Returns:
            Tour entity

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.get_tour_by_id(tour_id)
        if not tour:
            logger.warning(
                "Tour not found",
                extra={"tour_id": str(tour_id)}
            )
            raise NotFoundError(
                resource_type="tour",
                resource_id=str(tour_id)
            )
        return tour

    async def set_approval_status(
        self,
        tour_id: UUID,
        approval_status: ApprovalStatus,
        actor: Actor,
        is_active: Optional[bool] = None,
    ) -> Tour:
        """
        Moderate a tour (admin only).

        Args:
            tour_id: Tour to moderate
            approval_status: New approval status
            actor: Admin performing the moderation
            is_active: Optionally (de)activate the tour at the same time

        Returns:
            Updated tour entity
        """
        authorize(actor, Capability.MODERATE_TOUR)
        tour = await self.get_tour_by_id_or_raise(tour_id)

        previous = tour.approval_status
        tour.approval_status = approval_status
        if is_active is not None:
            tour.is_active = is_active

        await self.db.commit()
        await self.db.refresh(tour)

        logger.info(
            "Tour moderated",
            extra={
                "tour_id": str(tour.id),
                "from_status": previous.value,
                "to_status": approval_status.value,
                "is_active": tour.is_active,
                "moderator": actor.user_id
            }
        )
        return tour

    async def update_price(self, tour_id: UUID, price_amount: int, actor: Actor) -> Tour:
        """
        Change the per-participant price of a tour.

        Existing bookings keep the price they were created with.

        Args:
            tour_id: Tour to update
            price_amount: New price in minor units
            actor: Owning operator or admin

        Returns:
            Updated tour entity

        Raises:
            ValidationError: If the price is not positive
        """
        if price_amount <= 0:
            raise ValidationError(
                detail="Price must be a positive amount",
                errors={"price_amount": price_amount}
            )

        tour = await self.get_tour_by_id_or_raise(tour_id)
        authorize(actor, Capability.MANAGE_TOUR, tour=tour)

        previous = tour.price_amount
        tour.price_amount = price_amount
        await self.db.commit()
        await self.db.refresh(tour)

        logger.info(
            "Tour price updated",
            extra={
                "tour_id": str(tour.id),
                "previous_price": previous,
                "price": price_amount,
                "currency": tour.price_currency
            }
        )
        return tour
