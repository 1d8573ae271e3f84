"""Booking router for booking lifecycle operations."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import RequiredAuth
from ..core.exceptions import ProblemDetailsException
from ..core.identifiers import parse_resource_id
from ..models.booking import Booking as BookingModel
from ..models.booking import BookingStatus
from ..schemas.booking import (
    Availability,
    AvailabilityRequest,
    Booking,
    BookingIdRequest,
    BookingList,
    DecideBookingRequest,
    ListBookingsRequest,
    RequestBookingRequest,
    ReviewEligibility,
    ReviewEligibilityRequest,
)
from ..schemas.common import Money
from ..services.authorization import Actor
from ..services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)


def _convert_booking_to_schema(booking_model: BookingModel) -> Booking:
    """Convert booking model to schema."""
    currency = booking_model.currency
    return Booking(
        id=str(booking_model.id),
        tour_id=str(booking_model.tour_id),
        user_id=booking_model.user_id,
        operator_id=booking_model.operator_id,
        travel_date=booking_model.travel_date,
        participants=booking_model.participants,
        price_at_booking=Money(amount=booking_model.price_at_booking, currency=currency),
        total_price=Money(amount=booking_model.total_price, currency=currency),
        status=booking_model.status,
        payment_status=booking_model.payment_status,
        amount_paid=Money(amount=booking_model.amount_paid, currency=currency),
        created_at=booking_model.created_at,
        updated_at=booking_model.updated_at,
    )


def _booking_response(booking_model: BookingModel, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=_convert_booking_to_schema(booking_model).model_dump(mode="json")
    )


def _unexpected_error(operation: str, error: Exception, **context: Any) -> HTTPException:
    logger.error(
        f"Unexpected error in {operation}",
        extra={**context, "error": str(error)},
        exc_info=True
    )
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/request", response_model=Booking, status_code=201)
async def request_booking(
    request: RequestBookingRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Request places on a tour date.

    The booking is created as pending once the date is admitted against the
    tour's capacity; the operator then accepts or rejects it.
    """
    try:
        booking = await BookingService(db).request_booking(request, actor)
        return _booking_response(booking, status_code=201)
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("booking request", e, tour_id=request.tour_id, user_id=actor.user_id)


@router.post("/decide", response_model=Booking)
async def decide_booking(
    request: DecideBookingRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Accept or reject a pending booking (operator of the tour only)."""
    try:
        booking = await BookingService(db).decide_booking(
            request.booking_id, BookingStatus(request.status), actor
        )
        return _booking_response(booking)
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("booking decision", e, booking_id=request.booking_id)


@router.post("/cancel", response_model=Booking)
async def cancel_booking(
    request: BookingIdRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Cancel a pending or accepted booking (traveler only)."""
    try:
        booking = await BookingService(db).cancel_booking(request.booking_id, actor)
        return _booking_response(booking)
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("booking cancellation", e, booking_id=request.booking_id)


@router.post("/complete", response_model=Booking)
async def complete_booking(
    request: BookingIdRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Mark an accepted booking as completed after its travel date."""
    try:
        booking = await BookingService(db).complete_booking(request.booking_id, actor)
        return _booking_response(booking)
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("booking completion", e, booking_id=request.booking_id)


@router.post("/get", response_model=Booking)
async def get_booking(
    request: BookingIdRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Retrieve a booking visible to the caller."""
    try:
        booking = await BookingService(db).get_booking(request.booking_id, actor)
        return _booking_response(booking)
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("booking retrieval", e, booking_id=request.booking_id)


@router.post("/mine", response_model=BookingList)
async def list_my_bookings(
    request: ListBookingsRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """List the caller's own bookings."""
    try:
        bookings = await BookingService(db).list_user_bookings(actor, status=request.status, limit=request.limit)
        response_data = BookingList(items=[_convert_booking_to_schema(b) for b in bookings])
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("booking listing", e, user_id=actor.user_id)


@router.post("/operator", response_model=BookingList)
async def list_operator_bookings(
    request: ListBookingsRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """List bookings on the calling operator's tours."""
    try:
        bookings = await BookingService(db).list_operator_bookings(
            actor, status=request.status, limit=request.limit
        )
        response_data = BookingList(items=[_convert_booking_to_schema(b) for b in bookings])
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("operator booking listing", e, user_id=actor.user_id)


@router.post("/availability", response_model=Availability)
async def get_availability(
    request: AvailabilityRequest,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Committed and available places for a tour date."""
    try:
        snapshot = await BookingService(db).get_availability(request.tour_id, request.travel_date)
        response_data = Availability(
            tour_id=str(snapshot.tour_id),
            travel_date=snapshot.travel_date,
            max_group_size=snapshot.max_group_size,
            committed=snapshot.committed,
            accepted=snapshot.accepted,
            available=snapshot.available,
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("availability query", e, tour_id=request.tour_id)


@router.post("/review-eligibility", response_model=ReviewEligibility)
async def review_eligibility(
    request: ReviewEligibilityRequest,
    actor: Actor = RequiredAuth,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Whether the caller has travelled on the tour and may review it."""
    try:
        tour_id = parse_resource_id(request.tour_id, "tour")
        eligible = await BookingService(db).is_eligible_to_review(actor.user_id, tour_id)
        response_data = ReviewEligibility(tour_id=str(tour_id), eligible=eligible)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("review eligibility check", e, tour_id=request.tour_id)
