"""Booking-related Pydantic schemas."""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.clock import normalize_travel_date
from ..models.booking import BookingStatus, PaymentStatus
from .common import Money


class RequestBookingRequest(BaseModel):
    """Request schema for a traveler's booking request."""

    tour_id: str = Field(..., description="Tour to book")
    travel_date: Optional[date] = Field(None, description="Calendar date of travel (time of day is ignored)")
    participants: int = Field(..., description="Number of participants")

    @field_validator("travel_date", mode="before")
    @classmethod
    def normalize_date(cls, v):
        if v is None:
            return v
        return normalize_travel_date(v)


class DecideBookingRequest(BaseModel):
    """Request schema for an operator's decision on a pending booking."""

    booking_id: str = Field(..., description="Booking to decide")
    status: Literal["accepted", "rejected"] = Field(..., description="Decision")


class BookingIdRequest(BaseModel):
    """Request schema for operations addressed by booking ID."""

    booking_id: str = Field(..., description="Target booking")


class ListBookingsRequest(BaseModel):
    """Request schema for listing bookings."""

    status: Optional[BookingStatus] = Field(None, description="Only bookings in this status")
    limit: int = Field(50, ge=1, le=200, description="Maximum number of bookings")


class AvailabilityRequest(BaseModel):
    """Request schema for a tour date's capacity."""

    tour_id: str = Field(..., description="Tour to inspect")
    travel_date: date = Field(..., description="Calendar date to inspect")

    @field_validator("travel_date", mode="before")
    @classmethod
    def normalize_date(cls, v):
        return normalize_travel_date(v)


class ReviewEligibilityRequest(BaseModel):
    """Request schema for the review eligibility check."""

    tour_id: str = Field(..., description="Tour the caller wants to review")


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    tour_id: str = Field(..., description="Booked tour")
    user_id: str = Field(..., description="Traveler who requested the booking")
    operator_id: str = Field(..., description="Operator of the tour at booking time")
    travel_date: date = Field(..., description="Calendar date of travel")
    participants: int = Field(..., ge=1, description="Number of participants")
    price_at_booking: Money = Field(..., description="Per-participant price snapshot")
    total_price: Money = Field(..., description="Total price snapshot")
    status: BookingStatus = Field(..., description="Booking lifecycle status")
    payment_status: PaymentStatus = Field(..., description="Payment lifecycle status")
    amount_paid: Money = Field(..., description="Amount received from the gateway")
    created_at: datetime = Field(..., description="Booking creation time (ISO 8601)")
    updated_at: datetime = Field(..., description="Last change time (ISO 8601)")


class BookingList(BaseModel):
    """List of bookings."""

    items: List[Booking] = Field(..., description="Bookings, newest first")


class Availability(BaseModel):
    """Capacity of one tour date."""

    tour_id: str = Field(..., description="Tour")
    travel_date: date = Field(..., description="Calendar date")
    max_group_size: int = Field(..., description="Capacity per date")
    committed: int = Field(..., description="Participants in pending and accepted bookings")
    accepted: int = Field(..., description="Participants in accepted bookings")
    available: int = Field(..., description="Participants that can still be requested")


class ReviewEligibility(BaseModel):
    """Review eligibility answer."""

    tour_id: str = Field(..., description="Tour")
    eligible: bool = Field(..., description="Whether the caller may review the tour")
