"""Tour-related Pydantic schemas."""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..core.clock import normalize_travel_date
from ..models.tour import ApprovalStatus
from .common import Money


class CreateTourRequest(BaseModel):
    """Request schema for creating a tour."""

    title: str = Field(..., min_length=1, max_length=255, description="Tour title")
    description: Optional[str] = Field(None, max_length=2000, description="Tour description")
    price: Money = Field(..., description="Price per participant")
    max_group_size: int = Field(..., ge=1, le=1000, description="Participant capacity per travel date")
    available_dates: List[date] = Field(default_factory=list, description="Calendar dates the tour runs on")

    @field_validator("price")
    @classmethod
    def validate_price_positive(cls, v: Money) -> Money:
        if v.amount <= 0:
            raise ValueError("Price must be greater than zero")
        return v

    @field_validator("available_dates", mode="before")
    @classmethod
    def normalize_dates(cls, v):
        if isinstance(v, list):
            return [normalize_travel_date(item) for item in v]
        return v


class GetTourRequest(BaseModel):
    """Request schema for getting a tour."""

    tour_id: str = Field(..., description="Tour to retrieve")


class ModerateTourRequest(BaseModel):
    """Request schema for admin moderation of a tour."""

    tour_id: str = Field(..., description="Tour to moderate")
    approval_status: ApprovalStatus = Field(..., description="New approval status")
    is_active: Optional[bool] = Field(None, description="Optionally (de)activate the tour")


class UpdateTourPriceRequest(BaseModel):
    """Request schema for changing a tour's per-participant price."""

    tour_id: str = Field(..., description="Tour to update")
    price_amount: int = Field(..., description="New price in minor units")


class Tour(BaseModel):
    """Tour response schema."""

    id: str = Field(..., description="Unique tour ID")
    title: str = Field(..., description="Tour title")
    description: Optional[str] = Field(None, description="Tour description")
    price: Money = Field(..., description="Price per participant")
    max_group_size: int = Field(..., description="Participant capacity per travel date")
    operator_id: str = Field(..., description="Owning operator")
    is_active: bool = Field(..., description="Whether the tour is active")
    approval_status: ApprovalStatus = Field(..., description="Moderation status")
    available_dates: List[date] = Field(..., description="Calendar dates the tour runs on")
