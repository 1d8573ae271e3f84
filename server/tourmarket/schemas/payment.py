"""Payment-related Pydantic schemas."""

from typing import Optional

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus, PaymentStatus
from .common import Money


class PaymentIntentRequest(BaseModel):
    """Request schema for creating (or reusing) a booking's payment intent."""

    booking_id: str = Field(..., description="Booking to pay for")


class ConfirmPaymentRequest(BaseModel):
    """Request schema for client-side payment confirmation."""

    booking_id: str = Field(..., description="Booking that was paid")
    payment_intent_ref: Optional[str] = Field(None, description="Intent confirmed by the client")


class PaymentStatusRequest(BaseModel):
    """Request schema for querying a booking's payment status."""

    booking_id: str = Field(..., description="Booking to inspect")


class RefundRequest(BaseModel):
    """Request schema for refunding a paid booking."""

    booking_id: str = Field(..., description="Booking to refund")
    reason: Optional[str] = Field(None, max_length=500, description="Reason recorded with the refund")


class PaymentIntent(BaseModel):
    """Payment intent response schema."""

    booking_id: str = Field(..., description="Booking being paid")
    payment_intent_ref: str = Field(..., description="Gateway intent reference")
    client_secret: Optional[str] = Field(None, description="Secret the client confirms the intent with")
    amount: Money = Field(..., description="Amount to be charged")
    reused: bool = Field(..., description="Whether an existing open intent was returned")


class PaymentState(BaseModel):
    """Payment status response schema."""

    booking_id: str = Field(..., description="Booking")
    status: BookingStatus = Field(..., description="Booking lifecycle status")
    payment_status: PaymentStatus = Field(..., description="Payment lifecycle status")
    amount_paid: Money = Field(..., description="Amount received")
    gateway_status: Optional[str] = Field(None, description="Live intent status, when the gateway was consulted")


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = Field(True, description="The event was received")
    outcome: str = Field(..., description="What the event did to the booking")
