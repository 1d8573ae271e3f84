"""Payment router for intents, confirmations, refunds and gateway webhooks."""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.dependencies import PaymentGatewayDependency, RequiredAuth
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import Money
from ..schemas.payment import (
    ConfirmPaymentRequest,
    PaymentIntent,
    PaymentIntentRequest,
    PaymentState,
    PaymentStatusRequest,
    RefundRequest,
    WebhookAck,
)
from ..services.authorization import Actor
from ..services.payment_gateway import PaymentGateway
from ..services.payment_service import PaymentCheck, PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/payment", tags=["payment"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
SIGNATURE_HEADER = Header(None, alias="Stripe-Signature")


def _convert_check_to_schema(check: PaymentCheck) -> PaymentState:
    """Convert a payment check to schema."""
    booking = check.booking
    return PaymentState(
        booking_id=str(booking.id),
        status=booking.status,
        payment_status=booking.payment_status,
        amount_paid=Money(amount=booking.amount_paid, currency=booking.currency),
        gateway_status=check.gateway_status,
    )


def _unexpected_error(operation: str, error: Exception, **context: Any) -> HTTPException:
    logger.error(
        f"Unexpected error in {operation}",
        extra={**context, "error": str(error)},
        exc_info=True
    )
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/intent", response_model=PaymentIntent)
async def create_payment_intent(
    request: PaymentIntentRequest,
    actor: Actor = RequiredAuth,
    gateway: Optional[PaymentGateway] = PaymentGatewayDependency,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Create a payment intent for an accepted booking.

    Calling this again while the intent is still open returns the same intent.
    """
    try:
        result = await PaymentService(db, gateway).create_payment_intent(request.booking_id, actor)
        response_data = PaymentIntent(
            booking_id=str(result.booking.id),
            payment_intent_ref=result.intent.ref,
            client_secret=result.intent.client_secret,
            amount=Money(amount=result.intent.amount, currency=result.intent.currency),
            reused=result.reused,
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("payment intent creation", e, booking_id=request.booking_id)


@router.post("/confirm", response_model=PaymentState)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    actor: Actor = RequiredAuth,
    gateway: Optional[PaymentGateway] = PaymentGatewayDependency,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Apply the outcome of a client-side payment confirmation."""
    try:
        check = await PaymentService(db, gateway).confirm_payment(
            request.booking_id, actor, payment_intent_ref=request.payment_intent_ref
        )
        return JSONResponse(status_code=200, content=_convert_check_to_schema(check).model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("payment confirmation", e, booking_id=request.booking_id)


@router.post("/status", response_model=PaymentState)
async def payment_status(
    request: PaymentStatusRequest,
    actor: Actor = RequiredAuth,
    gateway: Optional[PaymentGateway] = PaymentGatewayDependency,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Current payment status of a booking."""
    try:
        check = await PaymentService(db, gateway).get_payment_status(request.booking_id, actor)
        return JSONResponse(status_code=200, content=_convert_check_to_schema(check).model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("payment status query", e, booking_id=request.booking_id)


@router.post("/refund", response_model=PaymentState)
async def refund_payment(
    request: RefundRequest,
    actor: Actor = RequiredAuth,
    gateway: Optional[PaymentGateway] = PaymentGatewayDependency,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """Refund a paid booking and cancel it (admin or operator of the tour)."""
    try:
        booking = await PaymentService(db, gateway).refund_payment(request.booking_id, actor, reason=request.reason)
        check = PaymentCheck(booking=booking)
        return JSONResponse(status_code=200, content=_convert_check_to_schema(check).model_dump(mode="json"))
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("refund", e, booking_id=request.booking_id)


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    signature: Optional[str] = SIGNATURE_HEADER,
    gateway: Optional[PaymentGateway] = PaymentGatewayDependency,
    db: AsyncSession = DB_DEPENDENCY
) -> JSONResponse:
    """
    Receive a signed event from the payment gateway.

    Events that are verified are always acknowledged, including duplicates
    and events that do not change anything, so that the gateway does not
    keep retrying them.
    """
    payload = await request.body()
    try:
        outcome = await PaymentService(db, gateway).handle_gateway_event(payload, signature)
        response_data = WebhookAck(received=True, outcome=outcome.value)
        return JSONResponse(status_code=200, content=response_data.model_dump())
    except ProblemDetailsException:
        raise
    except Exception as e:
        raise _unexpected_error("payment webhook", e, payload_size=len(payload))
