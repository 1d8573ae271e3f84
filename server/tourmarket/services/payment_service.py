"""Payment reconciliation between bookings and the payment gateway."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import (
    PaymentGatewayUnavailableError,
    PaymentNotAllowedError,
    SignatureInvalidError,
)
from ..core.observability import metrics_collector
from ..models.booking import BILLABLE_STATUSES, Booking, BookingStatus, PaymentStatus
from ..models.notification import NotificationCategory
from .authorization import Actor, Capability, authorize
from .booking_service import BookingService, guarded_transition
from .notification_service import Notifier
from .payment_gateway import (
    CANCELED,
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SUCCEEDED,
    GatewayError,
    GatewayEvent,
    GatewayIntent,
    InvalidSignature,
    PaymentGateway,
    RefundAlreadyProcessed,
)

logger = logging.getLogger(__name__)

# Webhook deliveries can race each other and client confirmations
EVENT_ATTEMPTS = 3


class PaymentOutcome(str, Enum):
    """What applying a payment signal did to the booking."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    AMOUNT_MISMATCH = "amount_mismatch"
    NOT_BILLABLE = "not_billable"
    BOOKING_CLOSED = "booking_closed"
    UNKNOWN_BOOKING = "unknown_booking"
    IN_PROGRESS = "in_progress"
    IGNORED = "ignored"


@dataclass
class IntentResult:
    """A payment intent handed to the traveler."""

    booking: Booking
    intent: GatewayIntent
    reused: bool


@dataclass
class PaymentCheck:
    """Payment status of a booking, optionally backed by a live gateway lookup."""

    booking: Booking
    gateway_status: Optional[str] = None
    outcome: Optional[PaymentOutcome] = None


class PaymentService:
    """
    Drives a booking's payment lifecycle from gateway signals.

    Every change to payment state goes through the same per-booking guard as
    the booking lifecycle, and the booking's own payment status acts as the
    idempotency key: a success signal for a booking that is already paid is
    acknowledged and ignored.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[PaymentGateway],
        notifier: Optional[Notifier] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.bookings = BookingService(db, notifier=notifier)

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            logger.error("Payment gateway is not configured")
            raise PaymentGatewayUnavailableError()
        return self.gateway

    def _gateway_failed(self, error: GatewayError, booking_id: object) -> PaymentGatewayUnavailableError:
        metrics_collector.record_gateway_error(error.operation)
        logger.error(
            "Payment gateway call failed",
            extra={
                "operation": error.operation,
                "booking_id": str(booking_id),
                "error": error.message
            }
        )
        return PaymentGatewayUnavailableError()

    async def _notify(self, booking: Booking, title: str, body: str) -> None:
        await self.bookings.notify(
            booking.user_id,
            title,
            body,
            NotificationCategory.PAYMENT,
            {"bookingId": str(booking.id), "paymentStatus": booking.payment_status.value},
        )

    async def create_payment_intent(self, booking_id: object, actor: Actor) -> IntentResult:
        """
        Create a payment intent for an accepted booking, or return its open one.

        Args:
            booking_id: Booking to pay for
            actor: Traveler owning the booking

        Returns:
            The intent to confirm on the client and whether it was reused

        Raises:
            PaymentGatewayUnavailableError: If no gateway is configured or it fails
            AccessDeniedError: If the actor does not own the booking
            PaymentNotAllowedError: If the booking is not accepted or already paid
        """
        gateway = self._require_gateway()
        booking = await self.bookings.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.PAY_BOOKING, booking=booking)

        async def ensure_intent(current: Booking) -> Optional[tuple[GatewayIntent, bool]]:
            if current.payment_status == PaymentStatus.PAID:
                raise PaymentNotAllowedError(
                    str(current.id), "Booking is already paid",
                    current.status.value, current.payment_status.value,
                )
            if current.status != BookingStatus.ACCEPTED:
                raise PaymentNotAllowedError(
                    str(current.id), "Booking must be accepted by the operator before payment",
                    current.status.value, current.payment_status.value,
                )

            try:
                if current.payment_intent_ref:
                    existing = await gateway.retrieve_intent(current.payment_intent_ref)
                    if existing.succeeded and existing.amount_received == current.total_price:
                        # Success whose notification never arrived
                        self._mark_paid(current, existing.ref, existing.amount_received)
                        return None
                    if existing.is_open and existing.amount == current.total_price:
                        return existing, True
                    logger.info(
                        "Replacing payment intent",
                        extra={
                            "booking_id": str(current.id),
                            "payment_intent_ref": existing.ref,
                            "intent_status": existing.status
                        }
                    )

                intent = await gateway.create_intent(
                    amount=current.total_price,
                    currency=current.currency,
                    metadata={
                        "bookingId": str(current.id),
                        "userId": current.user_id,
                        "tourId": str(current.tour_id),
                    },
                    idempotency_key=f"booking-{current.id}-intent-v{current.version}",
                )
            except GatewayError as e:
                raise self._gateway_failed(e, current.id)

            current.payment_intent_ref = intent.ref
            return intent, False

        created = await guarded_transition(self.db, booking, ensure_intent)

        if created is None:
            already_paid = PaymentNotAllowedError(
                str(booking.id), "Booking is already paid",
                booking.status.value, booking.payment_status.value,
            )
            metrics_collector.record_payment_event("reconcile", PaymentOutcome.APPLIED.value)
            await self._notify(booking, "Payment successful", "Your payment has been received")
            raise already_paid

        intent, reused = created
        metrics_collector.record_payment_intent(reused)
        logger.info(
            "Payment intent ready",
            extra={
                "booking_id": str(booking.id),
                "payment_intent_ref": intent.ref,
                "amount": intent.amount,
                "currency": intent.currency,
                "reused": reused
            }
        )
        return IntentResult(booking=booking, intent=intent, reused=reused)

    @staticmethod
    def _mark_paid(booking: Booking, intent_ref: Optional[str], amount_received: int) -> None:
        booking.payment_status = PaymentStatus.PAID
        booking.amount_paid = amount_received
        if intent_ref:
            booking.payment_intent_ref = intent_ref

    async def _locate(self, booking_id: Optional[str], intent_ref: Optional[str]) -> Optional[Booking]:
        if booking_id:
            try:
                booking = await self.bookings.get_booking_by_id(UUID(booking_id))
            except ValueError:
                booking = None
            if booking is not None:
                return booking
        if intent_ref:
            stmt = select(Booking).where(Booking.payment_intent_ref == intent_ref).limit(1)
            result = await self.db.execute(stmt)
            return result.scalar_one_or_none()
        return None

    async def _apply_success(self, booking: Booking, intent_ref: Optional[str], amount_received: int) -> PaymentOutcome:
        async def succeed(current: Booking) -> PaymentOutcome:
            if current.payment_status == PaymentStatus.PAID:
                return PaymentOutcome.DUPLICATE
            if current.payment_status == PaymentStatus.REFUNDED:
                return PaymentOutcome.STALE
            if amount_received != current.total_price:
                logger.error(
                    "Payment amount does not match booking total",
                    extra={
                        "booking_id": str(current.id),
                        "payment_intent_ref": intent_ref,
                        "amount_received": amount_received,
                        "total_price": current.total_price,
                        "currency": current.currency
                    }
                )
                return PaymentOutcome.AMOUNT_MISMATCH
            if current.status not in BILLABLE_STATUSES:
                logger.warning(
                    "Payment received for a booking that is not billable",
                    extra={
                        "booking_id": str(current.id),
                        "payment_intent_ref": intent_ref,
                        "status": current.status.value
                    }
                )
                return PaymentOutcome.NOT_BILLABLE

            self._mark_paid(current, intent_ref, amount_received)
            return PaymentOutcome.APPLIED

        outcome = await guarded_transition(self.db, booking, succeed, attempts=EVENT_ATTEMPTS)
        if outcome == PaymentOutcome.APPLIED:
            logger.info(
                "Payment applied",
                extra={
                    "booking_id": str(booking.id),
                    "payment_intent_ref": booking.payment_intent_ref,
                    "amount_paid": booking.amount_paid,
                    "currency": booking.currency
                }
            )
            await self._notify(booking, "Payment successful", "Your payment has been received")
        return outcome

    async def _apply_failure(self, booking: Booking, intent_ref: Optional[str]) -> PaymentOutcome:
        async def fail(current: Booking) -> PaymentOutcome:
            if current.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
                return PaymentOutcome.STALE
            if current.status in (BookingStatus.REJECTED, BookingStatus.CANCELLED):
                return PaymentOutcome.BOOKING_CLOSED
            if current.payment_status == PaymentStatus.FAILED:
                return PaymentOutcome.DUPLICATE

            current.payment_status = PaymentStatus.FAILED
            if intent_ref and not current.payment_intent_ref:
                current.payment_intent_ref = intent_ref
            return PaymentOutcome.APPLIED

        outcome = await guarded_transition(self.db, booking, fail, attempts=EVENT_ATTEMPTS)
        if outcome == PaymentOutcome.APPLIED:
            logger.info(
                "Payment failure recorded",
                extra={"booking_id": str(booking.id), "payment_intent_ref": intent_ref}
            )
            await self._notify(
                booking,
                "Payment failed",
                "Your payment could not be completed. Please try again.",
            )
        return outcome

    async def apply_event(self, event: GatewayEvent) -> PaymentOutcome:
        """
        Apply a verified gateway event to its booking.

        Returns:
            The outcome; every outcome is acknowledged to the gateway
        """
        context = {"event_id": event.event_id, "event_type": event.type}

        if event.type not in (EVENT_PAYMENT_SUCCEEDED, EVENT_PAYMENT_FAILED):
            logger.debug("Ignoring gateway event", extra=context)
            metrics_collector.record_payment_event(event.type, PaymentOutcome.IGNORED.value)
            return PaymentOutcome.IGNORED

        booking = await self._locate(event.booking_id, event.intent_ref)
        if booking is None:
            logger.warning(
                "Gateway event for unknown booking",
                extra={**context, "booking_id": event.booking_id, "payment_intent_ref": event.intent_ref}
            )
            metrics_collector.record_payment_event(event.type, PaymentOutcome.UNKNOWN_BOOKING.value)
            return PaymentOutcome.UNKNOWN_BOOKING

        # Notification failures may expire the instance
        booking_id = str(booking.id)
        if event.type == EVENT_PAYMENT_SUCCEEDED:
            outcome = await self._apply_success(booking, event.intent_ref, event.amount_received)
        else:
            outcome = await self._apply_failure(booking, event.intent_ref)

        logger.info(
            "Gateway event processed",
            extra={**context, "booking_id": booking_id, "outcome": outcome.value}
        )
        metrics_collector.record_payment_event(event.type, outcome.value)
        return outcome

    async def handle_gateway_event(self, payload: bytes, signature: Optional[str]) -> PaymentOutcome:
        """
        Verify and apply an inbound gateway notification.

        Args:
            payload: Raw request body
            signature: Signature header sent by the gateway

        Returns:
            What the event did; duplicates and irrelevant events are no-ops

        Raises:
            PaymentGatewayUnavailableError: If no gateway is configured
            SignatureInvalidError: If the event cannot be trusted
        """
        gateway = self._require_gateway()
        try:
            event = gateway.parse_event(payload, signature)
        except InvalidSignature as e:
            logger.warning("Dropping gateway event with invalid signature", extra={"error": e.message})
            metrics_collector.record_payment_event("unverified", "signature_invalid")
            raise SignatureInvalidError()
        return await self.apply_event(event)

    async def confirm_payment(
        self,
        booking_id: object,
        actor: Actor,
        payment_intent_ref: Optional[str] = None,
    ) -> PaymentCheck:
        """
        Apply a client-side payment confirmation.

        The live intent is fetched from the gateway and applied through the
        same guarded transitions as the webhook, so confirmation and webhook
        delivery can arrive in either order.

        Raises:
            PaymentNotAllowedError: If the booking has no intent, or the given
                intent belongs to another booking
        """
        gateway = self._require_gateway()
        booking = await self.bookings.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.PAY_BOOKING, booking=booking)

        if not booking.payment_intent_ref:
            raise PaymentNotAllowedError(
                str(booking.id), "No payment has been started for this booking",
                booking.status.value, booking.payment_status.value,
            )
        if payment_intent_ref and payment_intent_ref != booking.payment_intent_ref:
            raise PaymentNotAllowedError(
                str(booking.id), "Payment intent does not belong to this booking",
                booking.status.value, booking.payment_status.value,
            )

        try:
            intent = await gateway.retrieve_intent(booking.payment_intent_ref)
        except GatewayError as e:
            raise self._gateway_failed(e, booking.id)

        if intent.succeeded:
            outcome = await self._apply_success(booking, intent.ref, intent.amount_received)
        elif intent.status in ("requires_payment_method", CANCELED):
            outcome = await self._apply_failure(booking, intent.ref)
        else:
            outcome = PaymentOutcome.IN_PROGRESS

        metrics_collector.record_payment_event("confirm", outcome.value)
        await self.db.refresh(booking)
        return PaymentCheck(booking=booking, gateway_status=intent.status, outcome=outcome)

    async def get_payment_status(self, booking_id: object, actor: Actor) -> PaymentCheck:
        """
        Payment status of a booking.

        A locally recorded payment is trusted as is. Otherwise the live intent
        is consulted and a success the webhook never delivered is applied.
        Gateway failures fall back to the local status.
        """
        booking = await self.bookings.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.VIEW_BOOKING, booking=booking)

        if booking.payment_status == PaymentStatus.PAID:
            return PaymentCheck(booking=booking)
        if self.gateway is None or not booking.payment_intent_ref:
            return PaymentCheck(booking=booking)

        try:
            intent = await self.gateway.retrieve_intent(booking.payment_intent_ref)
        except GatewayError as e:
            metrics_collector.record_gateway_error(e.operation)
            logger.warning(
                "Falling back to local payment status",
                extra={"booking_id": str(booking.id), "error": e.message}
            )
            return PaymentCheck(booking=booking)

        outcome = None
        if intent.succeeded:
            outcome = await self._apply_success(booking, intent.ref, intent.amount_received)
            await self.db.refresh(booking)
        return PaymentCheck(booking=booking, gateway_status=intent.status, outcome=outcome)

    async def refund_payment(self, booking_id: object, actor: Actor, reason: Optional[str] = None) -> Booking:
        """
        Refund a paid booking and cancel it.

        Refunding a booking that is already refunded is a no-op, and a
        gateway answer that the charge was already refunded counts as success.

        Args:
            booking_id: Booking to refund
            actor: Admin, or operator owning the booking
            reason: Reason recorded with the refund

        Returns:
            The refunded booking

        Raises:
            AccessDeniedError: If the actor may not refund the booking
            PaymentNotAllowedError: If the booking is not paid
            PaymentGatewayUnavailableError: If the gateway is missing or fails
        """
        booking = await self.bookings.get_booking_by_id_or_raise(booking_id)
        authorize(actor, Capability.REFUND_BOOKING, booking=booking)

        if booking.payment_status == PaymentStatus.REFUNDED:
            metrics_collector.record_refund("noop")
            logger.info("Refund skipped, booking already refunded", extra={"booking_id": str(booking.id)})
            return booking

        gateway = self._require_gateway()

        async def refund(current: Booking) -> Optional[tuple[BookingStatus, str]]:
            if current.payment_status == PaymentStatus.REFUNDED:
                return None
            if current.payment_status != PaymentStatus.PAID or not current.payment_intent_ref:
                raise PaymentNotAllowedError(
                    str(current.id), "Only paid bookings can be refunded",
                    current.status.value, current.payment_status.value,
                )

            outcome = "refunded"
            try:
                # Fresh key per attempt; a repeated refund is reported as already refunded
                refund_ref = await gateway.refund(
                    current.payment_intent_ref,
                    reason,
                    idempotency_key=f"booking-{current.id}-refund-v{current.version}-{uuid4().hex[:12]}",
                )
            except RefundAlreadyProcessed:
                refund_ref = current.refund_ref
                outcome = "already_refunded"
            except GatewayError as e:
                raise self._gateway_failed(e, current.id)

            previous = current.status
            current.payment_status = PaymentStatus.REFUNDED
            current.status = BookingStatus.CANCELLED
            current.refund_ref = refund_ref
            return previous, outcome

        result = await guarded_transition(self.db, booking, refund)
        if result is None:
            metrics_collector.record_refund("noop")
            return booking

        previous, outcome = result
        metrics_collector.record_refund(outcome)
        if previous != booking.status:
            metrics_collector.record_transition(previous.value, booking.status.value)
        logger.info(
            "Booking refunded",
            extra={
                "booking_id": str(booking.id),
                "refund_ref": booking.refund_ref,
                "amount": booking.amount_paid,
                "currency": booking.currency,
                "outcome": outcome,
                "refunded_by": actor.user_id
            }
        )

        await self._notify(booking, "Refund processed", "Your payment has been refunded")
        await self.db.refresh(booking)
        return booking
