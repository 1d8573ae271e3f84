"""Payment gateway adapter: the abstract port and its Stripe implementation."""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import stripe

logger = logging.getLogger(__name__)

# Intent states from which a client can still complete the payment
OPEN_INTENT_STATUSES = frozenset({
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
    "processing",
    "requires_capture",
})

SUCCEEDED = "succeeded"
CANCELED = "canceled"

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass(frozen=True)
class GatewayIntent:
    """Gateway-side view of a payment intent."""

    ref: str
    status: str
    amount: int
    amount_received: int
    currency: str
    client_secret: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_INTENT_STATUSES

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass(frozen=True)
class GatewayEvent:
    """A verified inbound gateway notification."""

    event_id: str
    type: str
    intent_ref: Optional[str]
    booking_id: Optional[str]
    amount_received: int = 0


class GatewayError(Exception):
    """The gateway could not complete an operation."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message


class RefundAlreadyProcessed(GatewayError):
    """The gateway reports the charge as already refunded."""


class InvalidSignature(GatewayError):
    """An inbound event failed signature verification or could not be parsed."""


class PaymentGateway(ABC):
    """Port to an external card payment provider."""

    @abstractmethod
    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> GatewayIntent:
        """Create a payment intent for ``amount`` minor units."""

    @abstractmethod
    async def retrieve_intent(self, ref: str) -> GatewayIntent:
        """Fetch the live state of an intent."""

    @abstractmethod
    async def refund(self, intent_ref: str, reason: Optional[str], idempotency_key: str) -> str:
        """Refund the full amount captured by an intent and return the refund reference."""

    @abstractmethod
    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        """Verify and decode an inbound event; raise InvalidSignature if untrusted."""


def event_from_payload(event: Any) -> GatewayEvent:
    """Map a decoded gateway event onto a GatewayEvent."""
    data_object = (event.get("data") or {}).get("object") or {}
    metadata = data_object.get("metadata") or {}
    intent_ref = data_object.get("id") if data_object.get("object") == "payment_intent" else None
    return GatewayEvent(
        event_id=str(event.get("id", "")),
        type=str(event.get("type", "")),
        intent_ref=intent_ref,
        booking_id=metadata.get("bookingId"),
        amount_received=int(data_object.get("amount_received") or 0),
    )


class StripePaymentGateway(PaymentGateway):
    """
    PaymentGateway backed by the Stripe API.

    The Stripe client is synchronous, so calls are run in a worker thread.
    The API key is passed per request instead of being set on the module.
    """

    _REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}

    def __init__(self, api_key: str, webhook_secret: Optional[str], tolerance_seconds: int = 300):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

    @staticmethod
    def _to_intent(intent: Any) -> GatewayIntent:
        return GatewayIntent(
            ref=intent.id,
            status=intent.status,
            amount=int(intent.amount),
            amount_received=int(getattr(intent, "amount_received", 0) or 0),
            currency=str(intent.currency).upper(),
            client_secret=getattr(intent, "client_secret", None),
        )

    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> GatewayIntent:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency.lower(),
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                api_key=self.api_key,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            raise GatewayError("create_intent", getattr(e, "user_message", None) or str(e)) from e
        return self._to_intent(intent)

    async def retrieve_intent(self, ref: str) -> GatewayIntent:
        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.retrieve, ref, api_key=self.api_key)
        except stripe.StripeError as e:
            raise GatewayError("retrieve_intent", getattr(e, "user_message", None) or str(e)) from e
        return self._to_intent(intent)

    async def refund(self, intent_ref: str, reason: Optional[str], idempotency_key: str) -> str:
        params: dict[str, Any] = {"payment_intent": intent_ref}
        if reason in self._REFUND_REASONS:
            params["reason"] = reason
        elif reason:
            params["metadata"] = {"reason": reason[:500]}

        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.InvalidRequestError as e:
            if e.code == "charge_already_refunded":
                raise RefundAlreadyProcessed("refund", str(e)) from e
            raise GatewayError("refund", str(e)) from e
        except stripe.StripeError as e:
            raise GatewayError("refund", getattr(e, "user_message", None) or str(e)) from e
        return refund.id

    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if not self.webhook_secret:
            raise InvalidSignature("parse_event", "webhook secret is not configured")
        if not signature:
            raise InvalidSignature("parse_event", "missing signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body,
                signature,
                self.webhook_secret,
                self.tolerance_seconds,
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature("parse_event", str(e)) from e
        except ValueError as e:
            raise InvalidSignature("parse_event", f"malformed payload: {e}") from e

        if not isinstance(event, dict):
            raise InvalidSignature("parse_event", "event payload is not an object")
        return event_from_payload(event)
