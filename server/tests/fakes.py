"""In-memory stand-ins for the payment gateway and the notifier."""

import json
from typing import Any, Optional

from tourmarket.services.payment_gateway import (
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SUCCEEDED,
    GatewayError,
    GatewayEvent,
    GatewayIntent,
    InvalidSignature,
    PaymentGateway,
    RefundAlreadyProcessed,
    event_from_payload,
)

VALID_SIGNATURE = "t=1,v1=valid"


class FakePaymentGateway(PaymentGateway):
    """Payment gateway keeping intents in a dict."""

    def __init__(self):
        self.intents: dict[str, GatewayIntent] = {}
        self.metadata: dict[str, dict[str, str]] = {}
        self.idempotency_keys: dict[str, str] = {}
        self.refunds: dict[str, str] = {}
        self.refund_calls: list[tuple[str, Optional[str]]] = []
        self.refund_keys: list[str] = []
        self.create_calls = 0
        self.unavailable = False
        self._counter = 0

    def _check_available(self, operation: str) -> None:
        if self.unavailable:
            raise GatewayError(operation, "gateway unreachable")

    async def create_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> GatewayIntent:
        self._check_available("create_intent")
        self.create_calls += 1
        if idempotency_key in self.idempotency_keys:
            return self.intents[self.idempotency_keys[idempotency_key]]

        self._counter += 1
        ref = f"pi_test_{self._counter}"
        intent = GatewayIntent(
            ref=ref,
            status="requires_payment_method",
            amount=amount,
            amount_received=0,
            currency=currency,
            client_secret=f"{ref}_secret",
        )
        self.intents[ref] = intent
        self.metadata[ref] = dict(metadata)
        self.idempotency_keys[idempotency_key] = ref
        return intent

    async def retrieve_intent(self, ref: str) -> GatewayIntent:
        self._check_available("retrieve_intent")
        if ref not in self.intents:
            raise GatewayError("retrieve_intent", f"no such payment_intent: {ref}")
        return self.intents[ref]

    async def refund(self, intent_ref: str, reason: Optional[str], idempotency_key: str) -> str:
        self.refund_keys.append(idempotency_key)
        self._check_available("refund")
        self.refund_calls.append((intent_ref, reason))
        if intent_ref in self.refunds:
            raise RefundAlreadyProcessed("refund", "Charge has already been refunded.")
        refund_ref = f"re_test_{len(self.refunds) + 1}"
        self.refunds[intent_ref] = refund_ref
        return refund_ref

    def parse_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if signature != VALID_SIGNATURE:
            raise InvalidSignature("parse_event", "signature mismatch")
        return event_from_payload(json.loads(payload))

    def set_status(self, ref: str, status: str, amount_received: Optional[int] = None) -> GatewayIntent:
        """Move an intent to ``status`` as if the client had confirmed it."""
        intent = self.intents[ref]
        if amount_received is None:
            amount_received = intent.amount if status == "succeeded" else 0
        updated = GatewayIntent(
            ref=intent.ref,
            status=status,
            amount=intent.amount,
            amount_received=amount_received,
            currency=intent.currency,
            client_secret=intent.client_secret,
        )
        self.intents[ref] = updated
        return updated


def intent_event(
    ref: str,
    booking_id: Optional[str],
    amount_received: int,
    succeeded: bool = True,
    event_id: str = "evt_test_1",
) -> dict[str, Any]:
    """Gateway event body for a payment intent."""
    metadata = {"bookingId": booking_id} if booking_id else {}
    return {
        "id": event_id,
        "object": "event",
        "type": EVENT_PAYMENT_SUCCEEDED if succeeded else EVENT_PAYMENT_FAILED,
        "data": {
            "object": {
                "id": ref,
                "object": "payment_intent",
                "amount": amount_received,
                "amount_received": amount_received if succeeded else 0,
                "currency": "usd",
                "status": "succeeded" if succeeded else "requires_payment_method",
                "metadata": metadata,
            }
        },
    }


class RecordingNotifier:
    """Notifier that keeps every notification in memory."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def notify(self, user_id, title, body, category=None, metadata=None) -> None:
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append({
            "user_id": user_id,
            "title": title,
            "body": body,
            "category": category,
            "metadata": metadata or {},
        })

    def titles_for(self, user_id: str) -> list[str]:
        return [n["title"] for n in self.sent if n["user_id"] == user_id]
