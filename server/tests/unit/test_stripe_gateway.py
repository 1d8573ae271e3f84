"""Unit tests for the Stripe payment gateway adapter."""

import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from fakes import intent_event
from tourmarket.services.payment_gateway import (
    EVENT_PAYMENT_SUCCEEDED,
    GatewayError,
    InvalidSignature,
    RefundAlreadyProcessed,
    StripePaymentGateway,
    event_from_payload,
)

WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def gateway():
    return StripePaymentGateway(api_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, tolerance_seconds=300)


def _stripe_intent(**overrides):
    data = {
        "id": "pi_123",
        "status": "requires_payment_method",
        "amount": 20000,
        "amount_received": 0,
        "currency": "usd",
        "client_secret": "pi_123_secret_abc",
    }
    data.update(overrides)
    return SimpleNamespace(**data)


def test_parse_event_verifies_signature(gateway):
    """Correctly signed events are decoded."""
    payload = json.dumps(intent_event("pi_123", "booking-1", 20000))

    event = gateway.parse_event(payload.encode("utf-8"), _sign(payload))

    assert event.type == EVENT_PAYMENT_SUCCEEDED
    assert event.intent_ref == "pi_123"
    assert event.booking_id == "booking-1"
    assert event.amount_received == 20000


def test_parse_event_rejects_tampered_payload(gateway):
    payload = json.dumps(intent_event("pi_123", "booking-1", 20000))
    signature = _sign(payload)
    tampered = payload.replace("20000", "1")

    with pytest.raises(InvalidSignature):
        gateway.parse_event(tampered.encode("utf-8"), signature)


def test_parse_event_rejects_wrong_secret(gateway):
    payload = json.dumps(intent_event("pi_123", "booking-1", 20000))

    with pytest.raises(InvalidSignature):
        gateway.parse_event(payload.encode("utf-8"), _sign(payload, secret="whsec_other"))


def test_parse_event_rejects_old_timestamp(gateway):
    """Replays older than the tolerance are refused."""
    payload = json.dumps(intent_event("pi_123", "booking-1", 20000))

    with pytest.raises(InvalidSignature):
        gateway.parse_event(payload.encode("utf-8"), _sign(payload, timestamp=int(time.time()) - 3600))


def test_parse_event_requires_signature_and_secret(gateway):
    payload = json.dumps(intent_event("pi_123", "booking-1", 20000)).encode("utf-8")

    with pytest.raises(InvalidSignature):
        gateway.parse_event(payload, None)

    unconfigured = StripePaymentGateway(api_key="sk_test_123", webhook_secret=None)
    with pytest.raises(InvalidSignature):
        unconfigured.parse_event(payload, "t=1,v1=abc")


def test_parse_event_rejects_malformed_json(gateway):
    payload = "not json"

    with pytest.raises(InvalidSignature):
        gateway.parse_event(payload.encode("utf-8"), _sign(payload))


def test_event_from_payload_ignores_non_intent_objects():
    """Only payment intent objects carry an intent reference."""
    event = event_from_payload({
        "id": "evt_1",
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_1", "object": "charge", "metadata": {"bookingId": "b-1"}}},
    })

    assert event.intent_ref is None
    assert event.booking_id == "b-1"
    assert event.amount_received == 0


@pytest.mark.asyncio
async def test_create_intent(gateway, monkeypatch):
    """Intents are created with per-call credentials and idempotency keys."""
    calls = {}

    def fake_create(**kwargs):
        calls.update(kwargs)
        return _stripe_intent()

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

    intent = await gateway.create_intent(20000, "USD", {"bookingId": "b-1"}, idempotency_key="booking-b-1-intent-v2")

    assert intent.ref == "pi_123"
    assert intent.currency == "USD"
    assert intent.is_open
    assert intent.client_secret == "pi_123_secret_abc"
    assert calls["currency"] == "usd"
    assert calls["api_key"] == "sk_test_123"
    assert calls["idempotency_key"] == "booking-b-1-intent-v2"
    assert calls["metadata"] == {"bookingId": "b-1"}


@pytest.mark.asyncio
async def test_retrieve_intent_error(gateway, monkeypatch):
    """Stripe errors are wrapped in GatewayError."""
    def fake_retrieve(ref, **kwargs):
        raise stripe.APIConnectionError("connection reset")

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)

    with pytest.raises(GatewayError) as exc_info:
        await gateway.retrieve_intent("pi_123")
    assert exc_info.value.operation == "retrieve_intent"


@pytest.mark.asyncio
async def test_retrieve_succeeded_intent(gateway, monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "retrieve",
        lambda ref, **kwargs: _stripe_intent(status="succeeded", amount_received=20000),
    )

    intent = await gateway.retrieve_intent("pi_123")

    assert intent.succeeded
    assert not intent.is_open
    assert intent.amount_received == 20000


@pytest.mark.asyncio
async def test_refund_reasons(gateway, monkeypatch):
    """Stripe's own reasons are passed through; free text goes to metadata."""
    calls = []

    def fake_refund(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(id=f"re_{len(calls)}")

    monkeypatch.setattr(stripe.Refund, "create", fake_refund)

    assert await gateway.refund("pi_123", "duplicate", idempotency_key="k1") == "re_1"
    assert await gateway.refund("pi_123", "weather", idempotency_key="k2") == "re_2"

    assert calls[0]["reason"] == "duplicate"
    assert "metadata" not in calls[0]
    assert calls[1]["metadata"] == {"reason": "weather"}
    assert "reason" not in calls[1]
    assert calls[1]["payment_intent"] == "pi_123"


@pytest.mark.asyncio
async def test_refund_already_refunded(gateway, monkeypatch):
    def fake_refund(**kwargs):
        raise stripe.InvalidRequestError("Charge has already been refunded.", None, code="charge_already_refunded")

    monkeypatch.setattr(stripe.Refund, "create", fake_refund)

    with pytest.raises(RefundAlreadyProcessed):
        await gateway.refund("pi_123", None, idempotency_key="k1")
