"""Integration tests for API endpoints."""

import json

import pytest

from conftest import ADMIN_ID, OPERATOR_ID, OTHER_TRAVELER_ID, create_approved_tour
from fakes import VALID_SIGNATURE, intent_event


async def _request_booking(test_client, auth_headers, tour_id, travel_date, participants=1, user_id=None):
    headers = auth_headers() if user_id is None else auth_headers(user_id)
    return await test_client.post(
        "/v1/booking/request",
        json={"tour_id": str(tour_id), "travel_date": travel_date.isoformat(), "participants": participants},
        headers=headers,
    )


async def _accepted_booking(test_client, auth_headers, tour_id, travel_date, participants=1):
    response = await _request_booking(test_client, auth_headers, tour_id, travel_date, participants)
    booking_id = response.json()["id"]
    decided = await test_client.post(
        "/v1/booking/decide",
        json={"booking_id": booking_id, "status": "accepted"},
        headers=auth_headers(OPERATOR_ID, "operator"),
    )
    assert decided.status_code == 200
    return booking_id


@pytest.mark.asyncio
async def test_create_tour_endpoint(test_client, auth_headers, sample_tour_data):
    """Test the tour creation endpoint."""
    response = await test_client.post(
        "/v1/tour/create",
        json=sample_tour_data,
        headers=auth_headers(OPERATOR_ID, "operator")
    )

    assert response.status_code == 200
    data = response.json()
    assert data["title"] == sample_tour_data["title"]
    assert data["price"] == sample_tour_data["price"]
    assert data["operator_id"] == OPERATOR_ID
    assert data["approval_status"] == "pending"
    assert data["available_dates"] == sample_tour_data["available_dates"]
    assert "id" in data


@pytest.mark.asyncio
async def test_create_tour_missing_auth(test_client, sample_tour_data):
    """Test tour creation without authentication."""
    response = await test_client.post("/v1/tour/create", json=sample_tour_data)

    assert response.status_code == 401
    data = response.json()
    assert data["status"] == 401
    assert "authorization" in data["title"].lower()


@pytest.mark.asyncio
async def test_create_tour_bad_token(test_client, sample_tour_data):
    response = await test_client.post(
        "/v1/tour/create",
        json=sample_tour_data,
        headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert response.status_code == 401
    assert response.json()["code"] == "AUTHENTICATION_REQUIRED"


@pytest.mark.asyncio
async def test_create_tour_invalid_data(test_client, auth_headers):
    """Test tour creation with invalid data."""
    invalid_data = {
        "title": "",  # Empty title should fail validation
        "price": {"amount": 100, "currency": "usd"},
        "max_group_size": 0,
    }

    response = await test_client.post(
        "/v1/tour/create",
        json=invalid_data,
        headers=auth_headers(OPERATOR_ID, "operator")
    )

    assert response.status_code == 422
    assert response.headers["content-type"].startswith("application/problem+json")
    data = response.json()
    assert data["status"] == 422
    paths = {violation["path"] for violation in data["violations"]}
    assert "body.title" in paths
    assert "body.max_group_size" in paths


@pytest.mark.asyncio
async def test_traveler_cannot_create_tour(test_client, auth_headers, sample_tour_data):
    response = await test_client.post("/v1/tour/create", json=sample_tour_data, headers=auth_headers())

    assert response.status_code == 403
    assert response.json()["code"] == "ACCESS_DENIED"


@pytest.mark.asyncio
async def test_tour_moderation_flow(test_client, auth_headers, sample_tour_data, travel_date):
    """A new tour becomes bookable once an admin approves it."""
    created = await test_client.post(
        "/v1/tour/create", json=sample_tour_data, headers=auth_headers(OPERATOR_ID, "operator")
    )
    tour_id = created.json()["id"]

    refused = await _request_booking(test_client, auth_headers, tour_id, travel_date)
    assert refused.status_code == 409
    assert refused.json()["code"] == "TOUR_NOT_BOOKABLE"

    approved = await test_client.post(
        "/v1/tour/moderate",
        json={"tour_id": tour_id, "approval_status": "approved"},
        headers=auth_headers(ADMIN_ID, "admin"),
    )
    assert approved.status_code == 200
    assert approved.json()["approval_status"] == "approved"

    booked = await _request_booking(test_client, auth_headers, tour_id, travel_date, participants=2)
    assert booked.status_code == 201
    assert booked.json()["total_price"] == {"amount": 59998, "currency": "USD"}


@pytest.mark.asyncio
async def test_get_tour_unknown(test_client):
    response = await test_client.post("/v1/tour/get", json={"tour_id": "missing"})

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_request_booking_endpoint(test_client, auth_headers, session_factory, travel_date):
    """Test the booking request endpoint."""
    async with session_factory() as session:
        tour = await create_approved_tour(session, [travel_date], max_group_size=5, price_amount=10000)

    response = await _request_booking(test_client, auth_headers, tour.id, travel_date, participants=3)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["payment_status"] == "unpaid"
    assert data["participants"] == 3
    assert data["price_at_booking"] == {"amount": 10000, "currency": "USD"}
    assert data["total_price"] == {"amount": 30000, "currency": "USD"}
    assert data["travel_date"] == travel_date.isoformat()


@pytest.mark.asyncio
async def test_request_booking_datetime_is_normalized(test_client, auth_headers, session_factory, travel_date):
    """A timestamp with an offset books the calendar date it names."""
    async with session_factory() as session:
        tour = await create_approved_tour(session, [travel_date])

    response = await test_client.post(
        "/v1/booking/request",
        json={
            "tour_id": str(tour.id),
            "travel_date": f"{travel_date.isoformat()}T23:30:00-05:00",
            "participants": 1,
        },
        headers=auth_headers(),
    )

    assert response.status_code == 201
    assert response.json()["travel_date"] == travel_date.isoformat()


@pytest.mark.asyncio
async def test_capacity_exceeded_endpoint(test_client, auth_headers, session_factory, travel_date):
    """Over-capacity requests are refused with a problem document."""
    async with session_factory() as session:
        tour = await create_approved_tour(session, [travel_date], max_group_size=5)

    first = await _request_booking(test_client, auth_headers, tour.id, travel_date, participants=3)
    assert first.status_code == 201

    second = await _request_booking(
        test_client, auth_headers, tour.id, travel_date, participants=3, user_id=OTHER_TRAVELER_ID
    )

    assert second.status_code == 409
    assert second.headers["content-type"].startswith("application/problem+json")
    data = second.json()
    assert data["code"] == "CAPACITY_EXCEEDED"
    assert data["conflicting_resource"]["available_participants"] == 2

    availability = await test_client.post(
        "/v1/booking/availability",
        json={"tour_id": str(tour.id), "travel_date": travel_date.isoformat()},
    )
    assert availability.status_code == 200
    assert availability.json() == {
        "tour_id": str(tour.id),
        "travel_date": travel_date.isoformat(),
        "max_group_size": 5,
        "committed": 3,
        "accepted": 0,
        "available": 2,
    }


@pytest.mark.asyncio
async def test_booking_lifecycle_endpoints(test_client, auth_headers, session_factory, travel_date):
    """Decide, list, cancel and view through the API."""
    async with session_factory() as session:
        tour = await create_approved_tour(session, [travel_date])

    booking_id = await _accepted_booking(test_client, auth_headers, tour.id, travel_date)

    again = await test_client.post(
        "/v1/booking/decide",
        json={"booking_id": booking_id, "status": "rejected"},
        headers=auth_headers(OPERATOR_ID, "operator"),
    )
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_PROCESSED"

    mine = await test_client.post("/v1/booking/mine", json={}, headers=auth_headers())
    assert [item["id"] for item in mine.json()["items"]] == [booking_id]

    operated = await test_client.post(
        "/v1/booking/operator", json={"status": "accepted"}, headers=auth_headers(OPERATOR_ID, "operator")
    )
    assert [item["id"] for item in operated.json()["items"]] == [booking_id]

    hidden = await test_client.post(
        "/v1/booking/get", json={"booking_id": booking_id}, headers=auth_headers(OTHER_TRAVELER_ID)
    )
    assert hidden.status_code == 403

    cancelled = await test_client.post("/v1/booking/cancel", json={"booking_id": booking_id}, headers=auth_headers())
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    eligibility = await test_client.post(
        "/v1/booking/review-eligibility", json={"tour_id": str(tour.id)}, headers=auth_headers()
    )
    assert eligibility.json() == {"tour_id": str(tour.id), "eligible": False}


@pytest.mark.asyncio
async def test_decide_rejects_unknown_status(test_client, auth_headers):
    response = await test_client.post(
        "/v1/booking/decide",
        json={"booking_id": "whatever", "status": "completed"},
        headers=auth_headers(OPERATOR_ID, "operator"),
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_payment_flow_endpoints(test_client, auth_headers, session_factory, travel_date, fake_gateway):
    """Intent, webhook, status and refund through the API."""
    async with session_factory() as session:
        tour = await create_approved_tour(session, [travel_date], price_amount=12500)

    booking_id = await _accepted_booking(test_client, auth_headers, tour.id, travel_date, participants=2)

    intent = await test_client.post("/v1/payment/intent", json={"booking_id": booking_id}, headers=auth_headers())
    assert intent.status_code == 200
    intent_data = intent.json()
    assert intent_data["amount"] == {"amount": 25000, "currency": "USD"}
    assert intent_data["reused"] is False
    assert fake_gateway.metadata[intent_data["payment_intent_ref"]]["bookingId"] == booking_id

    payload = json.dumps(intent_event(intent_data["payment_intent_ref"], booking_id, 25000))
    delivered = await test_client.post(
        "/v1/payment/webhook",
        content=payload,
        headers={"Stripe-Signature": VALID_SIGNATURE, "Content-Type": "application/json"},
    )
    assert delivered.status_code == 200
    assert delivered.json() == {"received": True, "outcome": "applied"}

    replayed = await test_client.post(
        "/v1/payment/webhook",
        content=payload,
        headers={"Stripe-Signature": VALID_SIGNATURE, "Content-Type": "application/json"},
    )
    assert replayed.json() == {"received": True, "outcome": "duplicate"}

    status = await test_client.post("/v1/payment/status", json={"booking_id": booking_id}, headers=auth_headers())
    assert status.json()["payment_status"] == "paid"
    assert status.json()["amount_paid"] == {"amount": 25000, "currency": "USD"}

    traveler_refund = await test_client.post(
        "/v1/payment/refund", json={"booking_id": booking_id}, headers=auth_headers()
    )
    assert traveler_refund.status_code == 403

    refunded = await test_client.post(
        "/v1/payment/refund",
        json={"booking_id": booking_id, "reason": "weather"},
        headers=auth_headers(ADMIN_ID, "admin"),
    )
    assert refunded.status_code == 200
    assert refunded.json()["payment_status"] == "refunded"
    assert refunded.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_payment_intent_requires_acceptance(test_client, auth_headers, session_factory, travel_date):
    async with session_factory() as session:
        tour = await create_approved_tour(session, [travel_date])
    booking = await _request_booking(test_client, auth_headers, tour.id, travel_date)

    response = await test_client.post(
        "/v1/payment/intent", json={"booking_id": booking.json()["id"]}, headers=auth_headers()
    )

    assert response.status_code == 409
    assert response.json()["code"] == "PAYMENT_NOT_ALLOWED"


@pytest.mark.asyncio
async def test_webhook_bad_signature(test_client):
    """Unverified events are refused without being applied."""
    payload = json.dumps(intent_event("pi_test_1", None, 100))

    response = await test_client.post(
        "/v1/payment/webhook",
        content=payload,
        headers={"Stripe-Signature": "t=1,v1=forged", "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "SIGNATURE_INVALID"


@pytest.mark.asyncio
async def test_metrics_endpoint(test_client):
    """Test the Prometheus metrics endpoint."""
    response = await test_client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")

    content = response.text
    assert "http_requests_total" in content or "# HELP" in content
