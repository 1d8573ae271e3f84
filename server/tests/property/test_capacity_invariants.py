"""Property-based tests for capacity and payment invariants."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, time, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from conftest import OPERATOR_ID, TEST_DATABASE_URL, create_approved_tour
from fakes import VALID_SIGNATURE, FakePaymentGateway, RecordingNotifier, intent_event
from tourmarket.core.clock import normalize_travel_date, utc_today
from tourmarket.core.database import Base
from tourmarket.core.exceptions import CapacityExceededError, TourFullError
from tourmarket.models.booking import Booking, BookingStatus
from tourmarket.schemas.booking import RequestBookingRequest
from tourmarket.services.authorization import Actor, Role
from tourmarket.services.booking_service import BookingService
from tourmarket.services.payment_service import PaymentOutcome, PaymentService

OPERATOR = Actor(user_id=OPERATOR_ID, role=Role.OPERATOR)

# Strategies for generating test data
capacity_values = st.integers(min_value=1, max_value=12)
participant_counts = st.integers(min_value=1, max_value=5)
actions = st.tuples(
    st.sampled_from(["request", "accept", "reject", "cancel"]),
    participant_counts,
    st.integers(min_value=0, max_value=30),
)


@asynccontextmanager
async def fresh_session():
    """Session over a private in-memory database, one per generated example."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as session:
            yield session
    finally:
        await engine.dispose()


async def _committed_totals(session, tour_id, travel_date):
    """Participants held by pending and accepted bookings, counted straight from the table."""
    rows = await session.execute(
        select(Booking.status, func.sum(Booking.participants))
        .where(Booking.tour_id == tour_id, Booking.travel_date == travel_date)
        .group_by(Booking.status)
    )
    totals = {status: int(total) for status, total in rows.all()}
    return totals.get(BookingStatus.PENDING, 0) + totals.get(BookingStatus.ACCEPTED, 0), totals.get(
        BookingStatus.ACCEPTED, 0
    )


@pytest.mark.asyncio
@settings(max_examples=25, deadline=None)
@given(capacity=capacity_values, script=st.lists(actions, min_size=1, max_size=25))
async def test_capacity_never_exceeded(capacity, script):
    """No sequence of requests and decisions books more places than the tour has."""
    travel_date = utc_today() + timedelta(days=14)

    async with fresh_session() as session:
        tour = await create_approved_tour(session, [travel_date], max_group_size=capacity)
        tour_id = tour.id
        service = BookingService(session, notifier=RecordingNotifier())
        open_bookings = []

        for step, (action, participants, pick) in enumerate(script):
            if action == "request":
                traveler = Actor(user_id=f"traveler-{step}", role=Role.TRAVELER)
                try:
                    booking = await service.request_booking(
                        RequestBookingRequest(tour_id=str(tour_id), travel_date=travel_date, participants=participants),
                        traveler,
                    )
                    open_bookings.append((booking.id, traveler))
                except CapacityExceededError:
                    pass
            elif open_bookings:
                booking_id, traveler = open_bookings[pick % len(open_bookings)]
                current = await service.get_booking_by_id(booking_id)
                if action == "cancel":
                    await service.cancel_booking(booking_id, traveler)
                    open_bookings.remove((booking_id, traveler))
                elif current.status == BookingStatus.PENDING:
                    target = BookingStatus.ACCEPTED if action == "accept" else BookingStatus.REJECTED
                    try:
                        await service.decide_booking(booking_id, target, OPERATOR)
                        if target == BookingStatus.REJECTED:
                            open_bookings.remove((booking_id, traveler))
                    except TourFullError:
                        pass

            committed, accepted = await _committed_totals(session, tour_id, travel_date)
            snapshot = await service.get_availability(tour_id, travel_date)

            assert committed <= capacity
            assert accepted <= committed
            assert snapshot.committed == committed
            assert snapshot.available == capacity - committed


@pytest.mark.asyncio
@settings(max_examples=15, deadline=None)
@given(participants=participant_counts, deliveries=st.integers(min_value=1, max_value=6))
async def test_webhook_replay_is_idempotent(participants, deliveries):
    """However often a success event arrives, it is applied exactly once."""
    travel_date = utc_today() + timedelta(days=14)
    traveler = Actor(user_id="traveler-1", role=Role.TRAVELER)

    async with fresh_session() as session:
        tour = await create_approved_tour(session, [travel_date], max_group_size=10, price_amount=4500)
        payments = PaymentService(session, FakePaymentGateway(), notifier=RecordingNotifier())
        booking = await payments.bookings.request_booking(
            RequestBookingRequest(tour_id=str(tour.id), travel_date=travel_date, participants=participants),
            traveler,
        )
        await payments.bookings.decide_booking(booking.id, BookingStatus.ACCEPTED, OPERATOR)
        intent = (await payments.create_payment_intent(booking.id, traveler)).intent
        payload = json.dumps(intent_event(intent.ref, str(booking.id), booking.total_price)).encode()

        outcomes = [await payments.handle_gateway_event(payload, VALID_SIGNATURE) for _ in range(deliveries)]
        await session.refresh(booking)

        assert outcomes[0] == PaymentOutcome.APPLIED
        assert all(outcome == PaymentOutcome.DUPLICATE for outcome in outcomes[1:])
        assert booking.amount_paid == 4500 * participants


@given(
    day_offset=st.integers(min_value=0, max_value=3650),
    clock=st.times(),
    offset_minutes=st.integers(min_value=-14 * 60, max_value=14 * 60),
)
def test_travel_date_ignores_time_and_offset(day_offset, clock, offset_minutes):
    """A timestamp always resolves to the calendar date written in it."""
    day = utc_today() + timedelta(days=day_offset)
    stamp = datetime.combine(day, time(clock.hour, clock.minute, clock.second),
                             tzinfo=timezone(timedelta(minutes=offset_minutes)))

    assert normalize_travel_date(stamp) == day
    assert normalize_travel_date(stamp.isoformat()) == day
