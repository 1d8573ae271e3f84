"""Booking model definition and lifecycle enumerations."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utc_now
from ..core.database import Base, enum_column


class BookingStatus(str, Enum):
    """Booking lifecycle status."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "BookingStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


class PaymentStatus(str, Enum):
    """Payment lifecycle status, orthogonal to the booking status."""
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.ACCEPTED, BookingStatus.REJECTED, BookingStatus.CANCELLED}),
    BookingStatus.ACCEPTED: frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

TERMINAL_STATUSES = frozenset({BookingStatus.REJECTED, BookingStatus.CANCELLED, BookingStatus.COMPLETED})

# Statuses whose participants count against a tour date's capacity
COMMITTED_STATUSES = (BookingStatus.PENDING, BookingStatus.ACCEPTED)

# Statuses in which a booking may carry a successful payment
BILLABLE_STATUSES = (BookingStatus.ACCEPTED, BookingStatus.COMPLETED)


class Booking(Base):
    """A traveler's request for places on a tour date."""

    __tablename__ = "bookings"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Tour reference
    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Parties. operator_id is captured from the tour owner at creation and never changes.
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    operator_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Booking details
    travel_date: Mapped[date] = mapped_column(Date, nullable=False)
    participants: Mapped[int] = mapped_column(Integer, nullable=False)

    # Price snapshot (minor units)
    price_at_booking: Mapped[int] = mapped_column(Integer, nullable=False)
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Lifecycle
    status: Mapped[BookingStatus] = mapped_column(
        enum_column(BookingStatus),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        enum_column(PaymentStatus),
        nullable=False,
        default=PaymentStatus.UNPAID
    )

    # Payment artifacts
    payment_intent_ref: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    amount_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now
    )

    __mapper_args__ = {"version_id_col": version}

    # Constraints
    __table_args__ = (
        CheckConstraint("participants >= 1", name="ck_booking_participants_positive"),
        CheckConstraint("price_at_booking > 0", name="ck_booking_price_positive"),
        CheckConstraint("total_price = price_at_booking * participants", name="ck_booking_total_price"),
        CheckConstraint("amount_paid >= 0", name="ck_booking_amount_paid_non_negative"),
        Index("ix_bookings_tour_date_status", "tour_id", "travel_date", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, tour_id={self.tour_id}, travel_date={self.travel_date}, "
            f"participants={self.participants}, status={self.status}, payment_status={self.payment_status})>"
        )
