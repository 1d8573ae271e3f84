"""Tour catalog model definitions."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utc_now
from ..core.database import Base, enum_column


class ApprovalStatus(str, Enum):
    """Admin moderation status of a tour."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Tour(Base):
    """Tour offering published by an operator."""

    __tablename__ = "tours"

    # Primary key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Tour information
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Price per participant (stored as minor units, e.g., cents)
    price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    price_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Capacity per travel date
    max_group_size: Mapped[int] = mapped_column(Integer, nullable=False)

    # Ownership and moderation
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        enum_column(ApprovalStatus),
        nullable=False,
        default=ApprovalStatus.PENDING,
        index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("max_group_size > 0", name="ck_tour_max_group_size_positive"),
        CheckConstraint("price_amount > 0", name="ck_tour_price_amount_positive"),
        CheckConstraint("length(price_currency) = 3", name="ck_tour_price_currency_length"),
    )

    # Relationships
    available_dates: Mapped[list["TourDate"]] = relationship(
        "TourDate",
        back_populates="tour",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TourDate.travel_date",
    )

    @property
    def is_bookable(self) -> bool:
        """Active and approved tours accept booking requests."""
        return self.is_active and self.approval_status == ApprovalStatus.APPROVED

    @property
    def available_date_set(self) -> set[date]:
        return {entry.travel_date for entry in self.available_dates}

    def __repr__(self) -> str:
        return (
            f"<Tour(id={self.id}, title='{self.title}', price={self.price_amount} {self.price_currency}, "
            f"max_group_size={self.max_group_size}, approval_status={self.approval_status})>"
        )


class TourDate(Base):
    """A calendar date on which a tour runs."""

    __tablename__ = "tour_available_dates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    tour_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tours.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    travel_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("tour_id", "travel_date", name="uq_tour_available_date"),
    )

    tour: Mapped["Tour"] = relationship("Tour", back_populates="available_dates")

    def __repr__(self) -> str:
        return f"<TourDate(tour_id={self.tour_id}, travel_date={self.travel_date})>"
