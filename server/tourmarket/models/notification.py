"""Notification model definition."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utc_now
from ..core.database import Base, enum_column


class NotificationCategory(str, Enum):
    """Notification category shown to the recipient."""
    BOOKING = "booking"
    PAYMENT = "payment"
    SYSTEM = "system"


class Notification(Base):
    """In-app notification produced as a side effect of booking transitions."""

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    recipient_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[NotificationCategory] = mapped_column(
        enum_column(NotificationCategory),
        nullable=False,
        default=NotificationCategory.SYSTEM
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        index=True
    )

    def __repr__(self) -> str:
        return (
            f"<Notification(id={self.id}, recipient_user_id='{self.recipient_user_id}', "
            f"category={self.category}, title='{self.title}')>"
        )
