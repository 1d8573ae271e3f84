"""Notification emitter persisting in-app notifications."""

import logging
from typing import Any, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models.notification import Notification, NotificationCategory

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Anything that can deliver a notification to a user."""

    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        category: NotificationCategory = NotificationCategory.SYSTEM,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class NotificationService:
    """
    Persists notifications produced by booking and payment transitions.

    Delivery is best effort: a failure here is logged and swallowed so it
    never undoes the transition that triggered it. Notifications are written
    through a session of their own on the caller's engine, so a failed write
    leaves the caller's session and its loaded objects untouched.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._sessions = async_sessionmaker(db.bind, class_=AsyncSession, expire_on_commit=False)

    async def notify(
        self,
        user_id: str,
        title: str,
        body: str,
        category: NotificationCategory = NotificationCategory.SYSTEM,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Store a notification for ``user_id``.

        Args:
            user_id: Recipient
            title: Short headline
            body: Notification text
            category: booking, payment or system
            metadata: Identifiers the client can use to deep-link
        """
        notification = Notification(
            recipient_user_id=user_id,
            title=title,
            body=body,
            category=category,
            meta=metadata or {},
        )
        try:
            async with self._sessions() as session:
                session.add(notification)
                await session.commit()
        except Exception as e:
            logger.error(
                "Failed to store notification",
                extra={
                    "recipient_user_id": user_id,
                    "title": title,
                    "category": category.value,
                    "error": str(e)
                },
                exc_info=True
            )
            return

        logger.debug(
            "Notification stored",
            extra={
                "notification_id": str(notification.id),
                "recipient_user_id": user_id,
                "category": category.value
            }
        )

    async def list_for_user(self, user_id: str, limit: int = 50) -> list[Notification]:
        """Most recent notifications for a user, newest first."""
        stmt = (
            select(Notification)
            .where(Notification.recipient_user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
