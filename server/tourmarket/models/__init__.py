"""Models module exporting all database models."""

from .booking import Booking, BookingStatus, PaymentStatus
from .notification import Notification, NotificationCategory
from .tour import ApprovalStatus, Tour, TourDate

__all__ = [
    # Catalog entities
    "Tour",
    "TourDate",
    "ApprovalStatus",

    # Booking entity
    "Booking",
    "BookingStatus",
    "PaymentStatus",

    # Notification entity
    "Notification",
    "NotificationCategory",
]
