"""Service layer package."""

from .booking_service import BookingService
from .capacity_ledger import CapacityLedger
from .catalog_service import CatalogService
from .notification_service import NotificationService
from .payment_service import PaymentService

__all__ = [
    "BookingService",
    "CapacityLedger",
    "CatalogService",
    "NotificationService",
    "PaymentService",
]
