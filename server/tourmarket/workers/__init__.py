"""Background workers for the tour marketplace."""

from .completion_worker import BookingCompletionWorker

__all__ = ["BookingCompletionWorker"]
