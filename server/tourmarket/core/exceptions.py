"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    Every subclass carries a stable application ``code`` so that clients can
    branch on the failure without parsing human-readable text.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        code: Optional[str] = None,
        retryable: Optional[bool] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            code: Stable application error code
            retryable: Whether repeating the same request may succeed
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.code = code
        self.extensions = extensions or {}

        # Create the problem details object
        self.problem_details: Dict[str, Any] = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        if self.code:
            self.problem_details["code"] = self.code

        if retryable is not None:
            self.problem_details["retryable"] = retryable

        # Add extensions
        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )


class ValidationError(ProblemDetailsException):
    """Exception for malformed input (participants < 1, missing date, ...)."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            code="VALIDATION_ERROR",
            retryable=False,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authorization credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authorization Required",
            detail=detail,
            type_uri="https://example.com/problems/authentication-required",
            instance=instance,
            code="AUTHENTICATION_REQUIRED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccessDeniedError(ProblemDetailsException):
    """Exception raised when the actor may not act on the resource."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        capability: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        extensions = {}
        if capability:
            extensions["capability"] = capability

        super().__init__(
            status_code=403,
            title="Access Denied",
            detail=detail,
            type_uri="https://example.com/problems/access-denied",
            instance=instance,
            code="ACCESS_DENIED",
            retryable=False,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            code="NOT_FOUND",
            retryable=False,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
        code: str = "CONFLICT",
        title: str = "Resource Conflict",
        retryable: bool = False,
    ):
        extensions = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource

        super().__init__(
            status_code=409,
            title=title,
            detail=detail,
            type_uri=f"https://example.com/problems/{code.lower().replace('_', '-')}",
            instance=instance,
            code=code,
            retryable=retryable,
            extensions=extensions,
        )


# Admission control

class CapacityExceededError(ConflictError):
    """Request-time admission failed: not enough free places on the date."""

    def __init__(self, tour_id: str, travel_date: date, requested: int, available: int):
        super().__init__(
            detail=(
                f"Tour {tour_id} has only {available} place(s) left on {travel_date.isoformat()}; "
                f"{requested} requested. Try a different date."
            ),
            conflicting_resource={
                "tour_id": tour_id,
                "travel_date": travel_date.isoformat(),
                "requested_participants": requested,
                "available_participants": available,
            },
            code="CAPACITY_EXCEEDED",
            title="Capacity Exceeded",
        )


class TourFullError(ConflictError):
    """Accept-time admission failed: accepted bookings already fill the date."""

    def __init__(self, tour_id: str, travel_date: date, accepted: int, requested: int, max_group_size: int):
        super().__init__(
            detail=(
                f"Tour {tour_id} is full on {travel_date.isoformat()}: {accepted}/{max_group_size} "
                f"places accepted, cannot accept {requested} more"
            ),
            conflicting_resource={
                "tour_id": tour_id,
                "travel_date": travel_date.isoformat(),
                "accepted_participants": accepted,
                "requested_participants": requested,
                "max_group_size": max_group_size,
            },
            code="TOUR_FULL",
            title="Tour Full",
        )


class DuplicateBookingError(ConflictError):
    """The traveler already holds a live booking for the tour and date."""

    def __init__(self, existing_booking_id: str, travel_date: date):
        super().__init__(
            detail=f"An active booking already exists for {travel_date.isoformat()}",
            conflicting_resource={"booking_id": existing_booking_id},
            code="DUPLICATE_BOOKING",
            title="Duplicate Booking",
        )


class TourNotBookableError(ConflictError):
    """The tour is inactive or has not been approved by an admin."""

    def __init__(self, tour_id: str, is_active: bool, approval_status: str):
        super().__init__(
            detail=f"Tour {tour_id} is not open for bookings",
            conflicting_resource={
                "tour_id": tour_id,
                "is_active": is_active,
                "approval_status": approval_status,
            },
            code="TOUR_NOT_BOOKABLE",
            title="Tour Not Bookable",
        )


class PastDateNotAllowedError(ProblemDetailsException):
    """The requested travel date lies in the past."""

    def __init__(self, travel_date: date, today: date):
        super().__init__(
            status_code=400,
            title="Past Date Not Allowed",
            detail=f"Travel date {travel_date.isoformat()} is before {today.isoformat()}",
            type_uri="https://example.com/problems/past-date-not-allowed",
            code="PAST_DATE_NOT_ALLOWED",
            retryable=False,
            extensions={"travel_date": travel_date.isoformat()},
        )


class DateNotAvailableError(ProblemDetailsException):
    """The requested travel date is not in the tour's published dates."""

    def __init__(self, tour_id: str, travel_date: date):
        super().__init__(
            status_code=400,
            title="Date Not Available",
            detail=f"Tour {tour_id} does not run on {travel_date.isoformat()}",
            type_uri="https://example.com/problems/date-not-available",
            code="DATE_NOT_AVAILABLE",
            retryable=False,
            extensions={"tour_id": tour_id, "travel_date": travel_date.isoformat()},
        )


# Lifecycle

class AlreadyProcessedError(ConflictError):
    """A transition was attempted on a booking that has already moved on."""

    def __init__(self, booking_id: str, current_status: str, attempted_status: Optional[str] = None):
        detail = f"Booking {booking_id} has already been processed (status: {current_status})"
        resource = {"booking_id": booking_id, "status": current_status}
        if attempted_status:
            resource["attempted_status"] = attempted_status
        super().__init__(
            detail=detail,
            conflicting_resource=resource,
            code="ALREADY_PROCESSED",
            title="Already Processed",
        )


class InvalidTransitionError(ConflictError):
    """The booking is live but the requested transition is not yet legal."""

    def __init__(self, booking_id: str, current_status: str, attempted_status: str):
        super().__init__(
            detail=f"Booking {booking_id} cannot move from {current_status} to {attempted_status}",
            conflicting_resource={
                "booking_id": booking_id,
                "status": current_status,
                "attempted_status": attempted_status,
            },
            code="INVALID_TRANSITION",
            title="Invalid Transition",
        )


# Payments

class PaymentNotAllowedError(ConflictError):
    """The booking's state does not permit the requested payment action."""

    def __init__(self, booking_id: str, reason: str, status: str, payment_status: str):
        super().__init__(
            detail=reason,
            conflicting_resource={
                "booking_id": booking_id,
                "status": status,
                "payment_status": payment_status,
            },
            code="PAYMENT_NOT_ALLOWED",
            title="Payment Not Allowed",
        )


class PaymentGatewayUnavailableError(ProblemDetailsException):
    """The payment gateway is misconfigured or unreachable."""

    def __init__(self, detail: str = "Payment system is temporarily unavailable"):
        super().__init__(
            status_code=503,
            title="Payment Gateway Unavailable",
            detail=detail,
            type_uri="https://example.com/problems/payment-gateway-unavailable",
            code="PAYMENT_GATEWAY_UNAVAILABLE",
            retryable=True,
            headers={"Retry-After": "30"},
        )


class SignatureInvalidError(ProblemDetailsException):
    """A gateway event failed signature verification and was dropped."""

    def __init__(self, detail: str = "Webhook signature verification failed"):
        super().__init__(
            status_code=400,
            title="Signature Invalid",
            detail=detail,
            type_uri="https://example.com/problems/signature-invalid",
            code="SIGNATURE_INVALID",
            retryable=False,
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.problem_details,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body validation failures as Problem Details with violations."""
    violations: List[Dict[str, str]] = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ())),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "type": "https://example.com/problems/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "The request data failed validation",
            "code": "VALIDATION_ERROR",
            "retryable": False,
            "violations": violations,
        },
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": error_id, "path": request.url.path},
    )

    problem_details = {
        "type": "https://example.com/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
