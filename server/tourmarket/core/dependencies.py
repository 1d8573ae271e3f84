"""FastAPI dependencies for authentication and the payment gateway."""

from typing import Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError

from ..services.authorization import Actor, Role
from ..services.payment_gateway import PaymentGateway, StripePaymentGateway
from .config import settings
from .exceptions import AuthenticationError


async def get_current_actor(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Actor:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Actor: The authenticated user and their marketplace role

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError(detail="Invalid token payload")

    try:
        role = Role(payload.get("role", Role.TRAVELER.value))
    except ValueError:
        raise AuthenticationError(detail="Unknown role in token")

    return Actor(user_id=str(user_id), role=role)


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> Optional[PaymentGateway]:
    """
    Payment gateway dependency.

    Returns None when no gateway is configured; payment operations then fail
    with PaymentGatewayUnavailableError while the rest of the API keeps working.
    """
    global _gateway
    if _gateway is None and settings.payments_enabled:
        _gateway = StripePaymentGateway(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    return _gateway


RequiredAuth = Depends(get_current_actor)
PaymentGatewayDependency = Depends(get_payment_gateway)
