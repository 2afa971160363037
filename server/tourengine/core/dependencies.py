"""FastAPI dependencies for authentication and external collaborators."""

from typing import Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from ..services.notification_service import BrevoEmailSender, EmailSender, NotificationDispatcher
from ..services.payment_gateway import PaymentGateway, StripePaymentGateway
from .config import settings
from .database import get_db
from .exceptions import AuthenticationError, ValidationError


async def get_current_guide(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    Authentication dependency that validates guide Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        dict: Guide identity from the validated token

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
        # PyJWT rejects expired tokens itself when an exp claim is present
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {str(e)}")

    guide_id = payload.get("sub")
    if guide_id is None:
        raise AuthenticationError(detail="Invalid token payload")

    return {
        "guide_id": str(guide_id),
        "email": payload.get("email"),
        "roles": payload.get("roles", []),
    }


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate the optional idempotency key header.

    Raises:
        ValidationError: If idempotency key format is invalid
    """
    if idempotency_key is None:
        return None
    if not 1 <= len(idempotency_key) <= 255:
        raise ValidationError(detail="Idempotency key must be between 1 and 255 characters")
    return idempotency_key


_payment_gateway: Optional[PaymentGateway] = None
_email_sender: Optional[EmailSender] = None


def get_payment_gateway() -> PaymentGateway:
    """Process-wide payment gateway; tests override this dependency."""
    global _payment_gateway
    if _payment_gateway is None:
        _payment_gateway = StripePaymentGateway()
    return _payment_gateway


def get_email_sender() -> EmailSender:
    """Process-wide email sender; tests override this dependency."""
    global _email_sender
    if _email_sender is None:
        _email_sender = BrevoEmailSender()
    return _email_sender


async def get_notifier(
    db: AsyncSession = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
) -> NotificationDispatcher:
    """Notification dispatcher bound to the request's session."""
    return NotificationDispatcher(db, email_sender)
