"""
FastAPI dependencies for authentication and service collaborators.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from ..services.notification_service import BookingNotifier
from ..services.payment_gateway import HttpPaymentGateway, PaymentGateway
from ..utils.auth import verify_token


# HTTP Bearer token scheme
security = HTTPBearer()


class CurrentUser(BaseModel):
    """Caller identity taken from the bearer token. No local user table exists."""
    user_id: str
    email: Optional[str] = None
    is_admin: bool = False


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CurrentUser:
    """
    Get the current caller from the JWT bearer token.

    Raises:
        HTTPException: If the token is missing, expired or malformed
    """
    token_data = verify_token(credentials.credentials)
    if token_data is None or token_data.user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(
        user_id=token_data.user_id,
        email=token_data.email,
        is_admin=token_data.is_admin
    )


async def get_current_admin_user(
    current_user: CurrentUser = Depends(get_current_user)
) -> CurrentUser:
    """
    Get the current admin user.

    Raises:
        HTTPException: If user is not an admin
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions"
        )
    return current_user


def get_notifier() -> BookingNotifier:
    """Notifier used by request handlers; overridden in tests."""
    return BookingNotifier()


def get_payment_gateway() -> PaymentGateway:
    """Payment gateway used by request handlers; overridden in tests."""
    return HttpPaymentGateway()
