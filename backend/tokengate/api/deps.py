"""API dependencies for FastAPI route handlers.

This module provides dependency injection functions for:
- Database sessions
- Authentication (JWT-based) and lazy account creation
- The payment gateway client
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tokengate.core.database import get_db as get_db_session
from tokengate.models.account import Account
from tokengate.services.auth_service import InvalidTokenError, decode_access_token
from tokengate.services.midtrans_client import MidtransClient, get_midtrans_client
from tokengate.services.stores import ProfileStore

# HTTP Bearer token scheme for JWT authentication
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session.

    Yields:
        AsyncSession for database operations
    """
    async for session in get_db_session():
        yield session


async def get_current_account(
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Account:
    """Dependency to get the authenticated user's account.

    The account is created on the user's first authenticated request.

    Raises:
        HTTPException: 401 if the token is missing, invalid, or expired
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = decode_access_token(credentials.credentials)
    except InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return await ProfileStore(db).get_or_create(
        payload.sub, email=payload.email, full_name=payload.name
    )


def get_payment_gateway() -> MidtransClient:
    """Dependency to get the payment gateway client."""
    return get_midtrans_client()
