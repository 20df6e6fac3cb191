"""Access token validation.

Tokens are issued by the external auth provider and signed with a shared
secret; this module only validates them and extracts the identity.
"""

import logging
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from tokengate.core.config import settings

logger = logging.getLogger(__name__)


class InvalidTokenError(Exception):
    """Raised when a token is invalid or expired."""

    pass


class TokenPayload(BaseModel):
    """Identity claims carried by an access token."""

    sub: str
    email: Optional[str] = None
    name: Optional[str] = None


def decode_access_token(token: str) -> TokenPayload:
    """Validate an access token and return its identity claims.

    Args:
        token: Encoded JWT

    Returns:
        TokenPayload with the user id in ``sub``

    Raises:
        InvalidTokenError: If the signature, expiry or claims are invalid
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
        raise InvalidTokenError("Invalid or expired token") from e

    if not claims.get("sub"):
        raise InvalidTokenError("Token has no subject")

    metadata = claims.get("user_metadata") or {}
    return TokenPayload(
        sub=str(claims["sub"]),
        email=claims.get("email"),
        name=metadata.get("full_name") or claims.get("name"),
    )
