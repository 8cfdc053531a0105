from fastapi import Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError, ExpiredSignatureError
from typing import Optional
import logging

from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.models.identity import Identity

logger = logging.getLogger(__name__)

class AuthHandler:
    """
    Bearer token verification against the identity provider's signing key.

    Tokens are issued elsewhere; this side only decodes them and turns the
    claims into an Identity.
    """
    security = HTTPBearer(auto_error=False)

    @classmethod
    def decode_token(cls, token: str) -> Identity:
        """Decode and validate JWT token"""
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except ExpiredSignatureError:
            raise DocTrustError(ErrorKind.UNAUTHENTICATED, "Token has expired")
        except JWTError:
            raise DocTrustError(ErrorKind.UNAUTHENTICATED, "Invalid token")

        user_id = payload.get("sub")
        if not user_id:
            raise DocTrustError(ErrorKind.UNAUTHENTICATED, "Token has no subject")

        return Identity(
            user_id=str(user_id),
            email=payload.get("email"),
            name=payload.get("name"),
        )

    @classmethod
    async def auth_wrapper(cls, auth: Optional[HTTPAuthorizationCredentials] = Security(security)) -> Identity:
        """
        Standard auth wrapper that requires valid authentication

        Raises:
            DocTrustError: UNAUTHENTICATED if no valid token is provided
        """
        if not auth:
            raise DocTrustError(ErrorKind.UNAUTHENTICATED, "Authentication required")
        return cls.decode_token(auth.credentials)

    @classmethod
    async def auth_wrapper_optional(cls, auth: Optional[HTTPAuthorizationCredentials] = Security(security)) -> Optional[Identity]:
        """
        Returns None instead of raising when no valid token is provided; used by
        the public link resolution endpoint
        """
        if not auth:
            return None

        try:
            return cls.decode_token(auth.credentials)
        except DocTrustError as e:
            logger.warning(f"Auth error (non-blocking): {e.message}")
            return None
