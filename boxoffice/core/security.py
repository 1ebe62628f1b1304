"""
Security utilities for staff authentication
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
import logging
import time

from boxoffice.config import Settings
from boxoffice.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class SecurityManager:
    """
    Issues and verifies bearer tokens for scanners and box office operators
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def create_access_token(
        self,
        subject: str,
        role: str = "staff",
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create a JWT access token
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=self.settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

        to_encode = {
            "sub": subject,
            "role": role,
            "type": "access",
            "exp": datetime.now(timezone.utc) + expires_delta,
            "iat": time.time(),
        }

        return jwt.encode(
            to_encode,
            self.settings.jwt_secret,
            algorithm=self.settings.JWT_ALGORITHM
        )

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a JWT token
        """
        try:
            payload = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.JWT_ALGORITHM]
            )
        except JWTError as e:
            logger.warning(f"JWT decode error: {e}")
            raise AuthenticationError("Could not validate credentials")

        if payload.get("type") != "access" or not payload.get("sub"):
            raise AuthenticationError("Invalid token type")

        return payload
