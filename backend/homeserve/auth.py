"""
Bearer-token AuthGateway.

Tokens are HS256 JWTs whose ``sub`` is the actor id and ``role`` one of
customer, worker or admin. Account management lives outside this service;
``create_access_token`` exists for operators and tests.
"""

from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, Optional

from fastapi.security import OAuth2PasswordBearer
import jwt
from jwt import PyJWTError

from .core.config import settings
from .core.enums import RoleName
from .core.exceptions import UnauthorizedException
from .principal import Principal

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def create_access_token(
    subject: str,
    role: RoleName,
    expires_delta: Optional[timedelta] = None,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        subject: Actor id stored in ``sub``
        role: Role claim
        expires_delta: Optional expiration time delta

    Returns:
        str: The encoded JWT token
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode: Dict[str, Any] = {"sub": subject, "role": role.value, "exp": expire}
    if extra_claims:
        to_encode.update(extra_claims)
    return jwt.encode(
        to_encode, settings.secret_key.get_secret_value(), algorithm=settings.algorithm
    )


class JwtAuthGateway:
    """Resolves a bearer credential to a Principal."""

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        self._secret = secret or settings.secret_key.get_secret_value()
        self._algorithm = algorithm or settings.algorithm

    def resolve(self, token: Optional[str]) -> Principal:
        """
        Raises:
            UnauthorizedException: missing, expired or malformed token
        """
        if not token:
            raise UnauthorizedException("Not authenticated", code="NOT_AUTHENTICATED")
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except PyJWTError as e:
            logger.info(f"Rejected bearer token: {type(e).__name__}")
            raise UnauthorizedException("Could not validate credentials", code="INVALID_TOKEN")

        subject = payload.get("sub")
        role = payload.get("role")
        if not subject or role not in {r.value for r in RoleName}:
            raise UnauthorizedException("Could not validate credentials", code="INVALID_TOKEN")
        return Principal(id=str(subject), role=RoleName(role))
