"""
Security and Authentication
Decodes the identity provider's bearer JWT into an immutable Principal.
The provider itself is external; token issuance exists for tests and tooling.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import logging

from jose import jwt, JWTError

from arkan.core.config import settings
from arkan.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """Authenticated identity as delivered by the identity provider."""
    uid: str
    email: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})

    encoded_jwt = jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )

    return encoded_jwt


def decode_principal(token: str) -> Principal:
    """
    Decode a bearer token into a Principal.

    Raises:
        AuthenticationError: token invalid, expired or missing 'sub'
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise AuthenticationError("Invalid or expired token", "الرمز غير صالح أو منتهي الصلاحية")

    uid = payload.get("sub")
    if not uid:
        logger.warning("Token missing 'sub' field")
        raise AuthenticationError("Invalid or expired token", "الرمز غير صالح أو منتهي الصلاحية")

    return Principal(uid=str(uid), email=payload.get("email"), claims=payload)
