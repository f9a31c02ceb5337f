"""Admin login challenge and JWT access tokens."""

import logging
import time
from datetime import datetime, timedelta, UTC
from typing import Any, Dict, Optional, Tuple

import jwt

from zkpool.exceptions import AuthenticationError
from zkpool.security.identity import verify_signature

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
LOGIN_PREFIX = b"zkpool-admin-login:"
LOGIN_MAX_SKEW_SECONDS = 300


def login_message(timestamp: int) -> bytes:
    """Message an identity signs to obtain a token."""
    return LOGIN_PREFIX + str(int(timestamp)).encode("ascii")


def authenticate_identity(public_key: bytes, timestamp: int, signature: bytes, now: Optional[float] = None) -> bytes:
    """
    Verify a signed login challenge.

    Returns:
        bytes: The authenticated 32-byte identity

    Raises:
        AuthenticationError: If the timestamp is too far off or the signature is bad
    """
    now = time.time() if now is None else now
    if abs(now - timestamp) > LOGIN_MAX_SKEW_SECONDS:
        raise AuthenticationError("Login timestamp outside the accepted window")
    verify_signature(public_key, login_message(timestamp), signature)
    return bytes(public_key)


def create_access_token(
    identity: bytes,
    secret: str,
    expires_delta: Optional[timedelta] = None,
) -> Tuple[str, datetime]:
    """
    Create a JWT access token for an identity.

    Returns:
        tuple: (token, expiry_datetime)
    """
    if expires_delta is None:
        expires_delta = timedelta(hours=1)

    issued = datetime.now(UTC)
    expire = issued + expires_delta
    to_encode = {
        "sub": identity.hex(),
        "exp": expire,
        "iat": issued,
    }
    token = jwt.encode(to_encode, secret, algorithm=ALGORITHM)
    return token, expire


def verify_access_token(token: str, secret: str) -> Dict[str, Any]:
    """
    Decode a JWT access token.

    Raises:
        AuthenticationError: If the token is invalid or expired
    """
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired") from None
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token") from None


def identity_from_token(token: str, secret: str) -> bytes:
    """Return the 32-byte identity named by a valid token."""
    payload = verify_access_token(token, secret)
    try:
        identity = bytes.fromhex(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationError("Token has no valid subject") from None
    if len(identity) != 32:
        raise AuthenticationError("Token subject is not a 32-byte identity")
    return identity
