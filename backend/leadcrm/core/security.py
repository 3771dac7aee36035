"""
Security utilities for authentication and password hashing.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Any
from jose import jwt, JWTError, ExpiredSignatureError
from passlib.context import CryptContext

from leadcrm.core.config import settings
from leadcrm.core.errors import MalformedTokenError, TokenExpiredError

# Use pbkdf2_sha256 as a stable default to avoid environment bcrypt issues.
# Bcrypt kept so hashes imported from the legacy system still verify.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def generate_secret_token(nbytes: int = 32) -> str:
    """Random opaque secret, hex-encoded (64 chars for 32 bytes)."""
    return secrets.token_hex(nbytes)


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "exp": expire,
        "sub": str(subject),
        "iat": now,
        "type": "auth"
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises TokenExpiredError for an expired signature and
    MalformedTokenError for anything else that fails validation.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTError:
        raise MalformedTokenError()

    if payload.get("type") != "auth" or not payload.get("sub"):
        raise MalformedTokenError()
    return payload
