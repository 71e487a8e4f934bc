import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from jose import jwt

from wotc_sync.core.config import settings


@dataclass(frozen=True)
class Principal:
    """Caller identified by a bearer token: an operator or a calling service."""
    subject: str


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token for an operator or service.

    Args:
        subject: Who the token identifies, e.g. 'svc:screening-portal'
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {"exp": expire, "sub": str(subject)}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Claims of a valid token. Raises jose.JWTError when the signature or expiry check fails."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def compute_webhook_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Constant-time check of a provider webhook signature.

    Accepts either a bare hex digest or the ``sha256=<hex>`` form.
    """
    if not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = compute_webhook_signature(payload, secret)
    return hmac.compare_digest(expected, signature.strip().lower())
